# Copyright 2021 - 2025 Universität Tübingen, DKFZ, EMBL, and Universität zu Köln
# for the German Human Genome-Phenome Archive (GHGA)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Durable storage of transfer snapshots in a local JSON file"""

import logging
from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from tuc.core.models import TransferSession
from tuc.ports.outbound.state_store import StateStorePort

__all__ = ["JsonFileStateStore", "StateStoreConfig"]

log = logging.getLogger(__name__)


class StateStoreConfig(BaseSettings):
    """Where the state of interrupted uploads is kept between runs"""

    state_file: Path = Field(
        default=Path.home() / ".tuc" / "upload_state.json",
        description=(
            "Path of the JSON file holding the snapshot of the last unfinished"
            + " transfer. The file contents themselves are never stored."
        ),
        examples=["~/.tuc/upload_state.json", "/tmp/tuc_state.json"],
    )


class JsonFileStateStore(StateStorePort):
    """Keeps the snapshot in a single JSON file, replaced atomically on each save"""

    def __init__(self, *, config: StateStoreConfig):
        self._path = config.state_file.expanduser()

    def save(self, snapshot: TransferSession) -> None:
        """Persist the snapshot, replacing any previous one"""
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
            temp_path.replace(self._path)
        except OSError as err:
            raise self.StateStoreError(
                location=str(self._path), reason=str(err)
            ) from err

    def load(self) -> TransferSession | None:
        """Return the persisted snapshot, or None if there is none.

        An unreadable snapshot is treated like a missing one.
        """
        if not self._path.exists():
            return None
        try:
            return TransferSession.model_validate_json(
                self._path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as err:
            log.warning("Ignoring unreadable upload state at %s: %s", self._path, err)
            return None

    def clear(self) -> None:
        """Remove the persisted snapshot, if any"""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as err:
            raise self.StateStoreError(
                location=str(self._path), reason=str(err)
            ) from err
