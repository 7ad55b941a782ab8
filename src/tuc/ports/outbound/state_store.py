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


"""Interface for the durable client-side store of transfer snapshots"""

from abc import ABC, abstractmethod

from tuc.core.models import TransferSession

__all__ = ["StateStorePort"]


class StateStorePort(ABC):
    """Stores at most one transfer snapshot, overwriting it on every save.

    Only metadata is stored. The raw content of the files never is.
    """

    class StateStoreError(RuntimeError):
        """Raised when a snapshot can't be written or read back"""

        def __init__(self, *, location: str, reason: str):
            message = f"Failed to access the upload state at {location}: {reason}"
            super().__init__(message)

    @abstractmethod
    def save(self, snapshot: TransferSession) -> None:
        """Persist the snapshot, replacing any previous one"""
        ...

    @abstractmethod
    def load(self) -> TransferSession | None:
        """Return the persisted snapshot, or None if there is none.

        An unreadable snapshot is treated like a missing one.
        """
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove the persisted snapshot, if any"""
        ...
