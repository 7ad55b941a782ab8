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


"""An in-memory implementation of the StateStorePort"""

from tuc.core.models import TransferSession
from tuc.ports.outbound.state_store import StateStorePort


class InMemStateStore(StateStorePort):
    """Keeps a deep copy of the latest snapshot and counts how often it is written"""

    def __init__(self):
        self.snapshot: TransferSession | None = None
        self.saves = 0
        self.fail = False
        self.fail_clear = False

    def save(self, snapshot: TransferSession) -> None:
        """Store a copy of the snapshot, or raise if `fail` is set"""
        if self.fail:
            raise self.StateStoreError(location="memory", reason="disk full")
        self.snapshot = snapshot.model_copy(deep=True)
        self.saves += 1

    def load(self) -> TransferSession | None:
        return self.snapshot.model_copy(deep=True) if self.snapshot else None

    def clear(self) -> None:
        """Drop the snapshot, or raise if `fail_clear` is set"""
        if self.fail_clear:
            raise self.StateStoreError(location="memory", reason="permission denied")
        self.snapshot = None
