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


"""Bundles the core with in-memory versions of its outbound dependencies"""

__all__ = ["JointRig", "rig_fixture"]

from dataclasses import dataclass

import pytest

from tests_tuc.fixtures.in_mem_state_store import InMemStateStore
from tests_tuc.fixtures.in_mem_transfer_api import InMemTransferApi
from tuc.config import Config
from tuc.core.orchestrator import TransferOrchestrator


@dataclass
class JointRig:
    """Test fixture containing all components needed for orchestrator testing."""

    config: Config
    transfer_api: InMemTransferApi
    state_store: InMemStateStore
    orchestrator: TransferOrchestrator

    def restart(self) -> TransferOrchestrator:
        """Simulate a restart of the client: a new orchestrator sharing the same
        server and state store, with nothing in memory.
        """
        self.orchestrator = TransferOrchestrator(
            config=self.config,
            transfer_api=self.transfer_api,
            state_store=self.state_store,
        )
        return self.orchestrator


@pytest.fixture(name="rig")
def rig_fixture(config: Config) -> JointRig:
    """Return a joint fixture with in-memory dependency mocks"""
    orchestrator = TransferOrchestrator(
        config=config,
        transfer_api=(transfer_api := InMemTransferApi()),
        state_store=(state_store := InMemStateStore()),
    )
    return JointRig(
        config=config,
        transfer_api=transfer_api,
        state_store=state_store,
        orchestrator=orchestrator,
    )
