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


"""Module hosting the dependency injection container."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, nullcontext

import httpx

from tuc.adapters.outbound.http.api_calls import HttpTransferApi
from tuc.adapters.outbound.state_store import JsonFileStateStore
from tuc.config import Config
from tuc.core.orchestrator import TransferOrchestrator
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort


@asynccontextmanager
async def prepare_core(
    *,
    config: Config,
) -> AsyncGenerator[TransferOrchestratorPort, None]:
    """Construct and initialize the core along with its outbound dependencies."""
    async with httpx.AsyncClient(timeout=config.http_timeout) as client:
        transfer_api = HttpTransferApi(config=config, client=client)
        state_store = JsonFileStateStore(config=config)

        orchestrator = TransferOrchestrator(
            config=config,
            transfer_api=transfer_api,
            state_store=state_store,
        )
        yield orchestrator


def prepare_core_with_override(
    *,
    config: Config,
    core_override: TransferOrchestratorPort | None = None,
):
    """Resolve the prepare_core context manager based on config and override."""
    return nullcontext(core_override) if core_override else prepare_core(config=config)
