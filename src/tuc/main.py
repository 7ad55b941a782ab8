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


"""Top-level client functions"""

import asyncio
import logging
import signal
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from hexkit.log import configure_logging

from tuc.adapters.outbound.content import LocalFileSource
from tuc.config import Config
from tuc.core.models import TransferOutcome
from tuc.inject import prepare_core_with_override
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort

log = logging.getLogger(__name__)


@contextmanager
def pause_on_interrupt(orchestrator: TransferOrchestratorPort) -> Iterator[None]:
    """Pause all uploads on SIGINT instead of killing the process.

    The paused state gets persisted, so the transfer can be resumed later.
    """
    loop = asyncio.get_running_loop()

    def interrupt():
        log.info("Interrupted, pausing all uploads.")
        orchestrator.pause_all()

    loop.add_signal_handler(signal.SIGINT, interrupt)
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def upload_files(
    *,
    paths: Sequence[Path],
    core_override: TransferOrchestratorPort | None = None,
) -> TransferOutcome:
    """Start a new transfer for the given files and upload them."""
    config = Config()
    configure_logging(config=config)
    sources = [LocalFileSource(path) for path in paths]

    async with prepare_core_with_override(
        config=config, core_override=core_override
    ) as orchestrator:
        with pause_on_interrupt(orchestrator):
            return await orchestrator.transfer(sources=sources)


async def resume_transfer(
    *,
    paths: Sequence[Path] = (),
    core_override: TransferOrchestratorPort | None = None,
) -> TransferOutcome | None:
    """Continue the transfer interrupted in an earlier run, if there is one.

    The given files are matched to the interrupted uploads by name and size.
    """
    config = Config()
    configure_logging(config=config)
    sources = [LocalFileSource(path) for path in paths]

    async with prepare_core_with_override(
        config=config, core_override=core_override
    ) as orchestrator:
        if orchestrator.restore() is None:
            log.info("There is no interrupted transfer to resume.")
            return None
        with pause_on_interrupt(orchestrator):
            return await orchestrator.resume_all(sources=sources)


async def show_status(
    *,
    core_override: TransferOrchestratorPort | None = None,
) -> TransferOutcome | None:
    """Describe the transfer interrupted in an earlier run, if there is one."""
    config = Config()
    configure_logging(config=config)

    async with prepare_core_with_override(
        config=config, core_override=core_override
    ) as orchestrator:
        session = orchestrator.restore()
        if session is None:
            return None
        return TransferOutcome(
            transfer_id=session.transfer_id,
            files=orchestrator.file_views(),
            download_url=orchestrator.download_url,
        )


async def reset_state(
    *,
    core_override: TransferOrchestratorPort | None = None,
) -> None:
    """Forget any interrupted transfer."""
    config = Config()
    configure_logging(config=config)

    async with prepare_core_with_override(
        config=config, core_override=core_override
    ) as orchestrator:
        orchestrator.reset()
