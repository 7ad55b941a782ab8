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


"""Tests for the abort signals"""

import asyncio
from uuid import uuid4

import pytest

from tuc.core.signals import AbortReason, AbortRegistry, AbortSignal
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort

pytestmark = pytest.mark.asyncio()


async def test_first_reason_sticks():
    """A cancel after a pause doesn't change the reason"""
    signal = AbortSignal(file_id=uuid4())
    assert not signal.aborted
    signal.raise_if_aborted()

    signal.abort(AbortReason.PAUSED)
    signal.abort(AbortReason.CANCELLED)

    assert signal.reason is AbortReason.PAUSED
    with pytest.raises(TransferOrchestratorPort.UploadPausedError):
        signal.raise_if_aborted()


async def test_guard_returns_result():
    """Without an abort, the guarded awaitable's result is passed through"""
    signal = AbortSignal(file_id=uuid4())

    async def answer() -> int:
        await asyncio.sleep(0)
        return 42

    assert await signal.guard(answer()) == 42


async def test_guard_cancels_on_abort():
    """The guarded work is cancelled as soon as the signal fires"""
    signal = AbortSignal(file_id=uuid4())
    started = asyncio.Event()
    cancelled = False

    async def request() -> None:
        nonlocal cancelled
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled = True
            raise

    guarded = asyncio.create_task(signal.guard(request()))
    await started.wait()
    signal.abort(AbortReason.CANCELLED)

    with pytest.raises(TransferOrchestratorPort.UploadCancelledError):
        await guarded
    assert cancelled


async def test_sleep_is_cut_short():
    """Sleeping ends with an error once the signal fires"""
    signal = AbortSignal(file_id=uuid4())
    sleeper = asyncio.create_task(signal.sleep(30))
    await asyncio.sleep(0)
    signal.abort(AbortReason.PAUSED)

    async with asyncio.timeout(5):
        with pytest.raises(TransferOrchestratorPort.UploadPausedError):
            await sleeper


async def test_registry_keeps_newer_signal_on_release():
    """Releasing a stale signal leaves a freshly armed one in place"""
    registry = AbortRegistry()
    file_id = uuid4()
    old = registry.arm(file_id)
    new = registry.arm(file_id)

    registry.release(file_id, old)
    assert registry.get(file_id) is new

    registry.abort_all(AbortReason.CANCELLED)
    assert new.aborted
    assert not old.aborted

    registry.release(file_id, new)
    assert registry.get(file_id) is None
