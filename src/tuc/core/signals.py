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


"""Cooperative pause and cancel signals for in-flight uploads"""

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from enum import StrEnum
from typing import TypeVar

from pydantic import UUID4

from tuc.ports.inbound.orchestrator import TransferOrchestratorPort

log = logging.getLogger(__name__)

T = TypeVar("T")


class AbortReason(StrEnum):
    """Why the uploads of a file were stopped"""

    PAUSED = "paused"
    CANCELLED = "cancelled"


class AbortSignal:
    """A one-shot flag telling the uploads of one file to stop.

    Awaitables run through `guard()` are abandoned as soon as the signal fires,
    which aborts the underlying network request.
    """

    def __init__(self, *, file_id: UUID4):
        self.file_id = file_id
        self._reason: AbortReason | None = None
        self._event = asyncio.Event()

    @property
    def reason(self) -> AbortReason | None:
        """The reason given when the signal fired, or None if it hasn't"""
        return self._reason

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    def abort(self, reason: AbortReason) -> None:
        """Fire the signal. Only the first reason given sticks."""
        if self._reason is None:
            self._reason = reason
            self._event.set()
            log.debug("Abort signal for file %s fired (%s).", self.file_id, reason)

    def raise_if_aborted(self) -> None:
        """Raise the matching control flow error if the signal has fired"""
        if self._reason is AbortReason.PAUSED:
            raise TransferOrchestratorPort.UploadPausedError(file_id=self.file_id)
        if self._reason is AbortReason.CANCELLED:
            raise TransferOrchestratorPort.UploadCancelledError(file_id=self.file_id)

    async def sleep(self, seconds: float) -> None:
        """Sleep, but wake up and raise as soon as the signal fires"""
        self.raise_if_aborted()
        with suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        self.raise_if_aborted()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the signal fires first, in which case it is
        cancelled and the matching control flow error is raised.
        """
        task = asyncio.ensure_future(awaitable)
        if self.aborted:
            task.cancel()
            self.raise_if_aborted()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if not task.done():
            # signal fired first, let the request wind down before raising
            with suppress(asyncio.CancelledError):
                await task
            self.raise_if_aborted()
        return task.result()


class AbortRegistry:
    """Holds the current abort signal of every file in a transfer"""

    def __init__(self):
        self._signals: dict[UUID4, AbortSignal] = {}

    def arm(self, file_id: UUID4) -> AbortSignal:
        """Return a fresh signal for a new upload attempt of the given file"""
        signal = AbortSignal(file_id=file_id)
        self._signals[file_id] = signal
        return signal

    def get(self, file_id: UUID4) -> AbortSignal | None:
        return self._signals.get(file_id)

    def abort(self, file_id: UUID4, reason: AbortReason) -> None:
        """Fire the signal of one file, if it has one"""
        if signal := self._signals.get(file_id):
            signal.abort(reason)

    def abort_all(self, reason: AbortReason) -> None:
        """Fire the signals of all files"""
        for signal in self._signals.values():
            signal.abort(reason)

    def release(self, file_id: UUID4, signal: AbortSignal) -> None:
        """Forget the signal of a file once its upload attempt has settled.

        A newer signal armed in the meantime is left in place.
        """
        if self._signals.get(file_id) is signal:
            del self._signals[file_id]

    def clear(self) -> None:
        self._signals.clear()
