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


"""Bounded concurrent dispatch of part uploads"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

__all__ = ["ConcurrencyLimiter"]

T = TypeVar("T")


class ConcurrencyLimiter:
    """Runs a handler over a queue of items with at most `limit` calls in flight.

    Every item is dispatched at most once per run. Items for which `skip` returns
    True at the moment they come up are not dispatched at all. As soon as one call
    fails, no further items are dispatched; calls already in flight are allowed to
    settle before the failures are raised together.
    """

    class BatchError(RuntimeError):
        """Raised when at least one dispatched call failed"""

        def __init__(self, *, errors: list[Exception]):
            self.errors = errors
            msg = f"{len(errors)} dispatched call(s) failed, first: {errors[0]}"
            super().__init__(msg)

    def __init__(self, *, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}.")
        self._limit = limit

    @property
    def limit(self) -> int:
        return self._limit

    async def run(
        self,
        items: Iterable[T],
        handler: Callable[[T], Awaitable[object]],
        *,
        skip: Callable[[T], bool] | None = None,
    ) -> int:
        """Dispatch `handler` for the items in order and return how many calls
        were made.

        Raises `BatchError` carrying every failure once all calls have settled.
        """
        queue = iter(items)
        errors: list[Exception] = []
        dispatched = 0

        def take() -> tuple[bool, T | None]:
            for item in queue:
                if skip is None or not skip(item):
                    return True, item
            return False, None

        async def worker() -> None:
            nonlocal dispatched
            while not errors:
                found, item = take()
                if not found:
                    return
                dispatched += 1
                try:
                    await handler(item)  # type: ignore[arg-type]
                except Exception as err:
                    errors.append(err)

        await asyncio.gather(*(worker() for _ in range(self._limit)))

        if errors:
            raise self.BatchError(errors=errors)
        return dispatched
