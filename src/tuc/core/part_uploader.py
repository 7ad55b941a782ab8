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


"""Upload of a single part with bounded retries and byte-level progress"""

import logging
from collections.abc import Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tuc.core.models import FileSessionInfo, PartRange, UploadPart
from tuc.core.signals import AbortSignal
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort
from tuc.ports.outbound.transfer_api import TransferApiPort

log = logging.getLogger(__name__)

# Called with the part number and the bytes of it sent so far
PartProgressCallback = Callable[[int, int], None]


class PartUploader:
    """Uploads one part at a time through the transfer API.

    Failed attempts are retried up to `retries` more times, waiting
    `base_delay * 2**n` seconds before the n-th retry. A fired abort signal ends
    the upload immediately, whether a request is in flight or a retry is pending,
    and never counts as an attempt.
    """

    def __init__(
        self, *, transfer_api: TransferApiPort, retries: int, base_delay: float
    ):
        self._transfer_api = transfer_api
        self._max_attempts = retries + 1
        self._base_delay = base_delay

    async def upload(
        self,
        *,
        session: FileSessionInfo,
        part: PartRange,
        content: bytes,
        signal: AbortSignal,
        on_progress: PartProgressCallback | None = None,
    ) -> UploadPart:
        """Upload `content` as the given part of the session and return the
        acknowledged part.

        Raises:
        - `UploadPausedError` or `UploadCancelledError` if the signal fires.
        - `PartUploadFailedError` if all attempts failed.
        """
        part_number = part.part_number
        extra = {
            "file_id": signal.file_id,
            "upload_id": session.upload_id,
            "part_number": part_number,
        }

        def report(sent: int) -> None:
            if on_progress is not None:
                on_progress(part_number, sent)

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "Attempt %i of %i to upload part %i failed: %s",
                retry_state.attempt_number,
                self._max_attempts,
                part_number,
                error,
                extra=extra,
            )

        signal.raise_if_aborted()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._base_delay, exp_base=2, min=0),
            retry=retry_if_exception_type(TransferApiPort.TransferApiError),
            sleep=signal.sleep,
            before_sleep=log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    report(0)  # a retry starts the part over
                    uploaded = await signal.guard(
                        self._transfer_api.upload_part(
                            key=session.key,
                            upload_id=session.upload_id,
                            part_number=part_number,
                            content=content,
                            on_progress=report,
                        )
                    )
        except RetryError as err:
            last_error = err.last_attempt.exception()
            error = TransferOrchestratorPort.PartUploadFailedError(
                part_number=part_number,
                attempts=self._max_attempts,
                reason=str(last_error) if last_error else "",
            )
            log.error(error, extra=extra)
            raise error from last_error

        report(part.size)
        log.debug(
            "Part %i uploaded with ETag %s", part_number, uploaded.etag, extra=extra
        )
        return uploaded
