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


"""An in-memory stand-in for the transfer service"""

import asyncio
import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from ghga_service_commons.utils.utc_dates import UTCDatetime

from tuc.core.models import (
    CompletionResult,
    CreatedTransfer,
    FileDescriptor,
    FileSessionInfo,
    UploadPart,
    ValidationResult,
)
from tuc.ports.outbound.transfer_api import ProgressCallback, TransferApiPort

SERVICE_URL = "http://transfer.test"


@dataclass
class CompleteCall:
    """The arguments of one finalize request"""

    transfer_id: str
    key: str
    upload_id: str
    parts: list[UploadPart]


@dataclass
class InMemTransfer:
    """What the fake server knows about one transfer"""

    transfer_id: str
    files: list[FileSessionInfo]
    valid: bool = True
    reason: str | None = None
    parts: dict[tuple[str, int], bytes] = field(default_factory=dict)


class InMemTransferApi(TransferApiPort):
    """Behaves like the transfer service and lets tests inject failures.

    - `failures` maps a part number to how many of its next uploads fail.
    - `gates` maps a part number to an event its uploads wait for before answering.
    - `waiting` holds the part numbers currently held up by a gate.
    - `on_commit` is called once a finalize request has committed a file.
    """

    def __init__(self):
        self.transfers: dict[str, InMemTransfer] = {}
        self.objects: dict[str, bytes] = {}
        self.upload_calls: list[tuple[str, int]] = []
        self.complete_calls: list[CompleteCall] = []
        self.validate_calls: list[str] = []
        self.failures: dict[int, int] = {}
        self.gates: dict[int, asyncio.Event] = {}
        self.waiting: set[int] = set()
        self.expires_at: UTCDatetime | None = None
        self.fail_creation = False
        self.missing_sessions = 0
        self.complete_success = True
        self.fail_validation = False
        self.on_commit: Callable[[], None] | None = None

    def gate(self, *part_numbers: int) -> asyncio.Event:
        """Hold up uploads of the given parts until the returned event is set"""
        event = asyncio.Event()
        for part_number in part_numbers:
            self.gates[part_number] = event
        return event

    async def wait_for_waiting(self, count: int) -> None:
        """Wait until `count` uploads are held up by gates"""
        async with asyncio.timeout(5):
            while len(self.waiting) < count:
                await asyncio.sleep(0)

    def invalidate(self, transfer_id: str, reason: str = "Transfer is complete"):
        """Make the server refuse to resume the transfer"""
        transfer = self.transfers[transfer_id]
        transfer.valid = False
        transfer.reason = reason

    def calls_for(self, part_number: int) -> int:
        """Count the upload requests made for a part number, across all files"""
        return sum(1 for _, number in self.upload_calls if number == part_number)

    async def create_transfer(
        self, *, files: Sequence[FileDescriptor]
    ) -> CreatedTransfer:
        url = f"{SERVICE_URL}/api/transfers"
        if self.fail_creation:
            raise self.BadResponseCodeError(url=url, response_code=500)

        transfer_id = f"transfer-{len(self.transfers) + 1}"
        sessions = [
            FileSessionInfo(
                file_id=str(uuid4()),
                filename=file.filename,
                upload_id=f"upload-{uuid4()}",
                key=f"{transfer_id}/{file.filename}",
            )
            for file in files
        ]
        if self.missing_sessions:
            sessions = sessions[: -self.missing_sessions]
        self.transfers[transfer_id] = InMemTransfer(
            transfer_id=transfer_id, files=sessions
        )
        return CreatedTransfer(
            transfer_id=transfer_id, expires_at=self.expires_at, files=sessions
        )

    def _find_transfer(self, upload_id: str) -> InMemTransfer:
        for transfer in self.transfers.values():
            if any(file.upload_id == upload_id for file in transfer.files):
                return transfer
        raise self.BadResponseCodeError(
            url=f"{SERVICE_URL}/api/uploads/chunk", response_code=404
        )

    async def upload_part(
        self,
        *,
        key: str,
        upload_id: str,
        part_number: int,
        content: bytes,
        on_progress: ProgressCallback | None = None,
    ) -> UploadPart:
        self.upload_calls.append((upload_id, part_number))
        transfer = self._find_transfer(upload_id)

        if gate := self.gates.get(part_number):
            self.waiting.add(part_number)
            try:
                await gate.wait()
            finally:
                self.waiting.discard(part_number)

        if self.failures.get(part_number, 0) > 0:
            self.failures[part_number] -= 1
            raise self.RequestFailedError(
                url=f"{SERVICE_URL}/api/uploads/chunk", reason="connection reset"
            )

        if on_progress is not None:
            on_progress(len(content))
        transfer.parts[(upload_id, part_number)] = content
        etag = hashlib.md5(content, usedforsecurity=False).hexdigest()
        return UploadPart(part_number=part_number, etag=f'"{etag}"')

    async def complete_transfer(
        self,
        *,
        transfer_id: str,
        key: str,
        upload_id: str,
        parts: Sequence[UploadPart],
    ) -> CompletionResult:
        self.complete_calls.append(
            CompleteCall(
                transfer_id=transfer_id, key=key, upload_id=upload_id, parts=list(parts)
            )
        )
        if not self.complete_success:
            return CompletionResult(success=False)

        transfer = self.transfers[transfer_id]
        numbers = [part.part_number for part in parts]
        if numbers != sorted(numbers):
            raise self.BadResponseCodeError(
                url=f"{SERVICE_URL}/api/transfers/complete", response_code=400
            )
        data = b"".join(transfer.parts[(upload_id, number)] for number in numbers)
        self.objects[key] = data
        if self.on_commit is not None:
            self.on_commit()
        return CompletionResult(success=True, object={"key": key, "size": len(data)})

    async def validate_transfer(self, *, transfer_id: str) -> ValidationResult:
        self.validate_calls.append(transfer_id)
        if self.fail_validation:
            raise self.RequestFailedError(
                url=f"{SERVICE_URL}/api/transfers/{transfer_id}/validate",
                reason="network unreachable",
            )
        transfer = self.transfers.get(transfer_id)
        if transfer is None:
            return ValidationResult(valid=False, reason="Transfer not found")
        return ValidationResult(valid=transfer.valid, reason=transfer.reason)

    def download_url(self, *, transfer_id: str) -> str:
        return f"{SERVICE_URL}/download/{transfer_id}"
