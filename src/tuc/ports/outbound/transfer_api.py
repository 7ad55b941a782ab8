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


"""Interface for talking to the transfer service and its blob store"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from tuc.core.models import (
    CompletionResult,
    CreatedTransfer,
    FileDescriptor,
    UploadPart,
    ValidationResult,
)

__all__ = ["ProgressCallback", "TransferApiPort"]

# Called with the number of bytes of the part body sent so far
ProgressCallback = Callable[[int], None]


class TransferApiPort(ABC):
    """Remote operations needed to run a chunked transfer"""

    class TransferApiError(RuntimeError):
        """Base error class for all failed calls to the transfer service"""

    class RequestFailedError(TransferApiError):
        """Raised when a request fails without returning a response code"""

        def __init__(self, *, url: str, reason: str = ""):
            message = f"The request to {url} failed."
            if reason:
                message += f" Reason: {reason}"
            super().__init__(message)

    class BadResponseCodeError(TransferApiError):
        """Raised when a request returns an unexpected response code (e.g. 500)"""

        def __init__(self, *, url: str, response_code: int):
            self.response_code = response_code
            message = f"The request to {url} failed with response code {response_code}"
            super().__init__(message)

    class MalformedResponseError(TransferApiError):
        """Raised when the response body doesn't have the expected shape"""

        def __init__(self, *, url: str):
            message = f"The response from {url} could not be interpreted."
            super().__init__(message)

    @abstractmethod
    async def create_transfer(
        self, *, files: Sequence[FileDescriptor]
    ) -> CreatedTransfer:
        """Create a transfer with one multipart upload session per file.

        The returned file sessions are in the same order as `files`.
        """
        ...

    @abstractmethod
    async def upload_part(
        self,
        *,
        key: str,
        upload_id: str,
        part_number: int,
        content: bytes,
        on_progress: ProgressCallback | None = None,
    ) -> UploadPart:
        """Upload the bytes of one part and return the acknowledged part.

        `on_progress` is called on every progress tick with the bytes sent so far.
        Cancelling the awaiting task aborts the underlying request.
        """
        ...

    @abstractmethod
    async def complete_transfer(
        self,
        *,
        transfer_id: str,
        key: str,
        upload_id: str,
        parts: Sequence[UploadPart],
    ) -> CompletionResult:
        """Commit the uploaded parts of one file. Parts must be sorted by number."""
        ...

    @abstractmethod
    async def validate_transfer(self, *, transfer_id: str) -> ValidationResult:
        """Check that the transfer exists, hasn't expired and isn't complete yet"""
        ...

    @abstractmethod
    def download_url(self, *, transfer_id: str) -> str:
        """Return the shareable link under which the transfer can be downloaded"""
        ...
