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


"""Defines dataclasses for holding business-logic data"""

from enum import StrEnum
from math import ceil
from typing import Any
from uuid import uuid4

from ghga_service_commons.utils.utc_dates import UTCDatetime
from pydantic import (
    UUID4,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
)


class FileStatus(StrEnum):
    """The states a single file upload can be in"""

    PENDING = "pending"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class UploadPart(BaseModel):
    """A part acknowledged by the blob store, identified by its ETag"""

    model_config = ConfigDict(frozen=True)

    part_number: PositiveInt
    etag: str


class PartRange(BaseModel):
    """The byte range `[start, end)` of the file that makes up one part"""

    model_config = ConfigDict(frozen=True)

    part_number: PositiveInt
    start: NonNegativeInt
    end: NonNegativeInt

    @property
    def size(self) -> int:
        """The number of bytes in this part"""
        return self.end - self.start


class FileDescriptor(BaseModel):
    """What the server needs to know about a file to open an upload session for it"""

    filename: str
    filesize: NonNegativeInt


class FileSessionInfo(BaseModel):
    """The multipart upload session the server assigned to one file"""

    model_config = ConfigDict(frozen=True)

    file_id: str
    filename: str
    upload_id: str
    key: str  # the object key in storage


class CreatedTransfer(BaseModel):
    """The server's answer to a transfer creation request"""

    transfer_id: str
    expires_at: UTCDatetime | None = None
    files: list[FileSessionInfo]


class CompletionResult(BaseModel):
    """The server's answer to a finalize request"""

    success: bool
    object: dict[str, Any] | None = None


class ValidationResult(BaseModel):
    """Whether a transfer session can still be used for resuming"""

    valid: bool
    reason: str | None = None


class FileUploadState(BaseModel):
    """Serializable state of one file within a transfer.

    The raw file content is deliberately not part of this model since it cannot
    be persisted across a restart.
    """

    id: UUID4 = Field(default_factory=uuid4)
    name: str
    size: NonNegativeInt
    chunk_size: PositiveInt
    session: FileSessionInfo | None = None  # None until assigned, or after invalidation
    status: FileStatus = FileStatus.PENDING
    completed_parts: dict[int, UploadPart] = {}  # keyed by part number
    current_part: NonNegativeInt = 0  # highest part number attempted
    error: str | None = None

    @property
    def total_parts(self) -> int:
        """The number of parts this file is split into"""
        return ceil(self.size / self.chunk_size)

    def sorted_parts(self) -> list[UploadPart]:
        """Return the completed parts ordered by part number, as needed for finalize"""
        return [self.completed_parts[number] for number in sorted(self.completed_parts)]


class TransferSession(BaseModel):
    """Client-side mirror of a transfer, used as the persisted snapshot"""

    transfer_id: str
    expires_at: UTCDatetime | None = None
    files: list[FileUploadState] = []


class FileView(BaseModel):
    """What a user interface gets to see of a file upload"""

    id: UUID4
    name: str
    size: int
    progress: int = Field(..., ge=0, le=100)
    status: FileStatus
    error: str | None = None


class TransferOutcome(BaseModel):
    """Summary of a transfer after an upload run has settled"""

    transfer_id: str
    files: list[FileView]
    download_url: str | None = None  # set once at least one file has completed
