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


"""Defines the main transfer orchestrator class"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import UUID4

from tuc.core.models import FileStatus, FileView, TransferOutcome, TransferSession
from tuc.ports.outbound.content import ContentSource


class TransferOrchestratorPort(ABC):
    """A class driving chunked uploads of all files of one transfer"""

    class UploadError(RuntimeError):
        """Base error class for all upload errors"""

    class UploadAbortedError(UploadError):
        """Raised when a user action stopped the upload of a file.

        This is a control flow signal, not a failure to be displayed.
        """

        def __init__(self, *, file_id: UUID4, action: str):
            self.file_id = file_id
            msg = f"Upload of file {file_id} was {action}."
            super().__init__(msg)

    class UploadPausedError(UploadAbortedError):
        """Raised when the upload of a file was paused by the user"""

        def __init__(self, *, file_id: UUID4):
            super().__init__(file_id=file_id, action="paused")

    class UploadCancelledError(UploadAbortedError):
        """Raised when the whole transfer was cancelled by the user"""

        def __init__(self, *, file_id: UUID4):
            super().__init__(file_id=file_id, action="cancelled")

    class PartUploadFailedError(UploadError):
        """Raised when a part could not be uploaded within the retry bound"""

        def __init__(self, *, part_number: int, attempts: int, reason: str):
            self.part_number = part_number
            msg = f"Failed to upload part {part_number} after {attempts} attempts"
            if reason:
                msg += f": {reason}"
            super().__init__(msg)

    class InvalidSelectionError(UploadError):
        """Raised when the selected files can't be submitted as a transfer"""

        def __init__(self, *, reason: str):
            msg = f"The selected files can't be uploaded: {reason}"
            super().__init__(msg)

    class TransferCreationError(UploadError):
        """Raised when the server failed to create the transfer"""

        def __init__(self, *, reason: str):
            msg = f"Failed to create the transfer: {reason}"
            super().__init__(msg)

    class NoActiveTransferError(UploadError):
        """Raised when an operation needs a transfer but none is active"""

        def __init__(self):
            super().__init__("There is no active transfer.")

    class UnknownFileError(UploadError):
        """Raised when a file ID doesn't belong to the active transfer"""

        def __init__(self, *, file_id: UUID4):
            msg = f"File {file_id} is not part of the active transfer."
            super().__init__(msg)

    class InvalidTransitionError(UploadError):
        """Raised when an action isn't allowed in the current status of a file"""

        def __init__(self, *, file_id: UUID4, status: FileStatus, action: str):
            self.status = status
            msg = f"Can't {action} file {file_id} while it is {status}."
            super().__init__(msg)

    class ContentUnavailableError(UploadError):
        """Raised when resuming a file whose content is no longer held in memory"""

        def __init__(self, *, file_id: UUID4, name: str):
            msg = (
                f"The content of file {file_id} ({name}) is not available anymore."
                + " Select the same file again to resume the upload."
            )
            super().__init__(msg)

    class ContentMismatchError(UploadError):
        """Raised when a re-selected file doesn't match the one selected before"""

        def __init__(self, *, file_id: UUID4, expected: str, actual: str):
            msg = (
                f"The selected file {actual} doesn't match {expected}, the file"
                + f" previously selected for upload {file_id}."
            )
            super().__init__(msg)

    class SessionInvalidatedError(UploadError):
        """Raised when the server no longer accepts the transfer session.

        Local session state has been discarded by the time this is raised and the
        files have to be uploaded again as a new transfer.
        """

        def __init__(self, *, transfer_id: str, reason: str):
            self.reason = reason
            msg = (
                f"Transfer {transfer_id} can't be resumed ({reason})."
                + " Please start a new upload."
            )
            super().__init__(msg)

    class SessionValidationError(UploadError):
        """Raised when it couldn't be determined whether a session is still valid"""

        def __init__(self, *, transfer_id: str, reason: str):
            msg = f"Failed to validate transfer {transfer_id}: {reason}"
            super().__init__(msg)

    class FinalizeError(UploadError):
        """Raised when the server refused to commit the parts of a file"""

        def __init__(self, *, file_id: UUID4, reason: str):
            msg = f"Failed to finalize the upload of file {file_id}: {reason}"
            super().__init__(msg)

    @property
    @abstractmethod
    def session(self) -> TransferSession | None:
        """The snapshot of the active transfer, if any"""
        ...

    @property
    @abstractmethod
    def download_url(self) -> str | None:
        """The shareable link, available once at least one file has completed"""
        ...

    @abstractmethod
    def file_views(self) -> list[FileView]:
        """Return what a user interface should display for each file"""
        ...

    @abstractmethod
    async def submit(self, *, sources: Sequence[ContentSource]) -> TransferSession:
        """Create a transfer for the given files and assign their upload sessions.

        Raises:
        - `InvalidSelectionError` if no files are given or a file has an invalid size.
        - `TransferCreationError` if the server fails to create the transfer.
        """
        ...

    @abstractmethod
    async def upload_all(self) -> TransferOutcome:
        """Upload and finalize every file of the active transfer that is ready.

        Files that fail do not affect their siblings. The outcome reflects each
        file's final status.

        Raises:
        - `NoActiveTransferError` if nothing was submitted or restored.
        """
        ...

    @abstractmethod
    async def transfer(self, *, sources: Sequence[ContentSource]) -> TransferOutcome:
        """Submit the given files and upload them in one go"""
        ...

    @abstractmethod
    def pause(self, *, file_id: UUID4) -> None:
        """Pause the upload of a file, aborting its in-flight requests.

        Raises:
        - `UnknownFileError` if the file isn't part of the active transfer.
        - `InvalidTransitionError` if the file is not uploading.
        """
        ...

    @abstractmethod
    def pause_all(self) -> None:
        """Pause all files that are currently uploading"""
        ...

    @abstractmethod
    async def resume(
        self, *, file_id: UUID4, source: ContentSource | None = None
    ) -> FileView:
        """Resume a paused or failed file, skipping the parts already uploaded.

        `source` re-attaches the file content after a restart.

        Raises:
        - `UnknownFileError` if the file isn't part of the active transfer.
        - `InvalidTransitionError` if the file is neither paused nor failed.
        - `ContentUnavailableError` if the content is gone and no source is given.
        - `ContentMismatchError` if the given source is not the original file.
        - `SessionValidationError` if the server could not be asked.
        - `SessionInvalidatedError` if the server no longer accepts the session.
        """
        ...

    @abstractmethod
    async def retry(
        self, *, file_id: UUID4, source: ContentSource | None = None
    ) -> FileView:
        """Retry a failed file. Behaves like `resume` but only accepts `error` files."""
        ...

    @abstractmethod
    async def resume_all(
        self, *, sources: Sequence[ContentSource] = ()
    ) -> TransferOutcome:
        """Resume every paused or failed file of the active transfer.

        Sources are matched to files by name and size.

        Raises:
        - `NoActiveTransferError` if nothing was submitted or restored.
        - `SessionValidationError` if the server could not be asked.
        - `SessionInvalidatedError` if the server no longer accepts the session.
        """
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Abort all uploads of the transfer and discard the local state"""
        ...

    @abstractmethod
    def reset(self) -> None:
        """Forget the active transfer, cancelling anything still in flight"""
        ...

    @abstractmethod
    def restore(self) -> TransferSession | None:
        """Load the transfer persisted by an earlier run, if there is one"""
        ...
