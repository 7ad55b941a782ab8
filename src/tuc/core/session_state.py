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


"""The state machine of a single file upload"""

import logging
from collections.abc import Callable

from pydantic import UUID4

from tuc.core.models import (
    FileSessionInfo,
    FileStatus,
    FileUploadState,
    FileView,
    PartRange,
    UploadPart,
)
from tuc.core.slicing import get_part, slice_parts
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort
from tuc.ports.outbound.content import ContentSource

log = logging.getLogger(__name__)

ChangeCallback = Callable[["UploadSessionState"], None]

ERRORS = TransferOrchestratorPort


class UploadSessionState:
    """Tracks the status and the acknowledged parts of one file.

    The allowed transitions are:
    - pending -> uploading, once the server has assigned a session
    - uploading -> paused | error | completed
    - paused | error -> uploading, when resuming with the content at hand

    Every change is reported to `on_change` so it can be persisted. Results that
    arrive while the file is not uploading (e.g. a part acknowledged right after a
    pause) are discarded.
    """

    def __init__(
        self,
        *,
        file: FileUploadState,
        source: ContentSource | None = None,
        on_change: ChangeCallback | None = None,
    ):
        self._file = file
        self._source = source
        self._on_change = on_change
        self._in_flight: dict[int, int] = {}  # part number -> bytes sent
        self._discarded = False

    @classmethod
    def for_source(
        cls,
        *,
        source: ContentSource,
        chunk_size: int,
        on_change: ChangeCallback | None = None,
    ) -> "UploadSessionState":
        """Create the state of a freshly selected file"""
        file = FileUploadState(
            name=source.name, size=source.size, chunk_size=chunk_size
        )
        return cls(file=file, source=source, on_change=on_change)

    @property
    def id(self) -> UUID4:
        return self._file.id

    @property
    def file(self) -> FileUploadState:
        """The serializable part of the state"""
        return self._file

    @property
    def status(self) -> FileStatus:
        return self._file.status

    @property
    def session(self) -> FileSessionInfo | None:
        return self._file.session

    @property
    def source(self) -> ContentSource | None:
        return self._source

    @property
    def has_content(self) -> bool:
        return self._source is not None

    @property
    def all_parts_uploaded(self) -> bool:
        return len(self._file.completed_parts) == self._file.total_parts

    def _changed(self) -> None:
        if self._on_change is not None and not self._discarded:
            self._on_change(self)

    def _check_status(self, action: str, *allowed: FileStatus) -> None:
        if self._discarded or self._file.status not in allowed:
            raise ERRORS.InvalidTransitionError(
                file_id=self.id, status=self._file.status, action=action
            )

    def attach_source(self, source: ContentSource) -> None:
        """Re-attach the content of the file, e.g. after a restart.

        Raises `ContentMismatchError` if name or size differ from the original.
        """
        file = self._file
        if not source.matches(name=file.name, size=file.size):
            raise ERRORS.ContentMismatchError(
                file_id=self.id,
                expected=f"{file.name} ({file.size} bytes)",
                actual=f"{source.name} ({source.size} bytes)",
            )
        self._source = source

    def assign_session(self, session: FileSessionInfo) -> None:
        """Store the identifiers of the multipart upload the server opened.

        A session can only be assigned once. A file that lost its session needs
        a new state object.
        """
        self._check_status("assign a session to", FileStatus.PENDING)
        if self._file.session is not None:
            raise ERRORS.InvalidTransitionError(
                file_id=self.id, status=self._file.status, action="reassign"
            )
        self._file.session = session
        self._changed()

    def start(self) -> None:
        """Move to `uploading`, from `pending` or when resuming.

        Raises:
        - `InvalidTransitionError` if the status doesn't allow it or there is no
          session to upload into.
        - `ContentUnavailableError` if the file content is not at hand.
        """
        self._check_status(
            "start", FileStatus.PENDING, FileStatus.PAUSED, FileStatus.ERROR
        )
        if self._file.session is None:
            raise ERRORS.InvalidTransitionError(
                file_id=self.id,
                status=self._file.status,
                action="upload without a session",
            )
        if self._source is None:
            raise ERRORS.ContentUnavailableError(file_id=self.id, name=self._file.name)

        self._in_flight.clear()
        self._file.status = FileStatus.UPLOADING
        self._file.error = None
        self._changed()

    def pending_parts(self) -> list[PartRange]:
        """Return the parts that have not been acknowledged yet, in order"""
        file = self._file
        return [
            part
            for part in slice_parts(file.size, file.chunk_size)
            if part.part_number not in file.completed_parts
        ]

    def has_part(self, part_number: int) -> bool:
        return part_number in self._file.completed_parts

    def mark_attempted(self, part_number: int) -> None:
        """Note that the upload of a part is about to begin"""
        if self._discarded or self._file.status is not FileStatus.UPLOADING:
            return
        if part_number > self._file.current_part:
            self._file.current_part = part_number
            self._changed()

    def record_progress(self, part_number: int, sent: int) -> None:
        """Note how many bytes of an in-flight part have been sent"""
        if self._discarded or self._file.status is not FileStatus.UPLOADING:
            return
        self._in_flight[part_number] = sent

    def record_part(self, part: UploadPart) -> bool:
        """Add an acknowledged part. Returns False if the result came too late.

        Recording the same part number again replaces the earlier entry.
        """
        if self._discarded or self._file.status is not FileStatus.UPLOADING:
            log.debug(
                "Discarding part %i of file %s acknowledged while %s.",
                part.part_number,
                self.id,
                self._file.status,
            )
            return False
        self._in_flight.pop(part.part_number, None)
        self._file.completed_parts[part.part_number] = part
        self._changed()
        return True

    def pause(self) -> None:
        """Move from `uploading` to `paused`, keeping all acknowledged parts"""
        self._check_status("pause", FileStatus.UPLOADING)
        self._in_flight.clear()
        self._file.status = FileStatus.PAUSED
        self._changed()

    def fail(self, message: str) -> bool:
        """Move from `uploading` to `error`. Returns False if the file had already
        left `uploading`, in which case nothing changes.
        """
        if self._discarded or self._file.status is not FileStatus.UPLOADING:
            return False
        self._in_flight.clear()
        self._file.status = FileStatus.ERROR
        self._file.error = message
        self._changed()
        return True

    def complete(self) -> None:
        """Move to `completed` after a successful finalize.

        A file paused while the finalize call was in flight is completed as well,
        since the server has already committed it.
        """
        self._check_status("complete", FileStatus.UPLOADING, FileStatus.PAUSED)
        if not self.all_parts_uploaded:
            raise ERRORS.InvalidTransitionError(
                file_id=self.id,
                status=self._file.status,
                action="complete with missing parts",
            )
        self._in_flight.clear()
        self._file.status = FileStatus.COMPLETED
        self._changed()

    def invalidate(self, reason: str) -> None:
        """Forget the server session along with every part uploaded into it and
        move to `error`, asking the user to start over.
        """
        file = self._file
        file.session = None
        file.completed_parts = {}
        file.current_part = 0
        file.status = FileStatus.ERROR
        file.error = f"{reason}. Please start a new upload for this file."
        self._in_flight.clear()
        self._changed()

    def discard(self) -> None:
        """Detach this state from persistence and ignore all further results"""
        self._discarded = True
        self._in_flight.clear()

    def progress(self) -> int:
        """Return the upload progress in percent, counting partially sent parts"""
        file = self._file
        if file.status is FileStatus.COMPLETED:
            return 100
        if file.size == 0:
            return 0
        done = sum(
            get_part(number, byte_length=file.size, chunk_size=file.chunk_size).size
            for number in file.completed_parts
        )
        done += sum(self._in_flight.values())
        return min(100, done * 100 // file.size)

    def view(self) -> FileView:
        return FileView(
            id=self.id,
            name=self._file.name,
            size=self._file.size,
            progress=self.progress(),
            status=self._file.status,
            error=self._file.error,
        )
