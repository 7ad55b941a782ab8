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


"""Implements the TransferOrchestrator class driving the uploads of a transfer"""

import asyncio
import logging
from collections.abc import Sequence

from pydantic import UUID4, Field, NonNegativeFloat, NonNegativeInt, PositiveInt
from pydantic_settings import BaseSettings

from tuc.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PART_CONCURRENCY,
    DEFAULT_PART_RETRIES,
    DEFAULT_RETRY_BASE_DELAY,
    MAX_FILE_SIZE,
)
from tuc.core.limiter import ConcurrencyLimiter
from tuc.core.models import (
    FileDescriptor,
    FileStatus,
    FileView,
    PartRange,
    TransferOutcome,
    TransferSession,
)
from tuc.core.part_uploader import PartUploader
from tuc.core.session_state import UploadSessionState
from tuc.core.signals import AbortReason, AbortRegistry, AbortSignal
from tuc.core.validator import SessionValidator
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort
from tuc.ports.outbound.content import ContentSource
from tuc.ports.outbound.state_store import StateStorePort
from tuc.ports.outbound.transfer_api import TransferApiPort

log = logging.getLogger(__name__)

RESUMABLE = (FileStatus.PAUSED, FileStatus.ERROR)


class UploadConfig(BaseSettings):
    """Parameters of the chunked upload protocol"""

    chunk_size: PositiveInt = Field(
        default=DEFAULT_CHUNK_SIZE,
        description="The size in bytes of every part except possibly the last one.",
        examples=[5 * 1024**2, 16 * 1024**2],
    )
    max_file_size: PositiveInt = Field(
        default=MAX_FILE_SIZE,
        description="The largest file size in bytes accepted for upload.",
        examples=[15 * 1024**3],
    )
    part_concurrency: PositiveInt = Field(
        default=DEFAULT_PART_CONCURRENCY,
        description="The maximum number of parts of one file uploaded at once.",
        examples=[4, 8],
    )
    part_retries: NonNegativeInt = Field(
        default=DEFAULT_PART_RETRIES,
        description="How often a failed part upload is retried before giving up.",
        examples=[3],
    )
    retry_base_delay: NonNegativeFloat = Field(
        default=DEFAULT_RETRY_BASE_DELAY,
        description=(
            "Seconds to wait before the first retry of a part. The delay doubles"
            + " with every further retry."
        ),
        examples=[1.0, 0.5],
    )


class TransferOrchestrator(TransferOrchestratorPort):
    """Coordinates the chunked uploads of all files belonging to one transfer.

    The orchestrator owns the abort signals of its files, so pausing or cancelling
    reaches exactly the requests it dispatched. Files are independent of each other:
    a failing file never rolls back or stops a sibling.
    """

    def __init__(
        self,
        *,
        config: UploadConfig,
        transfer_api: TransferApiPort,
        state_store: StateStorePort,
    ):
        self._config = config
        self._transfer_api = transfer_api
        self._state_store = state_store
        self._uploader = PartUploader(
            transfer_api=transfer_api,
            retries=config.part_retries,
            base_delay=config.retry_base_delay,
        )
        self._limiter = ConcurrencyLimiter(limit=config.part_concurrency)
        self._validator = SessionValidator(transfer_api=transfer_api)
        self._signals = AbortRegistry()
        self._session: TransferSession | None = None
        self._states: dict[UUID4, UploadSessionState] = {}

    @property
    def session(self) -> TransferSession | None:
        """The snapshot of the active transfer, if any"""
        return self._session

    @property
    def download_url(self) -> str | None:
        """The shareable link, available once at least one file has completed"""
        if self._session is None or not any(
            state.status is FileStatus.COMPLETED for state in self._states.values()
        ):
            return None
        return self._transfer_api.download_url(transfer_id=self._session.transfer_id)

    def file_views(self) -> list[FileView]:
        """Return what a user interface should display for each file"""
        return [state.view() for state in self._states.values()]

    def _outcome(self, transfer_id: str) -> TransferOutcome:
        return TransferOutcome(
            transfer_id=transfer_id,
            files=self.file_views(),
            download_url=self.download_url,
        )

    def _persist(self, _: UploadSessionState | None = None) -> None:
        """Write the snapshot of all unfinished files to the state store.

        Completed files are left out, and once none are left the snapshot is removed.
        """
        if self._session is None:
            return
        unfinished = [
            state.file
            for state in self._states.values()
            if state.status is not FileStatus.COMPLETED
        ]
        if not unfinished:
            self._clear_store()
            return
        try:
            self._state_store.save(
                self._session.model_copy(update={"files": unfinished})
            )
        except StateStorePort.StateStoreError as err:
            # uploads continue without a snapshot
            log.error(err, extra={"transfer_id": self._session.transfer_id})

    def _clear_store(self) -> None:
        """Remove the persisted snapshot. A failure is logged, not raised."""
        try:
            self._state_store.clear()
        except StateStorePort.StateStoreError as err:
            log.error(err, extra={"transfer_id": self._session_id()})

    def _active_session(self) -> TransferSession:
        if self._session is None:
            raise self.NoActiveTransferError()
        return self._session

    def _get_state(self, file_id: UUID4) -> UploadSessionState:
        if self._session is None:
            raise self.NoActiveTransferError()
        try:
            return self._states[file_id]
        except KeyError as err:
            raise self.UnknownFileError(file_id=file_id) from err

    def _forget(self, *, reason: AbortReason) -> None:
        """Abort everything in flight and drop all in-memory transfer state"""
        self._signals.abort_all(reason)
        self._signals.clear()
        for state in self._states.values():
            state.discard()
        self._states = {}
        self._session = None

    def _check_selection(self, sources: Sequence[ContentSource]) -> None:
        if not sources:
            raise self.InvalidSelectionError(reason="no files were selected")
        for source in sources:
            if source.size <= 0:
                raise self.InvalidSelectionError(reason=f"{source.name} is empty")
            if source.size > self._config.max_file_size:
                raise self.InvalidSelectionError(
                    reason=(
                        f"{source.name} is larger than the maximum of"
                        + f" {self._config.max_file_size} bytes"
                    )
                )

    async def submit(self, *, sources: Sequence[ContentSource]) -> TransferSession:
        """Create a transfer for the given files and assign their upload sessions.

        Any transfer that was active before is forgotten.

        Raises:
        - `InvalidSelectionError` if no files are given or a file has an invalid size.
        - `TransferCreationError` if the server fails to create the transfer.
        """
        self._check_selection(sources)
        if self._session is not None:
            log.info("Replacing active transfer %s.", self._session.transfer_id)
            self._forget(reason=AbortReason.CANCELLED)

        states = [
            UploadSessionState.for_source(
                source=source,
                chunk_size=self._config.chunk_size,
                on_change=self._persist,
            )
            for source in sources
        ]
        descriptors = [
            FileDescriptor(filename=source.name, filesize=source.size)
            for source in sources
        ]
        try:
            created = await self._transfer_api.create_transfer(files=descriptors)
        except TransferApiPort.TransferApiError as err:
            error = self.TransferCreationError(reason=str(err))
            log.error(error, extra={"file_count": len(descriptors)})
            raise error from err

        if len(created.files) != len(states):
            error = self.TransferCreationError(
                reason=(
                    f"expected {len(states)} upload sessions but got"
                    + f" {len(created.files)}"
                )
            )
            log.error(error, extra={"transfer_id": created.transfer_id})
            raise error

        self._session = TransferSession(
            transfer_id=created.transfer_id,
            expires_at=created.expires_at,
            files=[state.file for state in states],
        )
        self._states = {state.id: state for state in states}
        for state, file_session in zip(states, created.files, strict=True):
            state.assign_session(file_session)

        log.info(
            "Transfer %s created with %i file(s).",
            created.transfer_id,
            len(states),
            extra={"transfer_id": created.transfer_id},
        )
        return self._session

    def _begin(self, state: UploadSessionState) -> AbortSignal:
        """Move a file to `uploading` and arm a fresh abort signal for it"""
        state.start()
        return self._signals.arm(state.id)

    async def _upload_parts(
        self, state: UploadSessionState, signal: AbortSignal
    ) -> None:
        """Upload all parts not acknowledged yet, K at a time"""
        file_session = state.session
        source = state.source
        if file_session is None:
            raise self.InvalidTransitionError(
                file_id=state.id,
                status=state.status,
                action="upload without a session",
            )
        if source is None:
            raise self.ContentUnavailableError(file_id=state.id, name=state.file.name)

        async def upload(part: PartRange) -> None:
            signal.raise_if_aborted()
            state.mark_attempted(part.part_number)
            try:
                content = await source.read(start=part.start, end=part.end)
            except OSError as err:
                raise self.ContentUnavailableError(
                    file_id=state.id, name=source.name
                ) from err
            uploaded = await self._uploader.upload(
                session=file_session,
                part=part,
                content=content,
                signal=signal,
                on_progress=state.record_progress,
            )
            state.record_part(uploaded)

        try:
            await self._limiter.run(
                state.pending_parts(),
                upload,
                skip=lambda part: state.has_part(part.part_number),
            )
        except ConcurrencyLimiter.BatchError as err:
            # pause or cancel outranks failures of sibling parts
            for error in err.errors:
                if isinstance(error, self.UploadAbortedError):
                    raise error from err
            raise err.errors[0] from err

    async def _finalize(self, state: UploadSessionState, signal: AbortSignal) -> None:
        """Commit the acknowledged parts of a file, sorted by part number"""
        transfer_id = self._active_session().transfer_id
        file_session = state.session
        if file_session is None:
            raise self.InvalidTransitionError(
                file_id=state.id,
                status=state.status,
                action="finalize without a session",
            )

        if not state.all_parts_uploaded:
            raise self.FinalizeError(
                file_id=state.id,
                reason=(
                    f"only {len(state.file.completed_parts)} of"
                    + f" {state.file.total_parts} parts were uploaded"
                ),
            )

        try:
            result = await signal.guard(
                self._transfer_api.complete_transfer(
                    transfer_id=transfer_id,
                    key=file_session.key,
                    upload_id=file_session.upload_id,
                    parts=state.file.sorted_parts(),
                )
            )
        except TransferApiPort.TransferApiError as err:
            raise self.FinalizeError(file_id=state.id, reason=str(err)) from err
        if not result.success:
            raise self.FinalizeError(
                file_id=state.id, reason="the server reported no success"
            )
        if signal.aborted:
            log.info(
                "File %s was committed before it could be %s.",
                state.id,
                signal.reason,
                extra={"file_id": state.id, "transfer_id": transfer_id},
            )
        state.complete()

    async def _drive(self, state: UploadSessionState, signal: AbortSignal) -> None:
        """Upload and finalize one file. Errors end up in the file's state."""
        extra = {"file_id": state.id, "transfer_id": self._session_id()}
        try:
            await self._upload_parts(state, signal)
            signal.raise_if_aborted()
            await self._finalize(state, signal)
            log.info("Upload of file %s completed.", state.id, extra=extra)
        except self.UploadAbortedError as aborted:
            log.info(aborted, extra=extra)
        except self.UploadError as err:
            if state.fail(str(err)):
                log.error("Upload of file %s failed: %s", state.id, err, extra=extra)
        finally:
            self._signals.release(state.id, signal)

    def _session_id(self) -> str | None:
        return self._session.transfer_id if self._session else None

    async def upload_all(self) -> TransferOutcome:
        """Upload and finalize every file of the active transfer that is ready.

        Files that fail do not affect their siblings. The outcome reflects each
        file's final status.

        Raises:
        - `NoActiveTransferError` if nothing was submitted or restored.
        """
        if self._session is None:
            raise self.NoActiveTransferError()
        transfer_id = self._session.transfer_id

        runs = [
            self._drive(state, self._begin(state))
            for state in self._states.values()
            if state.status is FileStatus.PENDING and state.session is not None
        ]
        await asyncio.gather(*runs)
        return self._outcome(transfer_id)

    async def transfer(self, *, sources: Sequence[ContentSource]) -> TransferOutcome:
        """Submit the given files and upload them in one go"""
        await self.submit(sources=sources)
        return await self.upload_all()

    def pause(self, *, file_id: UUID4) -> None:
        """Pause the upload of a file, aborting its in-flight requests.

        Raises:
        - `UnknownFileError` if the file isn't part of the active transfer.
        - `InvalidTransitionError` if the file is not uploading.
        """
        state = self._get_state(file_id)
        state.pause()
        self._signals.abort(file_id, AbortReason.PAUSED)
        log.info("Paused upload of file %s.", file_id)

    def pause_all(self) -> None:
        """Pause all files that are currently uploading"""
        for state in self._states.values():
            if state.status is FileStatus.UPLOADING:
                self.pause(file_id=state.id)

    def _invalidate(self, reason: str) -> None:
        """Drop the server sessions of all unfinished files and the snapshot"""
        for state in self._states.values():
            if state.status is not FileStatus.COMPLETED:
                self._signals.abort(state.id, AbortReason.CANCELLED)
                state.invalidate(reason)
                state.discard()
        self._clear_store()

    async def _ensure_valid_session(self) -> None:
        """Validate the active transfer with the server, invalidating it if needed.

        Raises:
        - `SessionValidationError` if the server could not be asked.
        - `SessionInvalidatedError` if the server no longer accepts the session.
        """
        session = self._active_session()
        transfer_id = session.transfer_id
        result = await self._validator.validate(
            transfer_id=transfer_id, expires_at=session.expires_at
        )
        if not result.valid:
            reason = result.reason or "Transfer is no longer valid"
            self._invalidate(reason)
            raise self.SessionInvalidatedError(transfer_id=transfer_id, reason=reason)

    def _check_resumable(self, state: UploadSessionState) -> None:
        if state.status not in RESUMABLE:
            raise self.InvalidTransitionError(
                file_id=state.id, status=state.status, action="resume"
            )
        if state.session is None:
            raise self.SessionInvalidatedError(
                transfer_id=self._active_session().transfer_id,
                reason=state.file.error or "upload session was discarded",
            )
        if not state.has_content:
            raise self.ContentUnavailableError(file_id=state.id, name=state.file.name)

    async def resume(
        self, *, file_id: UUID4, source: ContentSource | None = None
    ) -> FileView:
        """Resume a paused or failed file, skipping the parts already uploaded.

        `source` re-attaches the file content after a restart. The transfer is
        always validated with the server before its session is reused.

        Raises:
        - `UnknownFileError` if the file isn't part of the active transfer.
        - `InvalidTransitionError` if the file is neither paused nor failed.
        - `ContentUnavailableError` if the content is gone and no source is given.
        - `ContentMismatchError` if the given source is not the original file.
        - `SessionValidationError` if the server could not be asked.
        - `SessionInvalidatedError` if the server no longer accepts the session.
        """
        state = self._get_state(file_id)
        if source is not None and state.status in RESUMABLE:
            state.attach_source(source)
        self._check_resumable(state)

        await self._ensure_valid_session()
        log.info(
            "Resuming file %s with %i of %i parts uploaded.",
            file_id,
            len(state.file.completed_parts),
            state.file.total_parts,
        )
        await self._drive(state, self._begin(state))
        return state.view()

    async def retry(
        self, *, file_id: UUID4, source: ContentSource | None = None
    ) -> FileView:
        """Retry a failed file. Behaves like `resume` but only accepts `error` files."""
        state = self._get_state(file_id)
        if state.status is not FileStatus.ERROR:
            raise self.InvalidTransitionError(
                file_id=file_id, status=state.status, action="retry"
            )
        return await self.resume(file_id=file_id, source=source)

    def _match_sources(self, sources: Sequence[ContentSource]) -> None:
        """Attach re-selected content to the resumable files lacking it"""
        unused = list(sources)
        for state in self._states.values():
            if state.status not in RESUMABLE or state.has_content:
                continue
            file = state.file
            for source in unused:
                if source.matches(name=file.name, size=file.size):
                    state.attach_source(source)
                    unused.remove(source)
                    break

    async def resume_all(
        self, *, sources: Sequence[ContentSource] = ()
    ) -> TransferOutcome:
        """Resume every paused or failed file of the active transfer.

        Sources are matched to files by name and size. Files whose content is
        still missing are left as they are.

        Raises:
        - `NoActiveTransferError` if nothing was submitted or restored.
        - `SessionValidationError` if the server could not be asked.
        - `SessionInvalidatedError` if the server no longer accepts the session.
        """
        if self._session is None:
            raise self.NoActiveTransferError()
        transfer_id = self._session.transfer_id
        self._match_sources(sources)

        resumable = []
        for state in self._states.values():
            if state.status not in RESUMABLE:
                continue
            try:
                self._check_resumable(state)
            except self.UploadError as err:
                log.warning("Not resuming file %s: %s", state.id, err)
                continue
            resumable.append(state)

        if resumable:
            await self._ensure_valid_session()
            runs = [self._drive(state, self._begin(state)) for state in resumable]
            await asyncio.gather(*runs)
        return self._outcome(transfer_id)

    def cancel(self) -> None:
        """Abort all uploads of the transfer and discard the local state

        Raises `NoActiveTransferError` if there is nothing to cancel.
        """
        if self._session is None:
            raise self.NoActiveTransferError()
        log.info("Cancelling transfer %s.", self._session.transfer_id)
        self._forget(reason=AbortReason.CANCELLED)
        self._clear_store()

    def reset(self) -> None:
        """Forget the active transfer, cancelling anything still in flight"""
        self._forget(reason=AbortReason.CANCELLED)
        self._clear_store()

    def restore(self) -> TransferSession | None:
        """Load the transfer persisted by an earlier run, if there is one.

        Files that were uploading when the earlier run ended count as paused. Files
        that never received a session can't be resumed and are marked as failed.
        None of the restored files has content attached.
        """
        snapshot = self._state_store.load()
        if snapshot is None:
            return None

        self._forget(reason=AbortReason.CANCELLED)
        for file in snapshot.files:
            if file.status is FileStatus.UPLOADING or (
                file.status is FileStatus.PENDING and file.session is not None
            ):
                file.status = FileStatus.PAUSED
            elif file.status is FileStatus.PENDING:
                file.status = FileStatus.ERROR
                file.error = "Upload was interrupted before it started"

        self._session = snapshot
        self._states = {
            file.id: UploadSessionState(file=file, on_change=self._persist)
            for file in snapshot.files
        }
        self._persist()
        log.info(
            "Restored transfer %s with %i unfinished file(s).",
            snapshot.transfer_id,
            len(snapshot.files),
        )
        return snapshot
