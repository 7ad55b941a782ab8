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


"""Tests for the TransferOrchestrator class"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from hexkit.utils import now_utc_ms_prec

from tests_tuc.fixtures.joint import JointRig
from tests_tuc.fixtures.utils import make_source
from tuc.core.models import FileStatus
from tuc.core.session_state import UploadSessionState
from tuc.core.signals import AbortSignal
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort

pytestmark = pytest.mark.asyncio()

TEN_PARTS = 10 * 1024 - 100  # with the 1 KiB chunks of the test config


async def _pause_after_three_parts(rig: JointRig, size: int = TEN_PARTS):
    """Start uploading a ten-part file and pause it once parts 1-3 are done
    while parts 4 and 5 are in flight
    """
    orchestrator = rig.orchestrator
    source = make_source("big.bin", size)
    session = await orchestrator.submit(sources=[source])
    file_id = session.files[0].id

    rig.transfer_api.gate(4, 5)
    upload = asyncio.create_task(orchestrator.upload_all())
    await rig.transfer_api.wait_for_waiting(2)
    orchestrator.pause(file_id=file_id)
    outcome = await upload
    rig.transfer_api.gates.clear()
    return source, file_id, outcome


async def test_transfer_single_file(rig: JointRig):
    """A file is uploaded part by part and finalized with sorted parts"""
    source = make_source("data.bin", 3000)
    outcome = await rig.orchestrator.transfer(sources=[source])

    (view,) = outcome.files
    assert view.status is FileStatus.COMPLETED
    assert view.progress == 100
    download_url = f"http://transfer.test/download/{outcome.transfer_id}"
    assert outcome.download_url == download_url

    (call,) = rig.transfer_api.complete_calls
    assert [part.part_number for part in call.parts] == [1, 2, 3]
    assert rig.transfer_api.objects[call.key] == await source.read(start=0, end=3000)
    assert rig.state_store.snapshot is None


async def test_transfer_several_files(rig: JointRig):
    """Every file gets its own session and is finalized separately"""
    sources = [make_source(f"file{i}.bin", 1500 * i, offset=i) for i in (1, 2, 3)]
    outcome = await rig.orchestrator.transfer(sources=sources)

    names = [view.name for view in outcome.files]
    assert names == ["file1.bin", "file2.bin", "file3.bin"]
    assert all(view.status is FileStatus.COMPLETED for view in outcome.files)
    assert len(rig.transfer_api.complete_calls) == 3
    assert len({call.upload_id for call in rig.transfer_api.complete_calls}) == 3
    assert len(rig.transfer_api.transfers) == 1


async def test_snapshot_is_kept_up_to_date(rig: JointRig):
    """The snapshot mirrors the unfinished files while uploading"""
    session = await rig.orchestrator.submit(sources=[make_source("a.bin", 2000)])

    snapshot = rig.state_store.snapshot
    assert snapshot is not None
    assert snapshot.transfer_id == session.transfer_id
    assert snapshot.files[0].session is not None
    assert snapshot.files[0].status is FileStatus.PENDING

    await rig.orchestrator.upload_all()
    assert rig.state_store.snapshot is None
    assert rig.state_store.saves > 2


@pytest.mark.parametrize(
    "sizes",
    [[], [0], [10, 2 * 1024 * 1024]],
    ids=["nothing", "empty_file", "too_large"],
)
async def test_invalid_selection(rig: JointRig, sizes: list[int]):
    """Invalid selections are refused before the server is contacted"""
    sources = [make_source(f"f{i}.bin", size) for i, size in enumerate(sizes)]
    with pytest.raises(TransferOrchestratorPort.InvalidSelectionError):
        await rig.orchestrator.submit(sources=sources)
    assert rig.transfer_api.transfers == {}
    assert rig.orchestrator.session is None


async def test_transfer_creation_fails(rig: JointRig):
    """A server error during creation leaves no transfer behind"""
    rig.transfer_api.fail_creation = True
    with pytest.raises(TransferOrchestratorPort.TransferCreationError):
        await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    assert rig.orchestrator.session is None


async def test_too_few_sessions_from_server(rig: JointRig):
    """The server must open one session per file"""
    rig.transfer_api.missing_sessions = 1
    sources = [make_source("a.bin", 100), make_source("b.bin", 100)]
    with pytest.raises(TransferOrchestratorPort.TransferCreationError):
        await rig.orchestrator.submit(sources=sources)
    assert rig.orchestrator.session is None


async def test_transient_part_failure_is_retried(rig: JointRig):
    """A part that fails once is retried and the file still completes"""
    rig.transfer_api.failures[2] = 1
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 3000)])

    assert outcome.files[0].status is FileStatus.COMPLETED
    assert rig.transfer_api.calls_for(2) == 2


async def test_failing_file_does_not_affect_siblings(rig: JointRig):
    """A file whose part keeps failing ends in error while the others complete"""
    rig.transfer_api.failures[3] = 100
    small = make_source("small.bin", 2000)  # two parts, never hits part 3
    large = make_source("large.bin", 5000)
    outcome = await rig.orchestrator.transfer(sources=[small, large])

    views = {view.name: view for view in outcome.files}
    assert views["small.bin"].status is FileStatus.COMPLETED
    assert views["large.bin"].status is FileStatus.ERROR
    assert "part 3" in (views["large.bin"].error or "")
    assert len(rig.transfer_api.complete_calls) == 1
    assert rig.transfer_api.calls_for(3) == rig.config.part_retries + 1
    assert outcome.download_url is not None

    # the failed file is still in the snapshot and can be retried later
    snapshot = rig.state_store.snapshot
    assert snapshot is not None
    assert [file.name for file in snapshot.files] == ["large.bin"]


async def test_unsuccessful_finalize(rig: JointRig):
    """A finalize the server doesn't confirm marks the file as failed"""
    rig.transfer_api.complete_success = False
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 100)])
    assert outcome.files[0].status is FileStatus.ERROR
    assert outcome.download_url is None


async def test_pause_keeps_uploaded_parts(rig: JointRig):
    """Pausing stops in-flight parts and keeps the acknowledged ones"""
    _, file_id, outcome = await _pause_after_three_parts(rig)

    (view,) = outcome.files
    assert view.status is FileStatus.PAUSED
    assert view.progress == 30
    assert rig.transfer_api.complete_calls == []

    snapshot = rig.state_store.snapshot
    assert snapshot is not None
    (file,) = snapshot.files
    assert file.id == file_id
    assert file.status is FileStatus.PAUSED
    assert sorted(file.completed_parts) == [1, 2, 3]
    assert file.current_part == 5


async def test_resume_skips_uploaded_parts(rig: JointRig):
    """Resuming uploads only the missing parts and finalizes all of them"""
    source, file_id, _ = await _pause_after_three_parts(rig)

    view = await rig.orchestrator.resume(file_id=file_id)

    assert view.status is FileStatus.COMPLETED
    api = rig.transfer_api
    for part_number in (1, 2, 3):
        assert api.calls_for(part_number) == 1
    for part_number in (4, 5):
        assert api.calls_for(part_number) == 2
    for part_number in range(6, 11):
        assert api.calls_for(part_number) == 1
    (call,) = api.complete_calls
    assert [part.part_number for part in call.parts] == list(range(1, 11))
    assert api.objects[call.key] == await source.read(start=0, end=TEN_PARTS)
    assert len(api.validate_calls) == 1


async def test_pause_requires_uploading_file(rig: JointRig):
    """Only uploading files can be paused"""
    session = await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    with pytest.raises(TransferOrchestratorPort.InvalidTransitionError):
        rig.orchestrator.pause(file_id=session.files[0].id)


async def test_unknown_file(rig: JointRig):
    """Operations on files outside the transfer are refused"""
    await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    with pytest.raises(TransferOrchestratorPort.UnknownFileError):
        rig.orchestrator.pause(file_id=uuid4())
    with pytest.raises(TransferOrchestratorPort.UnknownFileError):
        await rig.orchestrator.resume(file_id=uuid4())


async def test_no_active_transfer(rig: JointRig):
    """Without a transfer there is nothing to upload, resume or cancel"""
    with pytest.raises(TransferOrchestratorPort.NoActiveTransferError):
        await rig.orchestrator.upload_all()
    with pytest.raises(TransferOrchestratorPort.NoActiveTransferError):
        await rig.orchestrator.resume_all()
    with pytest.raises(TransferOrchestratorPort.NoActiveTransferError):
        await rig.orchestrator.resume(file_id=uuid4())
    with pytest.raises(TransferOrchestratorPort.NoActiveTransferError):
        rig.orchestrator.cancel()


async def test_resume_completed_file_is_refused(rig: JointRig):
    """A completed file can't be resumed"""
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 100)])
    with pytest.raises(TransferOrchestratorPort.InvalidTransitionError):
        await rig.orchestrator.resume(file_id=outcome.files[0].id)


async def test_resume_invalidated_session(rig: JointRig):
    """If the server no longer accepts the session, the file must start over"""
    _, file_id, outcome = await _pause_after_three_parts(rig)
    rig.transfer_api.invalidate(outcome.transfer_id, reason="Transfer is complete")

    with pytest.raises(TransferOrchestratorPort.SessionInvalidatedError):
        await rig.orchestrator.resume(file_id=file_id)

    (view,) = rig.orchestrator.file_views()
    assert view.status is FileStatus.ERROR
    assert view.error == (
        "Transfer is complete. Please start a new upload for this file."
    )
    assert rig.state_store.snapshot is None
    assert rig.transfer_api.calls_for(6) == 0

    # asking again doesn't reach the server anymore
    with pytest.raises(TransferOrchestratorPort.SessionInvalidatedError):
        await rig.orchestrator.retry(file_id=file_id)
    assert len(rig.transfer_api.validate_calls) == 1


async def test_resume_expired_session(rig: JointRig):
    """A transfer known to be expired is invalidated without asking the server"""
    rig.transfer_api.expires_at = now_utc_ms_prec() + timedelta(milliseconds=200)
    _, file_id, _ = await _pause_after_three_parts(rig)
    await asyncio.sleep(0.3)

    with pytest.raises(TransferOrchestratorPort.SessionInvalidatedError):
        await rig.orchestrator.resume(file_id=file_id)
    assert rig.transfer_api.validate_calls == []
    assert "expired" in (rig.orchestrator.file_views()[0].error or "")


async def test_resume_with_server_unreachable(rig: JointRig):
    """A failed validation keeps the paused file and its session"""
    _, file_id, _ = await _pause_after_three_parts(rig)
    rig.transfer_api.fail_validation = True

    with pytest.raises(TransferOrchestratorPort.SessionValidationError):
        await rig.orchestrator.resume(file_id=file_id)

    (view,) = rig.orchestrator.file_views()
    assert view.status is FileStatus.PAUSED
    snapshot = rig.state_store.snapshot
    assert snapshot is not None
    assert snapshot.files[0].session is not None


async def test_retry_failed_file(rig: JointRig):
    """A failed file can be retried once the cause is gone"""
    rig.transfer_api.failures[2] = 100
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 3000)])
    file_id = outcome.files[0].id
    assert outcome.files[0].status is FileStatus.ERROR

    rig.transfer_api.failures.clear()
    view = await rig.orchestrator.retry(file_id=file_id)

    assert view.status is FileStatus.COMPLETED
    assert view.error is None
    assert rig.transfer_api.calls_for(1) == 1


async def test_retry_requires_failed_file(rig: JointRig):
    """Paused files are resumed, not retried"""
    _, file_id, _ = await _pause_after_three_parts(rig)
    with pytest.raises(TransferOrchestratorPort.InvalidTransitionError):
        await rig.orchestrator.retry(file_id=file_id)


async def test_pause_all_and_resume_all(rig: JointRig):
    """Bulk controls act on every file that can take the action"""
    orchestrator = rig.orchestrator
    sources = [make_source("a.bin", 5000), make_source("b.bin", 5000, offset=7)]
    await orchestrator.submit(sources=sources)
    rig.transfer_api.gate(2)

    upload = asyncio.create_task(orchestrator.upload_all())
    await rig.transfer_api.wait_for_waiting(1)
    async with asyncio.timeout(5):
        while rig.transfer_api.calls_for(2) < 2:
            await asyncio.sleep(0)
    orchestrator.pause_all()
    outcome = await upload
    assert all(view.status is FileStatus.PAUSED for view in outcome.files)

    rig.transfer_api.gates.clear()
    outcome = await orchestrator.resume_all()
    assert all(view.status is FileStatus.COMPLETED for view in outcome.files)
    assert rig.state_store.snapshot is None


async def test_cancel_discards_everything(rig: JointRig):
    """Cancelling aborts in-flight parts and forgets the transfer"""
    orchestrator = rig.orchestrator
    await orchestrator.submit(sources=[make_source("a.bin", 5000)])
    rig.transfer_api.gate(3)

    upload = asyncio.create_task(orchestrator.upload_all())
    await rig.transfer_api.wait_for_waiting(1)
    orchestrator.cancel()
    await upload

    assert orchestrator.session is None
    assert orchestrator.file_views() == []
    assert rig.state_store.snapshot is None
    assert rig.transfer_api.waiting == set()
    assert rig.transfer_api.complete_calls == []


async def test_submit_replaces_previous_transfer(rig: JointRig):
    """Submitting again starts a new transfer and drops the old one"""
    first = await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    second = await rig.orchestrator.submit(sources=[make_source("b.bin", 100)])

    assert first.transfer_id != second.transfer_id
    assert [view.name for view in rig.orchestrator.file_views()] == ["b.bin"]


async def test_reset(rig: JointRig):
    """Reset works with or without an active transfer"""
    rig.orchestrator.reset()
    await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    rig.orchestrator.reset()
    assert rig.orchestrator.session is None
    assert rig.state_store.snapshot is None


async def test_restore_after_crash(rig: JointRig):
    """Files caught uploading by a crash come back as paused without content"""
    source, file_id, _ = await _pause_after_three_parts(rig)
    snapshot = rig.state_store.load()
    assert snapshot is not None
    snapshot.files[0].status = FileStatus.UPLOADING
    rig.state_store.save(snapshot)

    orchestrator = rig.restart()
    restored = orchestrator.restore()

    assert restored is not None
    (view,) = orchestrator.file_views()
    assert view.id == file_id
    assert view.status is FileStatus.PAUSED
    assert view.progress == 30

    with pytest.raises(TransferOrchestratorPort.ContentUnavailableError):
        await orchestrator.resume(file_id=file_id)
    with pytest.raises(TransferOrchestratorPort.ContentMismatchError):
        await orchestrator.resume(
            file_id=file_id, source=make_source("big.bin", TEN_PARTS - 1)
        )

    view = await orchestrator.resume(file_id=file_id, source=source)
    assert view.status is FileStatus.COMPLETED
    assert rig.transfer_api.calls_for(1) == 1
    assert rig.state_store.snapshot is None


async def test_restore_marks_files_without_session_failed(rig: JointRig):
    """A file that never got a session can't be resumed after a restart"""
    source, _, _ = await _pause_after_three_parts(rig)
    snapshot = rig.state_store.load()
    assert snapshot is not None
    orphan = snapshot.files[0].model_copy(
        update={
            "id": uuid4(),
            "name": "orphan.bin",
            "session": None,
            "status": FileStatus.PENDING,
            "completed_parts": {},
        }
    )
    snapshot.files.append(orphan)
    rig.state_store.save(snapshot)

    orchestrator = rig.restart()
    orchestrator.restore()
    views = {view.name: view for view in orchestrator.file_views()}
    assert views["orphan.bin"].status is FileStatus.ERROR
    assert views["big.bin"].status is FileStatus.PAUSED

    outcome = await orchestrator.resume_all(sources=[source])
    views = {view.name: view for view in outcome.files}
    assert views["big.bin"].status is FileStatus.COMPLETED
    assert views["orphan.bin"].status is FileStatus.ERROR


async def test_restore_without_snapshot(rig: JointRig):
    """Nothing to restore is not an error"""
    assert rig.orchestrator.restore() is None
    assert rig.orchestrator.session is None


async def test_state_store_failure_does_not_stop_uploads(rig: JointRig):
    """Uploads go on when the snapshot can't be written"""
    rig.state_store.fail = True
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 2000)])
    assert outcome.files[0].status is FileStatus.COMPLETED


async def test_parts_acknowledged_out_of_order(rig: JointRig):
    """Parts finishing out of order are still finalized in ascending order"""
    source = make_source("a.bin", 3000)
    session = await rig.orchestrator.submit(sources=[source])
    transfer = rig.transfer_api.transfers[session.transfer_id]
    gate = rig.transfer_api.gate(1)

    upload = asyncio.create_task(rig.orchestrator.upload_all())
    async with asyncio.timeout(5):
        while len(transfer.parts) < 2:
            await asyncio.sleep(0)
    assert rig.transfer_api.waiting == {1}
    gate.set()
    outcome = await upload

    assert outcome.files[0].status is FileStatus.COMPLETED
    assert [number for _, number in transfer.parts] == [2, 3, 1]
    (call,) = rig.transfer_api.complete_calls
    assert [part.part_number for part in call.parts] == [1, 2, 3]
    assert rig.transfer_api.objects[call.key] == await source.read(start=0, end=3000)


async def test_pause_after_commit_completes_file(rig: JointRig):
    """A pause landing while the server commits the file doesn't undo the commit"""
    session = await rig.orchestrator.submit(sources=[make_source("a.bin", 3000)])
    file_id = session.files[0].id
    rig.transfer_api.on_commit = lambda: rig.orchestrator.pause(file_id=file_id)

    outcome = await rig.orchestrator.upload_all()

    (view,) = outcome.files
    assert view.status is FileStatus.COMPLETED
    assert view.progress == 100
    assert outcome.download_url is not None
    assert len(rig.transfer_api.complete_calls) == 1
    assert rig.state_store.snapshot is None


async def test_failing_clear_does_not_hide_invalidation(rig: JointRig):
    """A state store that can't be cleared doesn't mask an invalidated session"""
    rig.transfer_api.failures[2] = 100
    outcome = await rig.orchestrator.transfer(sources=[make_source("a.bin", 3000)])
    file_id = outcome.files[0].id
    assert outcome.files[0].status is FileStatus.ERROR

    rig.transfer_api.failures.clear()
    rig.transfer_api.invalidate(outcome.transfer_id, reason="Transfer is complete")
    rig.state_store.fail_clear = True

    with pytest.raises(TransferOrchestratorPort.SessionInvalidatedError):
        await rig.orchestrator.resume(file_id=file_id)
    (view,) = rig.orchestrator.file_views()
    assert view.status is FileStatus.ERROR
    assert rig.transfer_api.calls_for(1) == 1


async def test_failing_clear_on_cancel_and_reset(rig: JointRig):
    """Cancel and reset forget the transfer even if the snapshot stays behind"""
    rig.state_store.fail_clear = True
    await rig.orchestrator.submit(sources=[make_source("a.bin", 100)])
    rig.orchestrator.cancel()
    assert rig.orchestrator.session is None

    await rig.orchestrator.submit(sources=[make_source("b.bin", 100)])
    rig.orchestrator.reset()
    assert rig.orchestrator.session is None
    assert rig.state_store.snapshot is not None


async def test_upload_without_session_is_refused(rig: JointRig):
    """A file that never got a session can be neither uploaded nor finalized"""
    state = UploadSessionState.for_source(
        source=make_source("a.bin", 100), chunk_size=rig.config.chunk_size
    )
    signal = AbortSignal(file_id=state.id)

    with pytest.raises(TransferOrchestratorPort.InvalidTransitionError):
        await rig.orchestrator._upload_parts(state, signal)
    with pytest.raises(TransferOrchestratorPort.NoActiveTransferError):
        await rig.orchestrator._finalize(state, signal)

    await rig.orchestrator.submit(sources=[make_source("b.bin", 100)])
    with pytest.raises(TransferOrchestratorPort.InvalidTransitionError):
        await rig.orchestrator._finalize(state, signal)
    assert rig.transfer_api.upload_calls == []
    assert rig.transfer_api.complete_calls == []
