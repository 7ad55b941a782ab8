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


"""Entrypoint of the package"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from tuc.core.models import FileStatus, TransferOutcome
from tuc.main import reset_state, resume_transfer, show_status, upload_files
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort

cli = typer.Typer()

FileArgument = Annotated[
    list[Path],
    typer.Argument(exists=True, dir_okay=False, readable=True, resolve_path=True),
]


def _report(outcome: TransferOutcome, *, check: bool = True) -> None:
    """Print one line per file and the download link.

    With `check`, exit non-zero unless every file completed.
    """
    typer.echo(f"Transfer {outcome.transfer_id}")
    for file in outcome.files:
        line = f"  {file.name}: {file.status} ({file.progress}%)"
        if file.error:
            line += f" - {file.error}"
        typer.echo(line)
    if outcome.download_url:
        typer.echo(f"Download link: {outcome.download_url}")
    if check and any(file.status is not FileStatus.COMPLETED for file in outcome.files):
        raise typer.Exit(code=1)


def _run(coroutine):
    try:
        return asyncio.run(coroutine)
    except TransferOrchestratorPort.UploadError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error


@cli.command(name="upload")
def sync_upload(files: FileArgument):
    """Upload the given files as a new transfer."""
    _report(_run(upload_files(paths=files)))


@cli.command(name="resume")
def sync_resume(
    files: Annotated[
        list[Path] | None,
        typer.Argument(
            exists=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
            help="The files of the interrupted transfer, selected again",
        ),
    ] = None,
):
    """Resume the transfer interrupted in an earlier run."""
    outcome = _run(resume_transfer(paths=files or []))
    if outcome is None:
        typer.echo("There is no interrupted transfer to resume.")
        return
    _report(outcome)


@cli.command(name="status")
def sync_status():
    """Show the state of the transfer interrupted in an earlier run."""
    outcome = _run(show_status())
    if outcome is None:
        typer.echo("There is no interrupted transfer.")
        return
    _report(outcome, check=False)


@cli.command(name="reset")
def sync_reset():
    """Forget the interrupted transfer."""
    _run(reset_state())
    typer.echo("Upload state cleared.")
