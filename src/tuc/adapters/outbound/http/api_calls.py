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


"""HTTP calls to the transfer service API happen here"""

import io
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

import httpx
from ghga_service_commons.utils.utc_dates import UTCDatetime
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PositiveInt,
    ValidationError,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

from tuc.constants import DEFAULT_PROGRESS_TICK_SIZE
from tuc.core.models import (
    CompletionResult,
    CreatedTransfer,
    FileDescriptor,
    FileSessionInfo,
    UploadPart,
    ValidationResult,
)
from tuc.ports.outbound.transfer_api import ProgressCallback, TransferApiPort

__all__ = ["HttpApiConfig", "HttpTransferApi"]

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class HttpApiConfig(BaseSettings):
    """Configuration for reaching the transfer service"""

    service_url: str = Field(
        ...,
        description=(
            "Base URL of the transfer service. The API is expected under `/api` and"
            + " download links are issued under `/download`."
        ),
        examples=["https://transfer.example.org", "http://127.0.0.1:8787"],
    )
    http_timeout: PositiveFloat = Field(
        default=60,
        description="Seconds to wait for the transfer service on each request.",
        examples=[60, 300],
    )
    progress_tick_size: PositiveInt = Field(
        default=DEFAULT_PROGRESS_TICK_SIZE,
        description="Number of bytes of a part sent between two progress updates.",
        examples=[64 * 1024],
    )


class _WireModel(BaseModel):
    """Base for the camelCase JSON bodies exchanged with the transfer service"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FileSessionBody(_WireModel):
    file_id: str
    filename: str
    upload_id: str
    key: str


class _CreatedTransferBody(_WireModel):
    transfer_id: str
    expires_at: UTCDatetime | None = None
    files: list[_FileSessionBody]


class _UploadedPartBody(_WireModel):
    part_number: int
    etag: str


class _CompletionBody(_WireModel):
    success: bool
    object: dict[str, Any] | None = None


class _ValidationBody(_WireModel):
    valid: bool
    reason: str | None = None


class _ProgressReader(io.BytesIO):
    """The body of a part, handed out in ticks of at most `tick_size` bytes.

    `on_progress` gets the bytes read so far after every tick.
    """

    def __init__(
        self, content: bytes, *, tick_size: int, on_progress: ProgressCallback | None
    ):
        super().__init__(content)
        self._tick_size = tick_size
        self._on_progress = on_progress

    def read(self, size: int | None = -1) -> bytes:
        if size is None or size < 0 or size > self._tick_size:
            size = self._tick_size
        block = super().read(size)
        if block and self._on_progress is not None:
            self._on_progress(self.tell())
        return block


class HttpTransferApi(TransferApiPort):
    """Talks to the transfer service over HTTP with a shared `httpx.AsyncClient`"""

    def __init__(self, *, config: HttpApiConfig, client: httpx.AsyncClient):
        self._service_url = config.service_url.rstrip("/")
        self._api_url = f"{self._service_url}/api"
        self._tick_size = config.progress_tick_size
        self._client = client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.RequestError as request_error:
            raise self.RequestFailedError(
                url=url, reason=str(request_error)
            ) from request_error

    def _parse(
        self, response: httpx.Response, *, url: str, model: type[M]
    ) -> M:
        """Check the status code and read the body into the given wire model"""
        status_code = response.status_code
        if status_code != 200:
            raise self.BadResponseCodeError(url=url, response_code=status_code)
        try:
            return model.model_validate_json(response.content)
        except ValidationError as err:
            log.debug("Unexpected response body from %s: %s", url, response.text)
            raise self.MalformedResponseError(url=url) from err

    async def create_transfer(
        self, *, files: Sequence[FileDescriptor]
    ) -> CreatedTransfer:
        """Create a transfer with one multipart upload session per file.

        The returned file sessions are in the same order as `files`.
        """
        url = f"{self._api_url}/transfers"
        payload = {"files": [file.model_dump() for file in files]}
        response = await self._request("POST", url, json=payload)
        body = self._parse(response, url=url, model=_CreatedTransferBody)
        return CreatedTransfer(
            transfer_id=body.transfer_id,
            expires_at=body.expires_at,
            files=[
                FileSessionInfo(
                    file_id=file.file_id,
                    filename=file.filename,
                    upload_id=file.upload_id,
                    key=file.key,
                )
                for file in body.files
            ],
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
        """Upload the bytes of one part and return the acknowledged part.

        The part is sent as a multipart form with the fields `key`, `uploadId` and
        `partNumber` next to the file field `chunk`. `on_progress` is called on
        every progress tick with the bytes sent so far. Cancelling the awaiting
        task aborts the underlying request.
        """
        url = f"{self._api_url}/uploads/chunk"
        chunk = _ProgressReader(
            content, tick_size=self._tick_size, on_progress=on_progress
        )
        response = await self._request(
            "POST",
            url,
            data={"key": key, "uploadId": upload_id, "partNumber": str(part_number)},
            files={"chunk": (f"part-{part_number}", chunk, "application/octet-stream")},
        )
        body = self._parse(response, url=url, model=_UploadedPartBody)
        if body.part_number != part_number:
            log.warning(
                "Got part number %i back when uploading part %i.",
                body.part_number,
                part_number,
                extra={"upload_id": upload_id},
            )
            raise self.MalformedResponseError(url=url)
        return UploadPart(part_number=body.part_number, etag=body.etag)

    async def complete_transfer(
        self,
        *,
        transfer_id: str,
        key: str,
        upload_id: str,
        parts: Sequence[UploadPart],
    ) -> CompletionResult:
        """Commit the uploaded parts of one file. Parts must be sorted by number."""
        url = f"{self._api_url}/transfers/complete"
        payload = {
            "transferId": transfer_id,
            "key": key,
            "uploadId": upload_id,
            "parts": [
                {"partNumber": part.part_number, "etag": part.etag} for part in parts
            ],
        }
        response = await self._request("POST", url, json=payload)
        body = self._parse(response, url=url, model=_CompletionBody)
        return CompletionResult(success=body.success, object=body.object)

    async def validate_transfer(self, *, transfer_id: str) -> ValidationResult:
        """Check that the transfer exists, hasn't expired and isn't complete yet"""
        url = f"{self._api_url}/transfers/{transfer_id}/validate"
        response = await self._request("GET", url)
        if response.status_code == 404:
            return ValidationResult(valid=False, reason="Transfer not found")
        body = self._parse(response, url=url, model=_ValidationBody)
        return ValidationResult(valid=body.valid, reason=body.reason)

    def download_url(self, *, transfer_id: str) -> str:
        """Return the shareable link under which the transfer can be downloaded"""
        return f"{self._service_url}/download/{transfer_id}"
