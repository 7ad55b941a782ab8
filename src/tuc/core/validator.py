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


"""Checks whether an interrupted transfer session may be resumed"""

import logging

from ghga_service_commons.utils.utc_dates import UTCDatetime
from hexkit.utils import now_utc_ms_prec

from tuc.core.models import ValidationResult
from tuc.ports.inbound.orchestrator import TransferOrchestratorPort
from tuc.ports.outbound.transfer_api import TransferApiPort

log = logging.getLogger(__name__)


class SessionValidator:
    """Confirms with the server that a transfer still exists, hasn't expired and
    hasn't been completed, before its upload sessions are reused.
    """

    def __init__(self, *, transfer_api: TransferApiPort):
        self._transfer_api = transfer_api

    async def validate(
        self, *, transfer_id: str, expires_at: UTCDatetime | None = None
    ) -> ValidationResult:
        """Return whether the transfer can be resumed, and why not if it can't.

        A known expiry date that has already passed settles the question without
        asking the server.

        Raises `SessionValidationError` if the server could not be asked.
        """
        if expires_at is not None and expires_at <= now_utc_ms_prec():
            log.info("Transfer %s expired at %s.", transfer_id, expires_at)
            return ValidationResult(valid=False, reason="Transfer has expired")

        try:
            result = await self._transfer_api.validate_transfer(transfer_id=transfer_id)
        except TransferApiPort.TransferApiError as err:
            error = TransferOrchestratorPort.SessionValidationError(
                transfer_id=transfer_id, reason=str(err)
            )
            log.error(error, extra={"transfer_id": transfer_id})
            raise error from err

        if result.valid:
            log.debug("Transfer %s is still valid.", transfer_id)
        else:
            log.info(
                "Transfer %s can't be resumed: %s",
                transfer_id,
                result.reason,
                extra={"transfer_id": transfer_id},
            )
        return result
