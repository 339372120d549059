"""Audit logging service for ingestion attempts."""

import hashlib
import json
import logging
import uuid
from typing import Any, Dict, Optional

from app.ingestion_engine.core.types import IngestionOutcome, LeadSource, utcnow
from app.ingestion_engine.errors import FailureReason, StorageError
from app.ingestion_engine.stores.base import AuditSink
from app.models import IngestionAuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Builds and writes one IngestionAuditLog per ingestion attempt."""

    def __init__(self, sink: AuditSink):
        self.sink = sink

    @staticmethod
    def payload_ref(source: LeadSource, external_id: Optional[str], payload: Dict[str, Any]) -> str:
        """
        Stable reference to the raw payload.

        Uses the provider's lead id when there is one, otherwise a hash of
        the payload so redeliveries of the same body share a reference.
        """
        if external_id:
            return f"{LeadSource(source).value}:{external_id}"
        body = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(body.encode('utf-8')).hexdigest()}"

    @staticmethod
    def build_record(
        tenant_id: str,
        source: LeadSource,
        payload_ref: str,
        outcome: IngestionOutcome,
        external_id: Optional[str] = None,
        failure_reason: Optional[FailureReason] = None,
        details: Optional[Dict[str, Any]] = None,
        lead_id=None,
        upsert_outcome: Optional[str] = None,
    ) -> IngestionAuditLog:
        """Create an audit record (not yet written)."""
        return IngestionAuditLog(
            id=uuid.uuid4(),
            tenant_id=uuid.UUID(str(tenant_id)),
            source=LeadSource(source).value,
            payload_ref=payload_ref,
            external_id=external_id,
            outcome=IngestionOutcome(outcome).value,
            failure_reason=FailureReason(failure_reason).value if failure_reason else None,
            details=_json_safe(details or {}),
            lead_id=uuid.UUID(str(lead_id)) if lead_id else None,
            upsert_outcome=upsert_outcome,
            created_at=utcnow(),
        )

    async def log_attempt(self, record: IngestionAuditLog) -> IngestionAuditLog:
        """
        Write an audit record.

        If the write fails, a FAILED/STORAGE_WRITE_FAILED record describing
        the lost one is tried once. If that fails too the loss is logged at
        critical and the unwritten record is returned.
        """
        try:
            await self.sink.append(record)
            return record
        except StorageError as e:
            logger.error(
                f"Failed to write audit record {record.payload_ref} "
                f"(tenant: {record.tenant_id}): {e}"
            )
            write_error = e

        fallback = self.build_record(
            tenant_id=record.tenant_id,
            source=LeadSource(record.source),
            payload_ref=record.payload_ref,
            outcome=IngestionOutcome.FAILED,
            external_id=record.external_id,
            failure_reason=FailureReason.STORAGE_WRITE_FAILED,
            details={
                "message": "Audit record could not be written",
                "error": str(write_error),
                "original_outcome": record.outcome,
                "original_failure_reason": record.failure_reason,
            },
            lead_id=record.lead_id,
            upsert_outcome=record.upsert_outcome,
        )
        try:
            await self.sink.append(fallback)
            return fallback
        except StorageError as e:
            logger.critical(
                f"Audit record lost for {record.payload_ref} (tenant: {record.tenant_id}, "
                f"outcome: {record.outcome}, reason: {record.failure_reason}): {e}"
            )
            return record


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so details fit a JSONB column."""
    return json.loads(json.dumps(value, default=str))
