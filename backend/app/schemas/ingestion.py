"""
Pydantic schemas for ingestion results and webhook acknowledgements.
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import datetime


class IngestionAuditRecordResponse(BaseModel):
    """One audit record, as returned by the API"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    source: str
    payload_ref: str
    external_id: Optional[str] = None
    outcome: str
    failure_reason: Optional[str] = None
    details: Dict[str, Any] = {}
    lead_id: Optional[UUID] = None
    upsert_outcome: Optional[str] = None
    created_at: datetime


class AuditRecordList(BaseModel):
    records: List[IngestionAuditRecordResponse]
    total: int


class WebhookAccepted(BaseModel):
    """Acknowledgement for webhooks processed in the background"""
    status: str = "accepted"
    events: int = 0
