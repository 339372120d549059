# backend/app/services/activity_logger.py
"""
Activity Logger - builds lead history entries
"""

from typing import Optional, Dict, Any, List
import uuid

from app.ingestion_engine.core.types import LeadSource, utcnow
from app.models import Lead, LeadActivity


class ActivityLogger:
    """Builds the typed history entries appended to a lead"""

    LEAD_CREATED = "LEAD_CREATED"
    LEAD_MERGED = "LEAD_MERGED"
    LEAD_INGESTED = "LEAD_INGESTED"

    @staticmethod
    def _to_uuid(value):
        """Safely convert to UUID"""
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    def build(
        self,
        lead: Lead,
        activity_type: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LeadActivity:
        """Build an activity for a lead (not yet attached or persisted)"""
        return LeadActivity(
            id=uuid.uuid4(),
            tenant_id=self._to_uuid(lead.tenant_id),
            lead_id=self._to_uuid(lead.id),
            activity_type=activity_type,
            content=content,
            activity_metadata=metadata or {},
            created_at=utcnow(),
        )

    def lead_created(self, lead: Lead, source: LeadSource, external_id: Optional[str] = None) -> LeadActivity:
        return self.build(
            lead,
            self.LEAD_CREATED,
            f"Lead created from {source.label}",
            {"source": source.value, "external_id": external_id},
        )

    def lead_merged(
        self,
        lead: Lead,
        source: LeadSource,
        updated_fields: List[str],
        external_id: Optional[str] = None,
    ) -> LeadActivity:
        return self.build(
            lead,
            self.LEAD_MERGED,
            f"Lead seen again from {source.label}",
            {
                "source": source.value,
                "external_id": external_id,
                "updated_fields": sorted(updated_fields),
            },
        )

    def lead_ingested(
        self,
        lead: Lead,
        source: LeadSource,
        external_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> LeadActivity:
        """Provenance entry written once per successful ingestion"""
        content = f"Ingested from {source.label}"
        if external_id:
            content += f" (lead {external_id})"
        metadata = {"source": source.value, "external_id": external_id}
        if account_id:
            metadata["account_id"] = account_id
        return self.build(lead, self.LEAD_INGESTED, content, metadata)

