"""
Adapter for website form submissions.
"""
from typing import Any, Dict, Optional

from app.ingestion_engine.core.types import InboundLeadEvent, LeadSource
from .base import SourceAdapter


class WebsiteFormAdapter(SourceAdapter):
    """
    Adapter for website forms posting straight to the webhook.
    The body is the lead; nested objects are reachable with dot paths.
    """

    source = LeadSource.WEBSITE

    def parse_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return dict(payload)

    def extract_external_id(self, payload: Dict[str, Any]) -> Optional[str]:
        for key in ("submission_id", "id", "form_submission_id"):
            value = payload.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    def event_from_submission(self, body: Dict[str, Any]) -> InboundLeadEvent:
        return InboundLeadEvent(payload=body, external_id=self.extract_external_id(body))
