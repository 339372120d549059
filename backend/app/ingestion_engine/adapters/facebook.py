"""
Adapter for Facebook Lead Ads.

Leadgen webhooks only carry ids (leadgen_id, page_id, form_id); the lead's
answers have to be fetched from the Graph API with the page access token.
"""
from typing import Any, Dict, List, Optional

from app.config import settings
from app.ingestion_engine.core.types import InboundLeadEvent, LeadSource
from app.ingestion_engine.errors import ProviderError
from .base import SourceAdapter


LEAD_FIELDS = "id,created_time,ad_id,form_id,field_data,campaign_id,adset_id"

# Graph lead attributes kept next to the form answers
METADATA_KEYS = ("form_id", "ad_id", "campaign_id", "adset_id", "created_time")


class FacebookLeadAdsAdapter(SourceAdapter):
    """Fetches and flattens Facebook Lead Ads leads."""

    source = LeadSource.FACEBOOK_ADS

    def __init__(self, graph_url: Optional[str] = None, graph_version: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.graph_url = (graph_url or settings.FACEBOOK_GRAPH_URL).rstrip("/")
        self.graph_version = graph_version or settings.FACEBOOK_GRAPH_VERSION

    def requires_detail_fetch(self, event: InboundLeadEvent) -> bool:
        return "field_data" not in event.payload

    async def fetch_detail(self, event: InboundLeadEvent, access_token: str) -> Dict[str, Any]:
        leadgen_id = event.external_id or self.extract_external_id(event.payload)
        if not leadgen_id:
            raise ProviderError(self.source.value, "leadgen event has no lead id")

        url = f"{self.graph_url}/{self.graph_version}/{leadgen_id}"
        return await self._request_json(
            "GET",
            url,
            params={"access_token": access_token, "fields": LEAD_FIELDS},
        )

    def parse_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Flatten a Graph lead into {field name: first answer}.

        Example:
            {"field_data": [{"name": "email", "values": ["a@b.co"]}], "form_id": "9"}
            -> {"email": "a@b.co", "facebook_form_id": "9", ...}
        """
        if "field_data" not in payload:
            return dict(payload)

        flattened: Dict[str, Any] = {}
        for entry in payload.get("field_data") or []:
            name = entry.get("name")
            if not name:
                continue
            flattened[name] = self._first_value(entry.get("values"))

        if "full_name" not in flattened and "name" not in flattened:
            parts = [flattened.get("first_name"), flattened.get("last_name")]
            joined = " ".join(str(part).strip() for part in parts if part and str(part).strip())
            if joined:
                flattened["full_name"] = joined

        if payload.get("id"):
            flattened["facebook_lead_id"] = str(payload["id"])
        for key in METADATA_KEYS:
            if payload.get(key):
                flattened[f"facebook_{key}"] = payload[key]

        return flattened

    @staticmethod
    def _first_value(values: Optional[List[Any]]) -> Any:
        if not values:
            return None
        return values[0]

    @staticmethod
    def events_from_webhook(body: Dict[str, Any]) -> List[InboundLeadEvent]:
        """
        Split a Page webhook delivery into one event per leadgen change.

        Args:
            body: {"object": "page", "entry": [{"id": page_id, "changes": [...]}]}
        """
        events = []
        for entry in body.get("entry") or []:
            for change in entry.get("changes") or []:
                if change.get("field") != "leadgen":
                    continue
                value = change.get("value") or {}
                leadgen_id = value.get("leadgen_id")
                events.append(InboundLeadEvent(
                    payload=value,
                    external_id=str(leadgen_id) if leadgen_id else None,
                    account_id=str(value.get("page_id") or entry.get("id") or "") or None,
                ))
        return events
