"""
Adapter for Google Ads lead form extensions.

Leads arrive two ways: the lead form webhook (answers inline under
user_column_data) and pull-sync through the Google Ads search API
(lead_form_submission_data rows). Both flatten to the same lower-case keys,
so one mapping configuration covers both.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import re

from app.config import settings
from app.ingestion_engine.core.types import InboundLeadEvent, LeadSource
from app.ingestion_engine.errors import ProviderError
from .base import SourceAdapter


logger = logging.getLogger(__name__)

SUBMISSION_FIELDS = (
    "lead_form_submission_data.id",
    "lead_form_submission_data.campaign",
    "lead_form_submission_data.ad_group",
    "lead_form_submission_data.gclid",
    "lead_form_submission_data.submission_date_time",
    "lead_form_submission_data.lead_form_submission_fields",
    "lead_form_submission_data.custom_lead_form_submission_fields",
)

WEBHOOK_METADATA_KEYS = ("form_id", "campaign_id", "adgroup_id", "creative_id", "gcl_id", "is_test")


def _field_key(label: str) -> str:
    """'PHONE_NUMBER' -> 'phone_number', 'What is your budget?' -> 'what_is_your_budget'"""
    return re.sub(r"[^a-z0-9]+", "_", label.strip().lower()).strip("_")


def gaql_datetime(value: datetime) -> str:
    """
    GAQL datetime literal with an explicit UTC offset.

    Without an offset Google Ads reads the literal in the account's time
    zone. Naive datetimes are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S+00:00")


def _customer_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return str(value).replace("-", "")


class GoogleAdsLeadFormAdapter(SourceAdapter):
    """Parses lead form webhooks and reads submissions from the search API."""

    source = LeadSource.GOOGLE_ADS

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_version: Optional[str] = None,
        developer_token: Optional[str] = None,
        page_size: int = 500,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_url = (api_url or settings.GOOGLE_ADS_API_URL).rstrip("/")
        self.api_version = api_version or settings.GOOGLE_ADS_API_VERSION
        self.developer_token = developer_token or settings.GOOGLE_ADS_DEVELOPER_TOKEN
        self.page_size = page_size

    def requires_detail_fetch(self, event: InboundLeadEvent) -> bool:
        payload = event.payload
        return "user_column_data" not in payload and "leadFormSubmissionFields" not in payload

    async def fetch_detail(self, event: InboundLeadEvent, access_token: str) -> Dict[str, Any]:
        customer_id = _customer_id(event.account_id)
        submission_id = event.external_id or self.extract_external_id(event.payload)
        if not customer_id or not submission_id or not str(submission_id).isdigit():
            raise ProviderError(self.source.value, "event needs a customer id and a numeric submission id")

        query = (
            f"SELECT {', '.join(SUBMISSION_FIELDS)} FROM lead_form_submission_data "
            f"WHERE lead_form_submission_data.id = {submission_id}"
        )
        rows, _ = await self._search(customer_id, access_token, query)
        if not rows:
            raise ProviderError(self.source.value, f"submission {submission_id} not found", 404)
        return rows[0]

    async def list_submissions(
        self,
        customer_id: str,
        access_token: str,
        since: Optional[datetime] = None,
    ) -> List[InboundLeadEvent]:
        """
        Read lead form submissions for one customer account.

        Args:
            customer_id: Google Ads customer id (dashes allowed)
            access_token: Valid OAuth access token
            since: Only submissions after this time

        Returns:
            One InboundLeadEvent per submission, oldest first
        """
        customer_id = _customer_id(customer_id)
        query = f"SELECT {', '.join(SUBMISSION_FIELDS)} FROM lead_form_submission_data"
        if since is not None:
            query += f" WHERE lead_form_submission_data.submission_date_time > '{gaql_datetime(since)}'"
        query += " ORDER BY lead_form_submission_data.submission_date_time ASC"

        events = []
        page_token = None
        while True:
            rows, page_token = await self._search(customer_id, access_token, query, page_token)
            for row in rows:
                events.append(InboundLeadEvent(
                    payload=row,
                    external_id=self.extract_external_id(row),
                    account_id=customer_id,
                ))
            if not page_token:
                break

        logger.debug(f"Read {len(events)} lead form submission(s) for customer {customer_id}")
        return events

    async def _search(
        self,
        customer_id: str,
        access_token: str,
        query: str,
        page_token: Optional[str] = None,
    ):
        url = f"{self.api_url}/{self.api_version}/customers/{customer_id}/googleAds:search"
        headers = {"Authorization": f"Bearer {access_token}"}
        if self.developer_token:
            headers["developer-token"] = self.developer_token

        body: Dict[str, Any] = {"query": query, "pageSize": self.page_size}
        if page_token:
            body["pageToken"] = page_token

        data = await self._request_json("POST", url, headers=headers, json=body)
        rows = [
            row["leadFormSubmissionData"]
            for row in data.get("results") or []
            if row.get("leadFormSubmissionData")
        ]
        return rows, data.get("nextPageToken")

    def extract_external_id(self, payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get("lead_id") or payload.get("id")
        return str(value) if value not in (None, "") else None

    def parse_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "user_column_data" in payload:
            return self._parse_webhook(payload)
        if "leadFormSubmissionFields" in payload:
            return self._parse_submission(payload)
        return dict(payload)

    @staticmethod
    def _parse_webhook(payload: Dict[str, Any]) -> Dict[str, Any]:
        flattened: Dict[str, Any] = {}
        for column in payload.get("user_column_data") or []:
            label = column.get("column_id") or column.get("column_name")
            if not label:
                continue
            flattened[_field_key(label)] = column.get("string_value")

        if payload.get("lead_id"):
            flattened["google_lead_id"] = str(payload["lead_id"])
        for key in WEBHOOK_METADATA_KEYS:
            if payload.get(key) not in (None, ""):
                flattened[f"google_{key}"] = payload[key]
        return flattened

    @staticmethod
    def _parse_submission(payload: Dict[str, Any]) -> Dict[str, Any]:
        flattened: Dict[str, Any] = {}
        for item in payload.get("leadFormSubmissionFields") or []:
            if item.get("fieldType"):
                flattened[_field_key(item["fieldType"])] = item.get("fieldValue")
        for item in payload.get("customLeadFormSubmissionFields") or []:
            if item.get("questionText"):
                flattened[_field_key(item["questionText"])] = item.get("fieldValue")

        if payload.get("id"):
            flattened["google_lead_id"] = str(payload["id"])
        if payload.get("campaign"):
            flattened["google_campaign"] = payload["campaign"]
        if payload.get("gclid"):
            flattened["google_gcl_id"] = payload["gclid"]
        if payload.get("submissionDateTime"):
            flattened["google_submitted_at"] = payload["submissionDateTime"]
        return flattened

    @staticmethod
    def event_from_webhook(body: Dict[str, Any]) -> InboundLeadEvent:
        lead_id = body.get("lead_id")
        return InboundLeadEvent(
            payload=body,
            external_id=str(lead_id) if lead_id else None,
            account_id=_customer_id(body.get("customer_id")),
        )
