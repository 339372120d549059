"""
Shared value types for the ingestion pipeline.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class LeadSource(str, Enum):
    FACEBOOK_ADS = "facebook_ads"
    GOOGLE_ADS = "google_ads"
    WEBSITE = "website"

    @property
    def label(self) -> str:
        return SOURCE_LABELS[self]


SOURCE_LABELS = {
    LeadSource.FACEBOOK_ADS: "Facebook",
    LeadSource.GOOGLE_ADS: "Google Ads",
    LeadSource.WEBSITE: "Website",
}


class DedupStrategy(str, Enum):
    NONE = "none"
    EMAIL = "email"
    PHONE = "phone"
    EMAIL_PHONE = "email_phone"


class UpsertOutcome(str, Enum):
    CREATED = "created"
    MERGED = "merged"


class IngestionOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class MissingFieldPolicy(str, Enum):
    REJECT = "reject"
    ACCEPT_PARTIAL = "accept_partial"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InboundLeadEvent:
    """
    One lead event with transport concerns already stripped.

    Attributes:
        payload: Provider payload as delivered (may be only an id for
            sources that need an authenticated detail fetch)
        external_id: Provider-side lead id, if known
        account_id: Provider-side account id (page id, customer id) used to
            find the ConnectedAccount
    """
    payload: Dict[str, Any]
    external_id: Optional[str] = None
    account_id: Optional[str] = None
    received_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class UnmappedFieldWarning:
    field: str
    reason: str  # "unmapped" | "invalid_value" | "invalid_custom_value"
    detail: Optional[str] = None


@dataclass
class ResolvedLeadAttributes:
    """Output of FieldMapper.resolve()."""
    fields: Dict[str, Any] = field(default_factory=dict)
    custom_fields: Dict[str, Any] = field(default_factory=dict)
    missing_mandatory: List[str] = field(default_factory=list)
    default_stage: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return not self.missing_mandatory
