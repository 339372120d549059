"""
Deduplicator for creating or merging leads.

Matches incoming leads against existing ones by normalized email and/or
phone, per the tenant's dedup strategy. The lookup-then-write runs under a
per-dedup-key lock, and the lead store's (tenant_id, dedup_key) uniqueness
constraint catches races the lock cannot see (other worker processes).
"""
from typing import Any, Dict, List, Optional, Tuple
import logging
import uuid

from app.config import settings
from app.ingestion_engine.core.field_mapper import is_blank
from app.ingestion_engine.core.keyed_lock import KeyedLock
from app.ingestion_engine.core.types import (
    DedupStrategy,
    LeadSource,
    ResolvedLeadAttributes,
    UpsertOutcome,
    utcnow,
)
from app.ingestion_engine.errors import DuplicateLeadError
from app.ingestion_engine.stores.base import LeadStore
from app.models import Lead
from app.services.activity_logger import ActivityLogger
from app.services.normalization import NormalizationService


logger = logging.getLogger(__name__)

# Canonical fields stored in their own Lead columns
LEAD_COLUMNS = (
    "name", "email", "phone", "stage", "follow_up_status",
    "company", "job_title", "city", "notes", "deal_value",
)

# Kept on the lead as custom fields; the name column holds the composed name
NAME_PARTS = ("first_name", "last_name")

IDENTITY_FIELDS = {
    DedupStrategy.NONE: frozenset(),
    DedupStrategy.EMAIL: frozenset({"email"}),
    DedupStrategy.PHONE: frozenset({"phone"}),
    DedupStrategy.EMAIL_PHONE: frozenset({"email", "phone"}),
}


def compose_name(fields: Dict[str, Any]) -> Optional[str]:
    """Use the resolved name, else join first_name and last_name."""
    name = fields.get("name")
    if not is_blank(name):
        return name
    parts = [fields.get(part) for part in NAME_PARTS]
    joined = " ".join(str(part).strip() for part in parts if not is_blank(part))
    return joined or name


class Deduplicator:
    """
    Create-or-merge engine for resolved leads.

    Strategy "none" always creates, even for identical payloads.
    """

    def __init__(
        self,
        lead_store: LeadStore,
        lock=None,
        normalizer: Optional[NormalizationService] = None,
        activities: Optional[ActivityLogger] = None,
    ):
        """
        Initialize deduplicator.

        Args:
            lead_store: Lead persistence
            lock: KeyedLock or RedisKeyedLock scoped per dedup key
            normalizer: Email/phone key normalization
            activities: Builder for lead history entries
        """
        self.lead_store = lead_store
        self.lock = lock or KeyedLock()
        self.normalizer = normalizer or NormalizationService()
        self.activities = activities or ActivityLogger()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def compute_keys(self, fields: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        """Return (email_key, phone_key) for resolved fields."""
        email = fields.get("email")
        phone = fields.get("phone")
        email_key = self.normalizer.email_key(email) if isinstance(email, str) else None
        phone_key = self.normalizer.phone_key(str(phone)) if not is_blank(phone) else None
        return email_key, phone_key

    @staticmethod
    def dedup_key(strategy: DedupStrategy, email_key: Optional[str], phone_key: Optional[str]) -> Optional[str]:
        """
        Key stored in Lead.dedup_key and used for locking.

        None means the lead cannot be deduplicated under the strategy (or the
        strategy is "none"); such leads are always created.
        """
        strategy = DedupStrategy(strategy)
        if strategy == DedupStrategy.EMAIL and email_key:
            return f"email:{email_key}"
        if strategy == DedupStrategy.PHONE and phone_key:
            return f"phone:{phone_key}"
        if strategy == DedupStrategy.EMAIL_PHONE and email_key and phone_key:
            return f"email_phone:{email_key}|{phone_key}"
        return None

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def upsert_lead(
        self,
        tenant_id: str,
        resolved: ResolvedLeadAttributes,
        strategy: DedupStrategy,
        source: LeadSource,
        default_stage: Optional[str] = None,
        external_id: Optional[str] = None,
        extra_tags: Optional[List[str]] = None,
    ) -> Tuple[Lead, UpsertOutcome]:
        """
        Create a new lead or merge into the matching one.

        Args:
            tenant_id: Owning tenant
            resolved: Output of FieldMapper.resolve()
            strategy: Tenant's dedup strategy for the source
            source: Where the lead came from
            default_stage: Stage for new leads (mapping's default stage rule)
            external_id: Provider lead id, recorded on the lead
            extra_tags: Tags added on top of the resolved ones

        Returns:
            (lead, UpsertOutcome)

        Raises:
            StorageError: lead store failure
        """
        strategy = DedupStrategy(strategy)
        fields = self.normalizer.normalize_contact(resolved.fields)
        email_key, phone_key = self.compute_keys(fields)
        dedup_key = self.dedup_key(strategy, email_key, phone_key)

        if dedup_key is None:
            if strategy != DedupStrategy.NONE:
                logger.debug(
                    f"No {strategy.value} key for tenant {tenant_id} lead; creating without dedup"
                )
            lead = self._build_lead(
                tenant_id, fields, resolved, source, default_stage,
                email_key, phone_key, None, external_id, extra_tags,
            )
            await self.lead_store.insert(lead)
            return lead, UpsertOutcome.CREATED

        async with self.lock.acquire(f"lead:{tenant_id}:{dedup_key}"):
            existing = await self.lead_store.find_match(tenant_id, strategy, email_key, phone_key)
            if existing is not None:
                merged = await self._merge(existing, fields, resolved, strategy, source, external_id, extra_tags)
                return merged, UpsertOutcome.MERGED

            lead = self._build_lead(
                tenant_id, fields, resolved, source, default_stage,
                email_key, phone_key, dedup_key, external_id, extra_tags,
            )
            try:
                await self.lead_store.insert(lead)
            except DuplicateLeadError:
                # Lost a race with another worker holding a different lock table
                existing = await self.lead_store.find_match(tenant_id, strategy, email_key, phone_key)
                if existing is None:
                    raise
                logger.info(f"Concurrent insert for {dedup_key} (tenant {tenant_id}); merging instead")
                merged = await self._merge(existing, fields, resolved, strategy, source, external_id, extra_tags)
                return merged, UpsertOutcome.MERGED

        logger.debug(f"Created lead {lead.id} for tenant {tenant_id}")
        return lead, UpsertOutcome.CREATED

    def _build_lead(
        self,
        tenant_id: str,
        fields: Dict[str, Any],
        resolved: ResolvedLeadAttributes,
        source: LeadSource,
        default_stage: Optional[str],
        email_key: Optional[str],
        phone_key: Optional[str],
        dedup_key: Optional[str],
        external_id: Optional[str],
        extra_tags: Optional[List[str]],
    ) -> Lead:
        now = utcnow()
        values = {column: fields[column] for column in LEAD_COLUMNS if column in fields}
        values["name"] = compose_name(fields)

        if "stage" not in fields:
            values["stage"] = default_stage or resolved.default_stage or settings.DEFAULT_PIPELINE_STAGE

        tags = self._merge_tags([f"{source.label} Lead"], fields.get("tags"), extra_tags)

        lead = Lead(
            id=uuid.uuid4(),
            tenant_id=uuid.UUID(str(tenant_id)),
            source=source.value,
            tags=tags,
            custom_fields=self._custom_fields(fields, resolved),
            external_ids=[external_id] if external_id else [],
            email_key=email_key,
            phone_key=phone_key,
            dedup_key=dedup_key,
            created_at=now,
            updated_at=now,
            **values,
        )
        lead.activities.append(self.activities.lead_created(lead, source, external_id))
        return lead

    async def _merge(
        self,
        lead: Lead,
        fields: Dict[str, Any],
        resolved: ResolvedLeadAttributes,
        strategy: DedupStrategy,
        source: LeadSource,
        external_id: Optional[str],
        extra_tags: Optional[List[str]],
    ) -> Lead:
        identity = IDENTITY_FIELDS[strategy]
        updated: List[str] = []

        incoming = {column: fields[column] for column in LEAD_COLUMNS if column in fields}
        name = compose_name(fields)
        if not is_blank(name):
            incoming["name"] = name

        for column, value in incoming.items():
            if column in identity or is_blank(value):
                continue
            if getattr(lead, column) != value:
                setattr(lead, column, value)
                updated.append(column)

        custom_fields = dict(lead.custom_fields or {})
        for key, value in self._custom_fields(fields, resolved).items():
            if is_blank(value):
                continue
            if custom_fields.get(key) != value:
                custom_fields[key] = value
                updated.append(f"customFields.{key}")
        lead.custom_fields = custom_fields

        tags = self._merge_tags(lead.tags, fields.get("tags"), extra_tags)
        if tags != list(lead.tags or []):
            lead.tags = tags
            updated.append("tags")

        if external_id and external_id not in (lead.external_ids or []):
            lead.external_ids = list(lead.external_ids or []) + [external_id]

        # A non-identity contact field may have changed
        lead.email_key, lead.phone_key = self.compute_keys({"email": lead.email, "phone": lead.phone})

        lead.updated_at = utcnow()
        lead.activities.append(self.activities.lead_merged(lead, source, updated, external_id))

        saved = await self.lead_store.save(lead)
        logger.debug(f"Merged into lead {lead.id}: {sorted(updated) or 'no field changes'}")
        return saved

    @staticmethod
    def _custom_fields(fields: Dict[str, Any], resolved: ResolvedLeadAttributes) -> Dict[str, Any]:
        custom = dict(resolved.custom_fields)
        for part in NAME_PARTS:
            if part in fields and not is_blank(fields[part]):
                custom[part] = fields[part]
        return custom

    @staticmethod
    def _merge_tags(*groups) -> List[str]:
        tags: List[str] = []
        for group in groups:
            for tag in group or []:
                if not is_blank(tag) and tag not in tags:
                    tags.append(tag)
        return tags
