# tests/ingestion_engine/test_deduplicator.py
"""
Tests for Deduplicator.upsert_lead()

Coverage:
- Strategy "none" always creates
- Email / phone / email_phone matching on normalized keys
- Merge rules (identity fields, empty values, custom fields, tags)
- Stage selection and default tags for new leads
- Concurrent upserts for one key create a single lead
- Storage-level duplicate detection
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from app.ingestion_engine.core.deduplicator import Deduplicator, compose_name
from app.ingestion_engine.core.types import (
    DedupStrategy,
    LeadSource,
    ResolvedLeadAttributes,
    UpsertOutcome,
)
from app.ingestion_engine.errors import DuplicateLeadError


@pytest.fixture
def deduplicator(lead_store):
    return Deduplicator(lead_store)


def resolved(**fields):
    custom_fields = fields.pop("custom_fields", {})
    default_stage = fields.pop("default_stage", None)
    return ResolvedLeadAttributes(fields=fields, custom_fields=custom_fields, default_stage=default_stage)


# ============================================================================
# KEYS
# ============================================================================

class TestKeys:

    def test_dedup_key_per_strategy(self):
        assert Deduplicator.dedup_key(DedupStrategy.NONE, "a@b.co", "16502530000") is None
        assert Deduplicator.dedup_key(DedupStrategy.EMAIL, "a@b.co", None) == "email:a@b.co"
        assert Deduplicator.dedup_key(DedupStrategy.PHONE, None, "16502530000") == "phone:16502530000"
        assert Deduplicator.dedup_key(DedupStrategy.EMAIL_PHONE, "a@b.co", None) is None
        assert (
            Deduplicator.dedup_key(DedupStrategy.EMAIL_PHONE, "a@b.co", "16502530000")
            == "email_phone:a@b.co|16502530000"
        )

    def test_compute_keys_normalizes(self, deduplicator):
        email_key, phone_key = deduplicator.compute_keys({
            "email": " Jane@Example.COM",
            "phone": "(650) 253-0000",
        })

        assert email_key == "jane@example.com"
        assert phone_key == "16502530000"

    def test_compose_name(self):
        assert compose_name({"name": "Jane Doe"}) == "Jane Doe"
        assert compose_name({"first_name": "Jane", "last_name": "Doe"}) == "Jane Doe"
        assert compose_name({"first_name": "Jane"}) == "Jane"
        assert compose_name({}) is None


# ============================================================================
# STRATEGY NONE
# ============================================================================

class TestStrategyNone:

    @pytest.mark.asyncio
    async def test_identical_payloads_create_two_leads(self, deduplicator, lead_store, tenant_id):
        attrs = resolved(name="Jane", email="jane@example.com", phone="+16502530000")

        first, first_outcome = await deduplicator.upsert_lead(
            tenant_id, attrs, DedupStrategy.NONE, LeadSource.WEBSITE
        )
        second, second_outcome = await deduplicator.upsert_lead(
            tenant_id, attrs, DedupStrategy.NONE, LeadSource.WEBSITE
        )

        assert first_outcome == second_outcome == UpsertOutcome.CREATED
        assert first.id != second.id
        assert len(await lead_store.list_leads(tenant_id)) == 2
        assert first.dedup_key is None


# ============================================================================
# CREATE
# ============================================================================

class TestCreate:

    @pytest.mark.asyncio
    async def test_new_lead_fields(self, deduplicator, tenant_id):
        attrs = resolved(
            name="  Jane   Doe ",
            email="Jane@Example.com",
            phone="(650) 253-0000",
            tags=["vip"],
            custom_fields={"budget": "5000"},
        )

        lead, outcome = await deduplicator.upsert_lead(
            tenant_id, attrs, DedupStrategy.EMAIL, LeadSource.FACEBOOK_ADS,
            external_id="fb-1",
        )

        assert outcome == UpsertOutcome.CREATED
        assert lead.name == "Jane Doe"
        assert lead.email == "jane@example.com"
        assert lead.phone == "+16502530000"
        assert lead.source == "facebook_ads"
        assert lead.tags == ["Facebook Lead", "vip"]
        assert lead.custom_fields == {"budget": "5000"}
        assert lead.external_ids == ["fb-1"]
        assert lead.dedup_key == "email:jane@example.com"
        assert [a.activity_type for a in lead.activities] == ["LEAD_CREATED"]

    @pytest.mark.asyncio
    async def test_stage_defaults_to_first_pipeline_stage(self, deduplicator, tenant_id):
        lead, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com"), DedupStrategy.NONE, LeadSource.WEBSITE
        )
        assert lead.stage == "New"

    @pytest.mark.asyncio
    async def test_stage_from_default_stage_rule(self, deduplicator, tenant_id):
        lead, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com"), DedupStrategy.NONE, LeadSource.WEBSITE,
            default_stage="Contacted",
        )
        assert lead.stage == "Contacted"

    @pytest.mark.asyncio
    async def test_resolved_stage_wins_over_default(self, deduplicator, tenant_id):
        lead, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", stage="Qualified"), DedupStrategy.NONE,
            LeadSource.WEBSITE, default_stage="Contacted",
        )
        assert lead.stage == "Qualified"

    @pytest.mark.asyncio
    async def test_name_parts_compose_name(self, deduplicator, tenant_id):
        lead, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(first_name="Ana", last_name="Silva", email="ana@example.com"),
            DedupStrategy.NONE, LeadSource.FACEBOOK_ADS,
        )
        assert lead.name == "Ana Silva"
        assert lead.custom_fields == {"first_name": "Ana", "last_name": "Silva"}

    @pytest.mark.asyncio
    async def test_missing_key_creates_without_dedup(self, deduplicator, lead_store, tenant_id):
        attrs = resolved(name="No Email", phone="+16502530000")

        await deduplicator.upsert_lead(tenant_id, attrs, DedupStrategy.EMAIL, LeadSource.WEBSITE)
        await deduplicator.upsert_lead(tenant_id, attrs, DedupStrategy.EMAIL, LeadSource.WEBSITE)

        assert len(await lead_store.list_leads(tenant_id)) == 2


# ============================================================================
# MERGE
# ============================================================================

class TestMerge:

    @pytest.mark.asyncio
    async def test_email_strategy_merges(self, deduplicator, lead_store, tenant_id):
        original, _ = await deduplicator.upsert_lead(
            tenant_id,
            resolved(name="Jane", email="jane@example.com", company="Acme", custom_fields={"budget": "5000"}),
            DedupStrategy.EMAIL, LeadSource.WEBSITE,
        )
        created_at = original.created_at
        updated_at = original.updated_at

        merged, outcome = await deduplicator.upsert_lead(
            tenant_id,
            resolved(
                name="Jane Doe",
                email="JANE@example.com ",
                company="",
                city="Lisbon",
                custom_fields={"timeline": "Q3"},
            ),
            DedupStrategy.EMAIL, LeadSource.WEBSITE,
        )

        assert outcome == UpsertOutcome.MERGED
        assert merged.id == original.id
        assert merged.name == "Jane Doe"
        assert merged.company == "Acme"           # empty incoming value ignored
        assert merged.city == "Lisbon"
        assert merged.email == "jane@example.com"
        assert merged.custom_fields == {"budget": "5000", "timeline": "Q3"}
        assert merged.created_at == created_at
        assert merged.updated_at >= updated_at

        types = [a.activity_type for a in merged.activities]
        assert types == ["LEAD_CREATED", "LEAD_MERGED"]
        assert sorted(merged.activities[1].activity_metadata["updated_fields"]) == [
            "city", "customFields.timeline", "name",
        ]
        assert len(await lead_store.list_leads(tenant_id)) == 1

    @pytest.mark.asyncio
    async def test_phone_strategy_matches_formatting_variants(self, deduplicator, tenant_id):
        first, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(name="A", phone="(650) 253-0000"), DedupStrategy.PHONE, LeadSource.WEBSITE
        )
        second, outcome = await deduplicator.upsert_lead(
            tenant_id, resolved(name="A", phone="+1 650.253.0000"), DedupStrategy.PHONE, LeadSource.WEBSITE
        )

        assert outcome == UpsertOutcome.MERGED
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_email_phone_strategy_needs_both(self, deduplicator, lead_store, tenant_id):
        await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", phone="+16502530000"),
            DedupStrategy.EMAIL_PHONE, LeadSource.WEBSITE,
        )
        _, outcome = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", phone="+16502530001"),
            DedupStrategy.EMAIL_PHONE, LeadSource.WEBSITE,
        )

        assert outcome == UpsertOutcome.CREATED
        assert len(await lead_store.list_leads(tenant_id)) == 2

    @pytest.mark.asyncio
    async def test_tags_union_and_external_ids_append(self, deduplicator, tenant_id):
        await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", tags=["solar"]),
            DedupStrategy.EMAIL, LeadSource.WEBSITE, external_id="s-1",
        )
        lead, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", tags=["solar", "battery"]),
            DedupStrategy.EMAIL, LeadSource.FACEBOOK_ADS, external_id="fb-9",
        )

        assert lead.tags == ["Website Lead", "solar", "battery"]
        assert lead.external_ids == ["s-1", "fb-9"]

    @pytest.mark.asyncio
    async def test_tenants_do_not_share_leads(self, deduplicator, lead_store, tenant_id):
        other_tenant = "5b1c3f36-9d3a-4d0b-9a3e-8f8b1c2d3e4f"
        attrs = resolved(email="a@example.com")

        await deduplicator.upsert_lead(tenant_id, attrs, DedupStrategy.EMAIL, LeadSource.WEBSITE)
        _, outcome = await deduplicator.upsert_lead(other_tenant, attrs, DedupStrategy.EMAIL, LeadSource.WEBSITE)

        assert outcome == UpsertOutcome.CREATED


# ============================================================================
# CONCURRENCY
# ============================================================================

class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_upserts_create_one_lead(self, deduplicator, lead_store, tenant_id):
        attrs = resolved(name="Jane", email="jane@example.com")

        results = await asyncio.gather(*(
            deduplicator.upsert_lead(tenant_id, attrs, DedupStrategy.EMAIL, LeadSource.WEBSITE)
            for _ in range(10)
        ))

        outcomes = [outcome for _, outcome in results]
        assert outcomes.count(UpsertOutcome.CREATED) == 1
        assert outcomes.count(UpsertOutcome.MERGED) == 9
        assert len({lead.id for lead, _ in results}) == 1
        assert len(await lead_store.list_leads(tenant_id)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_insert_falls_back_to_merge(self, lead_store, tenant_id):
        deduplicator = Deduplicator(lead_store)
        existing, _ = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com"), DedupStrategy.EMAIL, LeadSource.WEBSITE
        )

        # Simulate another worker: the first lookup misses, the insert collides
        lead_store.find_match = AsyncMock(side_effect=[None, existing])
        lead_store.insert = AsyncMock(side_effect=DuplicateLeadError(tenant_id, "email:a@example.com"))

        lead, outcome = await deduplicator.upsert_lead(
            tenant_id, resolved(email="a@example.com", city="Porto"), DedupStrategy.EMAIL, LeadSource.WEBSITE
        )

        assert outcome == UpsertOutcome.MERGED
        assert lead.id == existing.id
        assert lead.city == "Porto"
        assert lead_store.find_match.await_count == 2
