# tests/conftest.py
"""Shared fixtures: in-memory engine, accounts, mapping configurations"""

import pytest
from datetime import timedelta
from uuid import uuid4
from unittest.mock import AsyncMock

from app.ingestion_engine.adapters.oauth import OAuthTokenGrant
from app.ingestion_engine.core.mapping import MappingConfiguration, MappingRule
from app.ingestion_engine.core.types import DedupStrategy, LeadSource, utcnow
from app.ingestion_engine.stores.memory import (
    MemoryAuditSink,
    MemoryCredentialStore,
    MemoryLeadStore,
    MemoryMappingStore,
)
from app.models import ConnectedAccount
from app.services.ingestion_service import build_ingestion_service


# ============================================================================
# IDS & STORES
# ============================================================================

@pytest.fixture
def tenant_id():
    return str(uuid4())


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def mapping_store():
    return MemoryMappingStore()


@pytest.fixture
def lead_store():
    return MemoryLeadStore()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


# ============================================================================
# FACTORIES
# ============================================================================

@pytest.fixture
def make_account(tenant_id):
    """Build a ConnectedAccount (not yet saved). Defaults to an expired Google Ads token."""
    def _make(**overrides):
        now = utcnow()
        values = dict(
            id=uuid4(),
            tenant_id=tenant_id,
            source=LeadSource.GOOGLE_ADS.value,
            external_account_id="1234567890",
            access_token="old-access-token",
            refresh_token="refresh-token",
            token_expires_at=now - timedelta(minutes=5),
            scopes=["https://www.googleapis.com/auth/adwords"],
            provider_metadata={},
            needs_reauth=False,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        return ConnectedAccount(**values)
    return _make


@pytest.fixture
def make_configuration(tenant_id):
    """Build a validated MappingConfiguration from rule dicts."""
    def _make(source=LeadSource.WEBSITE, rules=None, dedup_strategy=DedupStrategy.NONE, is_connected=True):
        return MappingConfiguration.build(
            tenant_id=tenant_id,
            source=source,
            rules=[MappingRule.from_dict(rule) for rule in (rules or [])],
            dedup_strategy=dedup_strategy,
            is_connected=is_connected,
        )
    return _make


@pytest.fixture
def website_rules():
    """Typical website form mapping"""
    return [
        {"source_field": "full_name", "target_field": "name"},
        {"source_field": "email", "target_field": "email"},
        {"source_field": "phone", "target_field": "phone"},
        {"source_field": "company", "target_field": "company"},
        {"source_field": "budget", "target_field": "customFields.budget"},
    ]


@pytest.fixture
def sample_submission():
    return {
        "submission_id": "sub-1001",
        "full_name": "  Jane   Doe ",
        "email": "Jane.Doe@Example.com ",
        "phone": "(650) 253-0000",
        "company": "Acme Corp",
        "budget": "5000",
        "utm_source": "newsletter",
    }


# ============================================================================
# ENGINE
# ============================================================================

@pytest.fixture
def oauth_provider():
    """OAuth provider whose refresh always succeeds with a one-hour token"""
    provider = AsyncMock()
    provider.refresh = AsyncMock(return_value=OAuthTokenGrant(
        access_token="new-access-token",
        expires_at=utcnow() + timedelta(hours=1),
    ))
    return provider


@pytest.fixture
def service(oauth_provider):
    """Memory-backed ingestion service with default adapters and a mocked OAuth provider"""
    return build_ingestion_service(
        storage_backend="memory",
        lock_backend="memory",
        oauth_providers={
            LeadSource.GOOGLE_ADS: oauth_provider,
            LeadSource.FACEBOOK_ADS: oauth_provider,
        },
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
    config.addinivalue_line("markers", "slow: slow running tests")
