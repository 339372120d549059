# tests/routers/test_webhook_routes.py
"""
API tests for webhook and integration routes (FastAPI TestClient)

The app runs against the in-memory engine via dependency_overrides; startup
events are not triggered, so no database or scheduler is involved.
"""

import asyncio
import hashlib
import hmac
import json
import pytest
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from app.config import settings
from app.ingestion_engine.core.types import LeadSource
from app.ingestion_engine.errors import InvalidMappingConfiguration, StorageError
from app.main import app
from app.services.ingestion_service import get_ingestion_service


WEBSITE_MAPPING = {
    "rules": [
        {"sourceField": "name", "crmField": "name"},
        {"sourceField": "email", "crmField": "email"},
        {"sourceField": "phone", "crmField": "phone"},
        {"customValue": "Website Inbound", "isDefaultStage": True},
    ],
    "dedup_strategy": "email",
}


@pytest.fixture
def client(service):
    app.dependency_overrides[get_ingestion_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tenant():
    return str(uuid4())


def run(coro):
    """Run a store coroutine from a sync test"""
    return asyncio.run(coro)


# ============================================================================
# HEALTH
# ============================================================================

def test_health(client):
    with patch.object(settings, "STORAGE_BACKEND", "memory"):
        response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] is None
    assert "leads" in data["tables"]


def test_health_degraded_when_database_down(client):
    with patch.object(settings, "STORAGE_BACKEND", "postgres"), \
            patch("app.main.ping_db", AsyncMock(return_value=False)):
        response = client.get("/health")

    assert response.json()["status"] == "degraded"
    assert response.json()["database"] == "unavailable"


# ============================================================================
# MAPPING CONFIGURATION
# ============================================================================

class TestMappingRoutes:

    def test_save_and_get(self, client, tenant):
        response = client.put(f"/api/v1/integrations/{tenant}/website/mapping", json=WEBSITE_MAPPING)

        assert response.status_code == 200
        assert response.json()["default_stage"] == "Website Inbound"

        response = client.get(f"/api/v1/integrations/{tenant}/website/mapping")

        assert response.status_code == 200
        data = response.json()
        assert data["dedup_strategy"] == "email"
        assert len(data["rules"]) == 4
        assert data["rules"][0]["sourceField"] == "name"

    def test_ambiguous_mapping_rejected(self, client, service, tenant):
        body = {"rules": [
            {"sourceField": "email", "crmField": "email"},
            {"sourceField": "work_email", "crmField": "email"},
        ]}

        response = client.put(f"/api/v1/integrations/{tenant}/website/mapping", json=body)

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert "only one rule may target a field" in detail["errors"][0]
        assert run(service.mapping_store.get_configuration(tenant, LeadSource.WEBSITE)) is None

    def test_missing_mapping(self, client, tenant):
        response = client.get(f"/api/v1/integrations/{tenant}/google_ads/mapping")
        assert response.status_code == 404

    def test_unknown_source(self, client, tenant):
        response = client.get(f"/api/v1/integrations/{tenant}/linkedin/mapping")
        assert response.status_code == 422

    def test_invalid_stored_mapping(self, client, service, tenant):
        service.mapping_store.get_configuration = AsyncMock(
            side_effect=InvalidMappingConfiguration("Invalid mapping configuration for website", ["dup"])
        )

        response = client.get(f"/api/v1/integrations/{tenant}/website/mapping")

        assert response.status_code == 409

    def test_storage_unavailable(self, client, service, tenant):
        service.mapping_store.save_configuration = AsyncMock(
            side_effect=StorageError("save_configuration", "connection refused")
        )

        response = client.put(f"/api/v1/integrations/{tenant}/website/mapping", json=WEBSITE_MAPPING)

        assert response.status_code == 503


# ============================================================================
# WEBSITE WEBHOOK
# ============================================================================

class TestWebsiteWebhook:

    def test_submission_ingested(self, client, service, tenant):
        client.put(f"/api/v1/integrations/{tenant}/website/mapping", json=WEBSITE_MAPPING)

        response = client.post(f"/api/v1/webhooks/website/{tenant}", json={
            "submission_id": "s-1",
            "name": "Jane Doe",
            "email": "jane@example.com",
            "phone": "(650) 253-0000",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "SUCCESS"
        assert data["upsert_outcome"] == "created"
        leads = run(service.lead_store.list_leads(tenant))
        assert len(leads) == 1
        assert leads[0].stage == "Website Inbound"

    def test_failed_ingestion_reported(self, client, tenant):
        response = client.post(f"/api/v1/webhooks/website/{tenant}", json={"email": "jane@example.com"})

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "FAILED"
        assert data["failure_reason"] == "UNMAPPED_SOURCE"

    def test_invalid_json(self, client, tenant):
        response = client.post(
            f"/api/v1/webhooks/website/{tenant}",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_audit_listing(self, client, tenant):
        client.post(f"/api/v1/webhooks/website/{tenant}", json={"email": "a@example.com"})
        client.put(f"/api/v1/integrations/{tenant}/website/mapping", json=WEBSITE_MAPPING)
        client.post(f"/api/v1/webhooks/website/{tenant}", json={
            "name": "A", "email": "a@example.com", "phone": "+16502530000",
        })

        response = client.get(f"/api/v1/integrations/{tenant}/audit")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["records"][0]["outcome"] == "SUCCESS"

        response = client.get(f"/api/v1/integrations/{tenant}/audit", params={"outcome": "FAILED"})
        assert [r["failure_reason"] for r in response.json()["records"]] == ["UNMAPPED_SOURCE"]


# ============================================================================
# FACEBOOK WEBHOOK
# ============================================================================

class TestFacebookWebhook:

    def test_verification(self, client, tenant):
        with patch.object(settings, "FACEBOOK_VERIFY_TOKEN", "verify-me"):
            response = client.get(f"/api/v1/webhooks/facebook/{tenant}", params={
                "hub.mode": "subscribe",
                "hub.verify_token": "verify-me",
                "hub.challenge": "12345",
            })
            assert response.status_code == 200
            assert response.text == "12345"

            response = client.get(f"/api/v1/webhooks/facebook/{tenant}", params={
                "hub.mode": "subscribe",
                "hub.verify_token": "wrong",
                "hub.challenge": "12345",
            })
            assert response.status_code == 403

    def test_leadgen_events_accepted(self, client, service, tenant):
        service.ingest_many = AsyncMock(return_value=[])
        body = {"object": "page", "entry": [{"id": "page-1", "changes": [
            {"field": "leadgen", "value": {"leadgen_id": "1", "page_id": "page-1"}},
            {"field": "leadgen", "value": {"leadgen_id": "2", "page_id": "page-1"}},
        ]}]}

        response = client.post(f"/api/v1/webhooks/facebook/{tenant}", json=body)

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "events": 2}
        service.ingest_many.assert_awaited_once()
        args = service.ingest_many.await_args.args
        assert args[0] == tenant
        assert args[1] == LeadSource.FACEBOOK_ADS
        assert [e.external_id for e in args[2]] == ["1", "2"]

    def test_signature_checked_when_secret_set(self, client, service, tenant):
        service.ingest_many = AsyncMock(return_value=[])
        raw = json.dumps({"object": "page", "entry": []}).encode()
        signature = "sha256=" + hmac.new(b"app-secret", raw, hashlib.sha256).hexdigest()

        with patch.object(settings, "FACEBOOK_APP_SECRET", "app-secret"):
            bad = client.post(
                f"/api/v1/webhooks/facebook/{tenant}",
                content=raw,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=bad"},
            )
            good = client.post(
                f"/api/v1/webhooks/facebook/{tenant}",
                content=raw,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature},
            )

        assert bad.status_code == 403
        assert good.status_code == 200
        assert good.json()["events"] == 0


# ============================================================================
# GOOGLE ADS WEBHOOK
# ============================================================================

class TestGoogleAdsWebhook:

    BODY = {
        "lead_id": "L-1",
        "customer_id": "123-456-7890",
        "google_key": "shared",
        "user_column_data": [
            {"column_id": "FULL_NAME", "string_value": "Sam Lee"},
            {"column_id": "EMAIL", "string_value": "sam@example.com"},
            {"column_id": "PHONE_NUMBER", "string_value": "+16502530000"},
        ],
    }

    def test_lead_ingested_in_background(self, client, service, tenant):
        client.put(f"/api/v1/integrations/{tenant}/google_ads/mapping", json={"rules": [
            {"sourceField": "full_name", "crmField": "name"},
            {"sourceField": "email", "crmField": "email"},
            {"sourceField": "phone_number", "crmField": "phone"},
        ]})

        response = client.post(f"/api/v1/webhooks/google-ads/{tenant}", json=self.BODY)

        assert response.status_code == 200
        assert response.json()["events"] == 1
        records = run(service.audit_sink.list_records(tenant))
        assert records[0].outcome == "SUCCESS"
        assert records[0].external_id == "L-1"

    def test_wrong_google_key(self, client, tenant):
        with patch.object(settings, "GOOGLE_ADS_WEBHOOK_KEY", "expected"):
            response = client.post(f"/api/v1/webhooks/google-ads/{tenant}", json=self.BODY)

        assert response.status_code == 403
