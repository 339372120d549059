"""
Webhook routes - receive lead events from Facebook, Google Ads and website forms.

Transport only: each delivery is split into InboundLeadEvents and handed to
the ingestion engine. Provider webhooks are acknowledged immediately and
ingested in the background; website submissions are ingested inline.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status, BackgroundTasks
from fastapi.responses import PlainTextResponse
from typing import Any, Dict, Optional
from uuid import UUID
import hashlib
import hmac
import json
import logging

from app.config import settings
from app.ingestion_engine.adapters.facebook import FacebookLeadAdsAdapter
from app.ingestion_engine.adapters.google_ads import GoogleAdsLeadFormAdapter
from app.ingestion_engine.adapters.website import WebsiteFormAdapter
from app.ingestion_engine.core.types import LeadSource
from app.schemas.ingestion import IngestionAuditRecordResponse, WebhookAccepted
from app.services.ingestion_service import IngestionService, get_ingestion_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    return body


def _verify_facebook_signature(raw_body: bytes, signature: Optional[str]):
    """Check X-Hub-Signature-256 when an app secret is configured."""
    if not settings.FACEBOOK_APP_SECRET:
        return
    expected = "sha256=" + hmac.new(
        settings.FACEBOOK_APP_SECRET.encode("utf-8"), raw_body, hashlib.sha256
    ).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature):
        raise HTTPException(status_code=403, detail="Invalid signature")


# ============================================================================
# FACEBOOK LEAD ADS
# ============================================================================

@router.get("/facebook/{tenant_id}", response_class=PlainTextResponse)
async def verify_facebook_subscription(
    tenant_id: UUID,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Webhook subscription handshake: echo hub.challenge if the token matches."""
    if (
        hub_mode == "subscribe"
        and settings.FACEBOOK_VERIFY_TOKEN
        and hub_verify_token == settings.FACEBOOK_VERIFY_TOKEN
    ):
        logger.info(f"Facebook webhook verified for tenant {tenant_id}")
        return hub_challenge or ""
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/facebook/{tenant_id}", response_model=WebhookAccepted)
async def receive_facebook_leads(
    tenant_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Lead Ads change notifications.
    One ingestion per leadgen change, run concurrently after the response.
    """
    raw = await request.body()
    _verify_facebook_signature(raw, request.headers.get("X-Hub-Signature-256"))
    body = await _json_body(request)

    events = FacebookLeadAdsAdapter.events_from_webhook(body)
    if events:
        background_tasks.add_task(service.ingest_many, str(tenant_id), LeadSource.FACEBOOK_ADS, events)

    logger.info(f"Facebook webhook for tenant {tenant_id}: {len(events)} leadgen event(s)")
    return WebhookAccepted(events=len(events))


# ============================================================================
# GOOGLE ADS LEAD FORMS
# ============================================================================

@router.post("/google-ads/{tenant_id}", response_model=WebhookAccepted)
async def receive_google_ads_lead(
    tenant_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Lead form extension webhook (one lead per delivery)."""
    body = await _json_body(request)

    if settings.GOOGLE_ADS_WEBHOOK_KEY and body.get("google_key") != settings.GOOGLE_ADS_WEBHOOK_KEY:
        raise HTTPException(status_code=403, detail="Invalid google_key")

    event = GoogleAdsLeadFormAdapter.event_from_webhook(body)
    background_tasks.add_task(service.ingest, str(tenant_id), LeadSource.GOOGLE_ADS, event)
    return WebhookAccepted(events=1)


# ============================================================================
# WEBSITE FORMS
# ============================================================================

@router.post("/website/{tenant_id}", response_model=IngestionAuditRecordResponse)
async def receive_website_submission(
    tenant_id: UUID,
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Website form submission.
    Ingested before responding; the audit record says what happened.
    """
    body = await _json_body(request)
    adapter = service.adapters.get(LeadSource.WEBSITE) or WebsiteFormAdapter()
    event = adapter.event_from_submission(body)

    record = await service.ingest(str(tenant_id), LeadSource.WEBSITE, event)
    return IngestionAuditRecordResponse.model_validate(record)
