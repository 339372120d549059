"""APScheduler configuration for Google Ads lead pull-sync."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Dict, Optional
import logging

from app.config import settings
from app.ingestion_engine.core.types import IngestionOutcome, LeadSource, utcnow
from app.ingestion_engine.errors import IngestionError, ProviderError, StorageError
from app.models import ConnectedAccount
from app.services.ingestion_service import IngestionService, get_ingestion_service

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def sync_google_ads_account(service: IngestionService, account: ConnectedAccount) -> Dict[str, int]:
    """
    Pull new lead form submissions for one account and ingest them.

    last_synced_at moves to the start of this run once the batch has been
    ingested; failed submissions are in the audit log.
    """
    stats = {"submissions": 0, "succeeded": 0, "failed": 0}
    adapter = service.adapters[LeadSource.GOOGLE_ADS]
    started_at = utcnow()

    try:
        access_token = await service.token_manager.get_valid_access_token(account)
    except IngestionError as e:
        logger.warning(
            f"Skipping Google Ads sync for account {account.id} "
            f"(tenant {account.tenant_id}): {e.reason.value} - {e.message}"
        )
        return stats

    try:
        events = await adapter.list_submissions(
            account.external_account_id,
            access_token,
            since=account.last_synced_at,
        )
    except ProviderError as e:
        logger.error(f"Could not list Google Ads submissions for account {account.id}: {e}")
        return stats

    records = await service.ingest_many(str(account.tenant_id), LeadSource.GOOGLE_ADS, events)
    stats["submissions"] = len(records)
    stats["succeeded"] = sum(1 for r in records if r.outcome == IngestionOutcome.SUCCESS.value)
    stats["failed"] = stats["submissions"] - stats["succeeded"]

    try:
        await service.credential_store.mark_synced(account.id, started_at)
    except StorageError as e:
        logger.error(f"Could not record sync time for account {account.id}: {e}")

    return stats


async def sync_google_ads_leads(service: Optional[IngestionService] = None) -> Dict[str, int]:
    """
    Run pull-sync for every Google Ads account that does not need reauth.
    Called by APScheduler.
    """
    service = service or get_ingestion_service()
    totals = {"accounts": 0, "submissions": 0, "succeeded": 0, "failed": 0}

    logger.info("Running scheduled Google Ads lead sync...")

    try:
        accounts = await service.credential_store.list_accounts(LeadSource.GOOGLE_ADS)
    except StorageError as e:
        logger.error(f"Could not list Google Ads accounts: {e}")
        return totals

    for account in accounts:
        stats = await sync_google_ads_account(service, account)
        totals["accounts"] += 1
        for key, value in stats.items():
            totals[key] += value

    logger.info(f"Google Ads sync complete: {totals}")
    return totals


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - Google Ads lead sync: every GOOGLE_ADS_SYNC_MINUTES
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    if not settings.ENABLE_GOOGLE_ADS_SYNC:
        logger.info("Google Ads sync disabled; scheduler not started")
        return

    scheduler.add_job(
        sync_google_ads_leads,
        trigger=IntervalTrigger(minutes=settings.GOOGLE_ADS_SYNC_MINUTES),
        id='google_ads_lead_sync',
        name='Google Ads Lead Sync',
        replace_existing=True,
        max_instances=1
    )
    scheduler.start()
    logger.info("APScheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
