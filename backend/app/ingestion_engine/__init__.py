"""
Lead Ingestion Engine.

Turns inbound lead events from Facebook Lead Ads, Google Ads lead forms and
website forms into canonical leads, using per-tenant field mappings.

Main components:
- Adapters: Source-specific detail fetch, payload flattening, OAuth refresh
- Core: Field mapping, token lifecycle, deduplication, orchestration
- Stores: Credential, mapping, lead and audit persistence (Postgres or memory)

Usage:
    from app.services.ingestion_service import build_ingestion_service

    service = build_ingestion_service(storage_backend="memory")
    record = await service.ingest(tenant_id, LeadSource.WEBSITE, event)
"""

__version__ = "1.0.0"
__all__ = ["adapters", "core", "stores"]
