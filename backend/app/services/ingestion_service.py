"""
Wiring for the ingestion engine.

Builds stores, locks, adapters and the orchestrator from settings, and
keeps one shared instance for the web app and the scheduler.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.config import settings
from app.database import AsyncSessionLocal
from app.ingestion_engine.adapters import get_adapter, get_oauth_providers
from app.ingestion_engine.adapters.base import SourceAdapter
from app.ingestion_engine.core.deduplicator import Deduplicator
from app.ingestion_engine.core.field_mapper import FieldMapper
from app.ingestion_engine.core.keyed_lock import KeyedLock, RedisKeyedLock
from app.ingestion_engine.core.orchestrator import IngestionOrchestrator
from app.ingestion_engine.core.token_manager import TokenManager
from app.ingestion_engine.core.types import InboundLeadEvent, LeadSource, MissingFieldPolicy
from app.ingestion_engine.stores.base import AuditSink, CredentialStore, LeadStore, MappingStore
from app.ingestion_engine.stores.memory import (
    MemoryAuditSink,
    MemoryCredentialStore,
    MemoryLeadStore,
    MemoryMappingStore,
)
from app.ingestion_engine.stores.sqlalchemy_store import (
    SQLAlchemyAuditSink,
    SQLAlchemyCredentialStore,
    SQLAlchemyLeadStore,
    SQLAlchemyMappingStore,
)
from app.models import IngestionAuditLog
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)


@dataclass
class IngestionService:
    """Everything a request handler or job needs to ingest leads."""
    credential_store: CredentialStore
    mapping_store: MappingStore
    lead_store: LeadStore
    audit_sink: AuditSink
    token_manager: TokenManager
    orchestrator: IngestionOrchestrator
    adapters: Dict[LeadSource, SourceAdapter]
    locks: List[object] = field(default_factory=list)

    async def ingest(self, tenant_id: str, source: LeadSource, event: InboundLeadEvent) -> IngestionAuditLog:
        return await self.orchestrator.ingest(tenant_id, source, event)

    async def ingest_many(
        self,
        tenant_id: str,
        source: LeadSource,
        events: List[InboundLeadEvent],
    ) -> List[IngestionAuditLog]:
        """Ingest events concurrently; each gets its own audit record."""
        if not events:
            return []
        return list(await asyncio.gather(
            *(self.orchestrator.ingest(tenant_id, source, event) for event in events)
        ))

    async def close(self):
        for lock in self.locks:
            if isinstance(lock, RedisKeyedLock):
                await lock.close()


def _build_lock(backend: str):
    if backend == "redis":
        logger.info("Using redis locks")
        return RedisKeyedLock.from_url(settings.REDIS_URL, timeout=settings.LOCK_TIMEOUT_SECONDS)
    return KeyedLock()


def build_ingestion_service(
    storage_backend: Optional[str] = None,
    lock_backend: Optional[str] = None,
    missing_field_policy: Optional[MissingFieldPolicy] = None,
    adapters: Optional[Dict[LeadSource, SourceAdapter]] = None,
    oauth_providers=None,
) -> IngestionService:
    """
    Build the ingestion engine from settings.

    Args:
        storage_backend: "postgres" or "memory" (default: settings.STORAGE_BACKEND)
        lock_backend: "memory" or "redis" (default: settings.LOCK_BACKEND)
        missing_field_policy: Override settings.MISSING_FIELD_POLICY
        adapters: Adapter per source (tests pass adapters with mock transports)
        oauth_providers: OAuth provider per source
    """
    storage_backend = storage_backend or settings.STORAGE_BACKEND
    lock_backend = lock_backend or settings.LOCK_BACKEND

    if storage_backend == "memory":
        credential_store = MemoryCredentialStore()
        mapping_store = MemoryMappingStore()
        lead_store = MemoryLeadStore()
        audit_sink = MemoryAuditSink()
    elif storage_backend == "postgres":
        credential_store = SQLAlchemyCredentialStore(AsyncSessionLocal)
        mapping_store = SQLAlchemyMappingStore(AsyncSessionLocal)
        lead_store = SQLAlchemyLeadStore(AsyncSessionLocal)
        audit_sink = SQLAlchemyAuditSink(AsyncSessionLocal)
    else:
        raise ValueError(f"Unknown storage backend: {storage_backend}")

    token_lock = _build_lock(lock_backend)
    lead_lock = _build_lock(lock_backend)

    if adapters is None:
        adapters = {source: get_adapter(source) for source in LeadSource}
    if oauth_providers is None:
        oauth_providers = get_oauth_providers()

    token_manager = TokenManager(credential_store, oauth_providers, lock=token_lock)
    deduplicator = Deduplicator(lead_store, lock=lead_lock)
    orchestrator = IngestionOrchestrator(
        credential_store=credential_store,
        mapping_store=mapping_store,
        lead_store=lead_store,
        token_manager=token_manager,
        deduplicator=deduplicator,
        audit_service=AuditService(audit_sink),
        adapters=adapters,
        field_mapper=FieldMapper(),
        missing_field_policy=missing_field_policy,
    )

    logger.info(f"Ingestion engine ready (storage: {storage_backend}, locks: {lock_backend})")
    return IngestionService(
        credential_store=credential_store,
        mapping_store=mapping_store,
        lead_store=lead_store,
        audit_sink=audit_sink,
        token_manager=token_manager,
        orchestrator=orchestrator,
        adapters=adapters,
        locks=[token_lock, lead_lock],
    )


_service: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    """FastAPI dependency / scheduler accessor for the shared service."""
    global _service
    if _service is None:
        _service = build_ingestion_service()
    return _service


async def shutdown_ingestion_service():
    global _service
    if _service is not None:
        await _service.close()
        _service = None
