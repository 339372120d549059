"""
Persistence for the ingestion engine.
"""
from .base import AuditSink, CredentialStore, LeadStore, MappingStore
from .memory import MemoryAuditSink, MemoryCredentialStore, MemoryLeadStore, MemoryMappingStore
from .sqlalchemy_store import (
    SQLAlchemyAuditSink,
    SQLAlchemyCredentialStore,
    SQLAlchemyLeadStore,
    SQLAlchemyMappingStore,
)


__all__ = [
    "AuditSink",
    "CredentialStore",
    "LeadStore",
    "MappingStore",
    "MemoryAuditSink",
    "MemoryCredentialStore",
    "MemoryLeadStore",
    "MemoryMappingStore",
    "SQLAlchemyAuditSink",
    "SQLAlchemyCredentialStore",
    "SQLAlchemyLeadStore",
    "SQLAlchemyMappingStore",
]
