"""
Store interfaces the ingestion engine depends on.

Persistence technology is up to the implementation; the engine only relies
on the upsert-by-dedup-key insert and the token update being atomic.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from app.ingestion_engine.core.mapping import MappingConfiguration
from app.ingestion_engine.core.types import DedupStrategy, LeadSource
from app.models import ConnectedAccount, IngestionAuditLog, Lead, LeadActivity


class CredentialStore(ABC):
    """Connected accounts and their OAuth tokens."""

    @abstractmethod
    async def get_account(
        self,
        tenant_id: str,
        source: LeadSource,
        external_account_id: Optional[str] = None,
    ) -> Optional[ConnectedAccount]:
        """Find the tenant's account for a source (a specific one if external id given)."""
        pass

    @abstractmethod
    async def get_account_by_id(self, account_id) -> Optional[ConnectedAccount]:
        pass

    @abstractmethod
    async def list_accounts(self, source: LeadSource, include_stale: bool = False) -> List[ConnectedAccount]:
        pass

    @abstractmethod
    async def save_account(self, account: ConnectedAccount) -> ConnectedAccount:
        """Create or replace an account after an OAuth consent flow."""
        pass

    @abstractmethod
    async def update_tokens(
        self,
        account_id,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> ConnectedAccount:
        """Atomically store a refreshed token set (refresh token only if rotated)."""
        pass

    @abstractmethod
    async def mark_needs_reauth(self, account_id, reason: str) -> None:
        pass

    @abstractmethod
    async def mark_synced(self, account_id, synced_at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_account(self, account_id) -> None:
        """Explicit tenant disconnect."""
        pass


class MappingStore(ABC):
    """Mapping configurations, validated on the way in and on the way out."""

    @abstractmethod
    async def get_configuration(self, tenant_id: str, source: LeadSource) -> Optional[MappingConfiguration]:
        pass

    @abstractmethod
    async def save_configuration(self, configuration: MappingConfiguration) -> MappingConfiguration:
        pass


class LeadStore(ABC):
    """Lead records and their activity history."""

    @abstractmethod
    async def find_match(
        self,
        tenant_id: str,
        strategy: DedupStrategy,
        email_key: Optional[str],
        phone_key: Optional[str],
    ) -> Optional[Lead]:
        """Return the oldest lead whose stored keys match under the strategy."""
        pass

    @abstractmethod
    async def insert(self, lead: Lead) -> Lead:
        """
        Insert a new lead with its initial activities.

        Raises:
            DuplicateLeadError: (tenant_id, dedup_key) already exists
        """
        pass

    @abstractmethod
    async def save(self, lead: Lead) -> Lead:
        """Persist a merged lead, including newly appended activities."""
        pass

    @abstractmethod
    async def append_activity(self, lead: Lead, activity: LeadActivity) -> LeadActivity:
        pass

    @abstractmethod
    async def get(self, tenant_id: str, lead_id) -> Optional[Lead]:
        pass

    @abstractmethod
    async def list_leads(self, tenant_id: str) -> List[Lead]:
        pass


class AuditSink(ABC):
    """Append-only ingestion audit log."""

    @abstractmethod
    async def append(self, record: IngestionAuditLog) -> IngestionAuditLog:
        pass

    @abstractmethod
    async def list_records(
        self,
        tenant_id: str,
        source: Optional[LeadSource] = None,
        outcome: Optional[str] = None,
        limit: int = 100,
    ) -> List[IngestionAuditLog]:
        """Newest first."""
        pass
