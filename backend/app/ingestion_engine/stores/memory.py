# backend/app/ingestion_engine/stores/memory.py
"""
In-memory stores for development and tests.

Same contract as the Postgres stores, including the (tenant_id, dedup_key)
uniqueness check on insert. State lives for the life of the process.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from app.ingestion_engine.core.mapping import MappingConfiguration
from app.ingestion_engine.core.types import DedupStrategy, LeadSource, utcnow
from app.ingestion_engine.errors import DuplicateLeadError, StorageError
from app.ingestion_engine.stores.base import AuditSink, CredentialStore, LeadStore, MappingStore
from app.models import ConnectedAccount, IngestionAuditLog, Lead, LeadActivity

logger = logging.getLogger(__name__)


class MemoryCredentialStore(CredentialStore):
    """Connected accounts held in a dict keyed by account id"""

    def __init__(self):
        self._accounts: Dict[str, ConnectedAccount] = {}
        logger.info("Using in-memory credential store")

    async def get_account(self, tenant_id, source, external_account_id=None):
        candidates = [
            account for account in self._accounts.values()
            if str(account.tenant_id) == str(tenant_id)
            and account.source == LeadSource(source).value
            and (external_account_id is None or account.external_account_id == str(external_account_id))
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.updated_at or a.created_at)

    async def get_account_by_id(self, account_id):
        return self._accounts.get(str(account_id))

    async def list_accounts(self, source, include_stale=False):
        return [
            account for account in self._accounts.values()
            if account.source == LeadSource(source).value
            and (include_stale or not account.needs_reauth)
        ]

    async def save_account(self, account):
        now = utcnow()
        if account.id is None:
            account.id = uuid.uuid4()
        if account.created_at is None:
            account.created_at = now
        account.updated_at = now
        if account.needs_reauth is None:
            account.needs_reauth = False
        self._accounts[str(account.id)] = account
        return account

    async def update_tokens(self, account_id, access_token, refresh_token, expires_at):
        account = self._require(account_id)
        now = utcnow()
        account.access_token = access_token
        if refresh_token:
            account.refresh_token = refresh_token
        account.token_expires_at = expires_at
        account.last_refreshed_at = now
        account.updated_at = now
        return account

    async def mark_needs_reauth(self, account_id, reason):
        account = self._require(account_id)
        account.needs_reauth = True
        account.reauth_reason = reason
        account.updated_at = utcnow()

    async def mark_synced(self, account_id, synced_at: datetime):
        account = self._require(account_id)
        account.last_synced_at = synced_at

    async def delete_account(self, account_id):
        self._accounts.pop(str(account_id), None)

    def _require(self, account_id) -> ConnectedAccount:
        account = self._accounts.get(str(account_id))
        if account is None:
            raise StorageError("connected_account", f"account {account_id} not found")
        return account


class MemoryMappingStore(MappingStore):
    """Mapping configurations keyed by (tenant_id, source)"""

    def __init__(self):
        self._configurations: Dict[tuple, MappingConfiguration] = {}

    async def get_configuration(self, tenant_id, source):
        return self._configurations.get((str(tenant_id), LeadSource(source)))

    async def save_configuration(self, configuration):
        self._configurations[(configuration.tenant_id, configuration.source)] = configuration
        return configuration


class MemoryLeadStore(LeadStore):
    """Leads keyed by id; activities live on the lead objects"""

    def __init__(self):
        self._leads: Dict[str, Lead] = {}

    async def find_match(self, tenant_id, strategy, email_key, phone_key):
        strategy = DedupStrategy(strategy)
        if strategy == DedupStrategy.NONE:
            return None

        def matches(lead: Lead) -> bool:
            if str(lead.tenant_id) != str(tenant_id):
                return False
            if strategy == DedupStrategy.EMAIL:
                return email_key is not None and lead.email_key == email_key
            if strategy == DedupStrategy.PHONE:
                return phone_key is not None and lead.phone_key == phone_key
            return (
                email_key is not None and phone_key is not None
                and lead.email_key == email_key and lead.phone_key == phone_key
            )

        found = [lead for lead in self._leads.values() if matches(lead)]
        if not found:
            return None
        return min(found, key=lambda lead: lead.created_at)

    async def insert(self, lead):
        if lead.dedup_key is not None:
            for existing in self._leads.values():
                if str(existing.tenant_id) == str(lead.tenant_id) and existing.dedup_key == lead.dedup_key:
                    raise DuplicateLeadError(str(lead.tenant_id), lead.dedup_key)
        self._leads[str(lead.id)] = lead
        return lead

    async def save(self, lead):
        if str(lead.id) not in self._leads:
            raise StorageError("save_lead", f"lead {lead.id} not found")
        self._leads[str(lead.id)] = lead
        return lead

    async def append_activity(self, lead, activity):
        stored = self._leads.get(str(lead.id))
        if stored is None:
            raise StorageError("append_activity", f"lead {lead.id} not found")
        stored.activities.append(activity)
        if stored is not lead:
            lead.activities.append(activity)
        return activity

    async def get(self, tenant_id, lead_id):
        lead = self._leads.get(str(lead_id))
        if lead is None or str(lead.tenant_id) != str(tenant_id):
            return None
        return lead

    async def list_leads(self, tenant_id):
        leads = [lead for lead in self._leads.values() if str(lead.tenant_id) == str(tenant_id)]
        return sorted(leads, key=lambda lead: lead.created_at)


class MemoryAuditSink(AuditSink):
    """Audit records in insertion order"""

    def __init__(self):
        self._records: List[IngestionAuditLog] = []

    async def append(self, record):
        self._records.append(record)
        return record

    async def list_records(self, tenant_id, source=None, outcome=None, limit=100):
        records = [
            record for record in reversed(self._records)
            if str(record.tenant_id) == str(tenant_id)
            and (source is None or record.source == LeadSource(source).value)
            and (outcome is None or record.outcome == outcome)
        ]
        return records[:limit]
