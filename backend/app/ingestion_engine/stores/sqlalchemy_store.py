"""
Postgres-backed stores (SQLAlchemy async ORM).

Each call runs in its own short session; objects come back detached with
their activity history loaded (expire_on_commit=False, selectin loading).
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ingestion_engine.core.mapping import MappingConfiguration
from app.ingestion_engine.core.types import DedupStrategy, LeadSource, utcnow
from app.ingestion_engine.errors import DuplicateLeadError, StorageError
from app.ingestion_engine.stores.base import AuditSink, CredentialStore, LeadStore, MappingStore
from app.models import ConnectedAccount, IngestionAuditLog, IntegrationSettings, Lead


logger = logging.getLogger(__name__)

DEDUP_CONSTRAINT = "uq_lead_tenant_dedup_key"


def _to_uuid(value):
    """Safely convert to UUID"""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class _SessionStore:
    """Shared session handling: one session per call, SQLAlchemy errors become StorageError."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Storage operation '{operation}' failed: {e}")
                raise StorageError(operation, str(e)) from e


class SQLAlchemyCredentialStore(_SessionStore, CredentialStore):

    async def get_account(self, tenant_id, source, external_account_id=None):
        stmt = select(ConnectedAccount).where(
            ConnectedAccount.tenant_id == _to_uuid(tenant_id),
            ConnectedAccount.source == LeadSource(source).value,
        )
        if external_account_id is not None:
            stmt = stmt.where(ConnectedAccount.external_account_id == str(external_account_id))
        stmt = stmt.order_by(ConnectedAccount.updated_at.desc()).limit(1)

        async with self._session("get_account") as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_account_by_id(self, account_id):
        async with self._session("get_account_by_id") as session:
            return await session.get(ConnectedAccount, _to_uuid(account_id))

    async def list_accounts(self, source, include_stale=False):
        stmt = select(ConnectedAccount).where(ConnectedAccount.source == LeadSource(source).value)
        if not include_stale:
            stmt = stmt.where(ConnectedAccount.needs_reauth == False)  # noqa: E712
        async with self._session("list_accounts") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def save_account(self, account):
        async with self._session("save_account") as session:
            merged = await session.merge(account)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def update_tokens(self, account_id, access_token, refresh_token, expires_at):
        now = utcnow()
        values = {
            "access_token": access_token,
            "token_expires_at": expires_at,
            "last_refreshed_at": now,
            "updated_at": now,
        }
        if refresh_token:
            values["refresh_token"] = refresh_token

        stmt = (
            update(ConnectedAccount)
            .where(ConnectedAccount.id == _to_uuid(account_id))
            .values(**values)
            .returning(ConnectedAccount)
            .execution_options(synchronize_session=False)
        )
        async with self._session("update_tokens") as session:
            result = await session.execute(stmt)
            account = result.scalars().first()
            await session.commit()

        if account is None:
            raise StorageError("update_tokens", f"account {account_id} not found")
        return account

    async def mark_needs_reauth(self, account_id, reason):
        stmt = (
            update(ConnectedAccount)
            .where(ConnectedAccount.id == _to_uuid(account_id))
            .values(needs_reauth=True, reauth_reason=reason, updated_at=utcnow())
        )
        async with self._session("mark_needs_reauth") as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_synced(self, account_id, synced_at):
        stmt = (
            update(ConnectedAccount)
            .where(ConnectedAccount.id == _to_uuid(account_id))
            .values(last_synced_at=synced_at)
        )
        async with self._session("mark_synced") as session:
            await session.execute(stmt)
            await session.commit()

    async def delete_account(self, account_id):
        async with self._session("delete_account") as session:
            account = await session.get(ConnectedAccount, _to_uuid(account_id))
            if account is not None:
                await session.delete(account)
                await session.commit()


class SQLAlchemyMappingStore(_SessionStore, MappingStore):

    async def get_configuration(self, tenant_id, source):
        stmt = select(IntegrationSettings).where(
            IntegrationSettings.tenant_id == _to_uuid(tenant_id),
            IntegrationSettings.source == LeadSource(source).value,
        )
        async with self._session("get_configuration") as session:
            result = await session.execute(stmt)
            row = result.scalars().first()

        if row is None:
            return None

        # Raises InvalidMappingConfiguration if the stored rules are ambiguous.
        return MappingConfiguration.build(
            tenant_id=str(row.tenant_id),
            source=LeadSource(row.source),
            rules=row.field_mappings or [],
            dedup_strategy=DedupStrategy(row.dedup_strategy or DedupStrategy.NONE.value),
            is_connected=bool(row.is_connected),
        )

    async def save_configuration(self, configuration):
        now = utcnow()
        values = {
            "field_mappings": [rule.to_dict() for rule in configuration.rules],
            "dedup_strategy": configuration.dedup_strategy.value,
            "is_connected": configuration.is_connected,
            "updated_at": now,
        }
        stmt = pg_insert(IntegrationSettings).values(
            id=uuid.uuid4(),
            tenant_id=_to_uuid(configuration.tenant_id),
            source=configuration.source.value,
            created_at=now,
            **values,
        ).on_conflict_do_update(
            constraint="uq_integration_tenant_source",
            set_=values,
        )
        async with self._session("save_configuration") as session:
            await session.execute(stmt)
            await session.commit()
        return configuration


class SQLAlchemyLeadStore(_SessionStore, LeadStore):

    async def find_match(self, tenant_id, strategy, email_key, phone_key):
        strategy = DedupStrategy(strategy)
        if strategy == DedupStrategy.NONE:
            return None

        conditions = [Lead.tenant_id == _to_uuid(tenant_id)]
        if strategy in (DedupStrategy.EMAIL, DedupStrategy.EMAIL_PHONE):
            if email_key is None:
                return None
            conditions.append(Lead.email_key == email_key)
        if strategy in (DedupStrategy.PHONE, DedupStrategy.EMAIL_PHONE):
            if phone_key is None:
                return None
            conditions.append(Lead.phone_key == phone_key)

        stmt = select(Lead).where(*conditions).order_by(Lead.created_at.asc()).limit(1)
        async with self._session("find_match") as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def insert(self, lead):
        async with self.session_factory() as session:
            session.add(lead)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if DEDUP_CONSTRAINT in str(e.orig):
                    raise DuplicateLeadError(str(lead.tenant_id), lead.dedup_key) from e
                raise StorageError("insert_lead", str(e)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError("insert_lead", str(e)) from e
        return lead

    async def save(self, lead):
        async with self._session("save_lead") as session:
            merged = await session.merge(lead)
            await session.commit()
            return merged

    async def append_activity(self, lead, activity):
        activity.lead_id = lead.id
        activity.tenant_id = lead.tenant_id
        async with self._session("append_activity") as session:
            session.add(activity)
            await session.commit()
        lead.activities.append(activity)
        return activity

    async def get(self, tenant_id, lead_id):
        stmt = select(Lead).where(
            Lead.id == _to_uuid(lead_id),
            Lead.tenant_id == _to_uuid(tenant_id),
        )
        async with self._session("get_lead") as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_leads(self, tenant_id):
        stmt = select(Lead).where(Lead.tenant_id == _to_uuid(tenant_id)).order_by(Lead.created_at.asc())
        async with self._session("list_leads") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class SQLAlchemyAuditSink(_SessionStore, AuditSink):

    async def append(self, record):
        async with self._session("append_audit_record") as session:
            session.add(record)
            await session.commit()
        return record

    async def list_records(self, tenant_id, source=None, outcome=None, limit=100):
        stmt = select(IngestionAuditLog).where(IngestionAuditLog.tenant_id == _to_uuid(tenant_id))
        if source is not None:
            stmt = stmt.where(IngestionAuditLog.source == LeadSource(source).value)
        if outcome is not None:
            stmt = stmt.where(IngestionAuditLog.outcome == outcome)
        stmt = stmt.order_by(IngestionAuditLog.created_at.desc()).limit(limit)

        async with self._session("list_audit_records") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
