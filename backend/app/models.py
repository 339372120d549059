# backend/app/models.py
"""
SQLAlchemy ORM models for the lead ingestion engine.

The same classes are used by the Postgres-backed stores and, as plain
transient objects, by the in-memory stores.
"""

from sqlalchemy import (
    Column, String, Boolean, Numeric, Text, DateTime, Index,
    ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from app.database import Base
from datetime import datetime, timezone
import uuid


def _utcnow():
    return datetime.now(timezone.utc)


SOURCE_VALUES = "('facebook_ads', 'google_ads', 'website')"


# ============================================================================
# CREDENTIALS
# ============================================================================

class ConnectedAccount(Base):
    """
    One authenticated external account for one tenant+source pair.

    Tokens are only written by TokenManager. A failed refresh sets
    needs_reauth instead of deleting the row; rows go away only when the
    tenant disconnects.
    """
    __tablename__ = "connected_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    external_account_id = Column(String(255), nullable=False)  # page id / customer id
    account_name = Column(String(255))

    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    scopes = Column(JSONB, default=list)
    provider_metadata = Column(JSONB, default=dict)

    needs_reauth = Column(Boolean, default=False, nullable=False)
    reauth_reason = Column(Text)
    last_refreshed_at = Column(DateTime(timezone=True))
    last_synced_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "source", "external_account_id", name="uq_account_tenant_source_external"),
        CheckConstraint(f"source IN {SOURCE_VALUES}", name="chk_account_source"),
    )

    def __repr__(self):
        return f"<ConnectedAccount(id={self.id}, source='{self.source}', external='{self.external_account_id}')>"


# ============================================================================
# MAPPING CONFIGURATION
# ============================================================================

class IntegrationSettings(Base):
    """Per-tenant, per-source mapping rules and dedup strategy."""
    __tablename__ = "integration_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    is_connected = Column(Boolean, default=False, nullable=False)

    field_mappings = Column(JSONB, default=list)
    # Example: [
    #   {"source_field": "full_name", "target_field": "name"},
    #   {"source_field": null, "target_field": "stage", "custom_value": "New Lead"},
    #   {"custom_value": "Qualified", "default_stage": true}
    # ]

    dedup_strategy = Column(String(20), default="none", nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "source", name="uq_integration_tenant_source"),
        CheckConstraint(
            "dedup_strategy IN ('none', 'email', 'phone', 'email_phone')",
            name="chk_integration_dedup_strategy",
        ),
    )


# ============================================================================
# LEAD MODEL
# ============================================================================

class Lead(Base):
    """
    Canonical lead record.

    dedup_key holds the key of the strategy the lead was created under and
    is unique per tenant; NULL (strategy "none") never collides.
    """
    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    # ========================================================================
    # CONTACT INFO
    # ========================================================================
    name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))

    # ========================================================================
    # PIPELINE
    # ========================================================================
    source = Column(String(50))
    stage = Column(String(100))
    follow_up_status = Column(String(50))
    tags = Column(JSONB, default=list)

    company = Column(String(255))
    job_title = Column(String(255))
    city = Column(String(100))
    notes = Column(Text)
    deal_value = Column(Numeric(12, 2))

    custom_fields = Column(JSONB, default=dict)
    external_ids = Column(JSONB, default=list)

    # ========================================================================
    # DEDUP KEYS
    # ========================================================================
    email_key = Column(String(255), index=True)
    phone_key = Column(String(50), index=True)
    dedup_key = Column(String(320))

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadActivity.created_at",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "dedup_key", name="uq_lead_tenant_dedup_key"),
        Index("idx_leads_tenant_email_key", "tenant_id", "email_key"),
        Index("idx_leads_tenant_phone_key", "tenant_id", "phone_key"),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, email='{self.email}', phone='{self.phone}')>"

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "source": self.source,
            "stage": self.stage,
            "tags": list(self.tags or []),
            "company": self.company,
            "job_title": self.job_title,
            "city": self.city,
            "deal_value": float(self.deal_value) if self.deal_value is not None else None,
            "custom_fields": dict(self.custom_fields or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "activity_count": len(self.activities or []),
        }


class LeadActivity(Base):
    """Append-only history entry on a lead."""
    __tablename__ = "lead_activities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)

    activity_type = Column(String(50), nullable=False)
    content = Column(Text)
    activity_metadata = Column(JSONB, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    lead = relationship("Lead", back_populates="activities")

    __table_args__ = (
        CheckConstraint(
            "activity_type IN ('LEAD_CREATED', 'LEAD_MERGED', 'LEAD_INGESTED')",
            name="valid_activity_type",
        ),
        Index("idx_lead_activities_lead", "lead_id", "created_at"),
    )


# ============================================================================
# AUDIT
# ============================================================================

class IngestionAuditLog(Base):
    """One row per ingestion attempt. Never updated once written."""
    __tablename__ = "ingestion_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    payload_ref = Column(String(255), nullable=False)
    external_id = Column(String(255))

    outcome = Column(String(20), nullable=False)
    failure_reason = Column(String(50))
    details = Column(JSONB, default=dict)

    lead_id = Column(UUID(as_uuid=True))
    upsert_outcome = Column(String(20))
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("outcome IN ('SUCCESS', 'FAILED')", name="chk_audit_outcome"),
        Index("idx_ingestion_audit_tenant_created", "tenant_id", "created_at"),
        Index("idx_ingestion_audit_reason", "failure_reason", "created_at"),
    )

    def to_dict(self):
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "source": self.source,
            "payload_ref": self.payload_ref,
            "external_id": self.external_id,
            "outcome": self.outcome,
            "failure_reason": self.failure_reason,
            "details": self.details or {},
            "lead_id": str(self.lead_id) if self.lead_id else None,
            "upsert_outcome": self.upsert_outcome,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
