"""
Ingestion orchestrator - runs one inbound lead event through the pipeline.

Pipeline: fetch detail → load mapping → resolve → upsert → provenance → audit
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from app.config import settings
from app.ingestion_engine.adapters.base import SourceAdapter
from app.ingestion_engine.core.deduplicator import Deduplicator
from app.ingestion_engine.core.field_mapper import FieldMapper
from app.ingestion_engine.core.mapping import MappingConfiguration
from app.ingestion_engine.core.token_manager import TokenManager
from app.ingestion_engine.core.types import (
    InboundLeadEvent,
    IngestionOutcome,
    LeadSource,
    MissingFieldPolicy,
    UnmappedFieldWarning,
)
from app.ingestion_engine.errors import (
    TENANT_ACTIONABLE_REASONS,
    TRANSIENT_REASONS,
    DetailFetchFailed,
    FailureReason,
    IngestionError,
    InvalidMappingConfiguration,
    MissingMandatoryField,
    ProviderError,
    StorageError,
    StorageReadFailed,
    StorageWriteFailed,
    TokenRefreshFailed,
    UnmappedSource,
)
from app.ingestion_engine.stores.base import CredentialStore, LeadStore, MappingStore
from app.models import IngestionAuditLog, Lead
from app.services.activity_logger import ActivityLogger
from app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

INCOMPLETE_TAG = "Incomplete"


class _StepFailed(Exception):
    """Carries the lead of a failed provenance step out of _run()."""

    def __init__(self, error: IngestionError, lead: Lead, upsert_outcome: str):
        super().__init__(str(error))
        self.error = error
        self.lead = lead
        self.upsert_outcome = upsert_outcome


class IngestionOrchestrator:
    """
    Orchestrates one ingestion pass per inbound event.

    Steps:
    1. Fetch full lead details when the source needs it (with a valid token)
    2. Load the tenant's connected mapping configuration for the source
    3. Resolve the payload; apply the missing-field policy
    4. Create or merge the lead under the tenant's dedup strategy
    5. Append a provenance activity to the lead
    6. Write the audit record

    ingest() never raises: every failure ends up in a FAILED audit record.
    Events are independent; there is no per-tenant serialization.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        mapping_store: MappingStore,
        lead_store: LeadStore,
        token_manager: TokenManager,
        deduplicator: Deduplicator,
        audit_service: AuditService,
        adapters: Dict[LeadSource, SourceAdapter],
        field_mapper: Optional[FieldMapper] = None,
        missing_field_policy: Optional[MissingFieldPolicy] = None,
        activities: Optional[ActivityLogger] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            credential_store: Connected accounts (for detail fetches)
            mapping_store: Mapping configurations
            lead_store: Lead persistence (provenance activities)
            token_manager: Valid access tokens
            deduplicator: Create-or-merge engine
            audit_service: Audit record writer
            adapters: Source adapter per LeadSource
            field_mapper: Payload resolver
            missing_field_policy: reject (default) or accept_partial
            activities: Builder for lead history entries
        """
        self.credential_store = credential_store
        self.mapping_store = mapping_store
        self.lead_store = lead_store
        self.token_manager = token_manager
        self.deduplicator = deduplicator
        self.audit_service = audit_service
        self.adapters = adapters
        self.field_mapper = field_mapper or FieldMapper()
        self.missing_field_policy = MissingFieldPolicy(
            missing_field_policy or settings.MISSING_FIELD_POLICY
        )
        self.activities = activities or ActivityLogger()

    async def ingest(self, tenant_id: str, source, event: InboundLeadEvent) -> IngestionAuditLog:
        """
        Ingest one event and return its audit record.

        Args:
            tenant_id: Tenant the event belongs to
            source: LeadSource (or its value)
            event: Transport-free inbound event

        Returns:
            The IngestionAuditLog written for this attempt
        """
        source = LeadSource(source)
        tenant_id = str(tenant_id)
        state = {"external_id": event.external_id, "reason": FailureReason.DETAIL_FETCH_FAILED}

        try:
            lead, upsert_outcome, details = await self._run(tenant_id, source, event, state)
        except _StepFailed as e:
            return await self._record_failure(
                tenant_id, source, event, state, e.error,
                lead=e.lead, upsert_outcome=e.upsert_outcome,
            )
        except IngestionError as e:
            return await self._record_failure(tenant_id, source, event, state, e)
        except Exception as e:
            # Unexpected errors are attributed to the step that was running
            logger.exception(
                f"Unexpected error ingesting {source.value} event for tenant {tenant_id}: {e}"
            )
            error = _error_for_reason(state["reason"], f"Unexpected error: {e}", {"error_type": type(e).__name__})
            return await self._record_failure(tenant_id, source, event, state, error)

        record = AuditService.build_record(
            tenant_id=tenant_id,
            source=source,
            payload_ref=AuditService.payload_ref(source, state["external_id"], event.payload),
            outcome=IngestionOutcome.SUCCESS,
            external_id=state["external_id"],
            details=details,
            lead_id=lead.id,
            upsert_outcome=upsert_outcome,
        )
        logger.info(
            f"Ingested {source.value} lead for tenant {tenant_id}: "
            f"{upsert_outcome} lead {lead.id}"
        )
        return await self.audit_service.log_attempt(record)

    async def _run(
        self,
        tenant_id: str,
        source: LeadSource,
        event: InboundLeadEvent,
        state: Dict[str, Any],
    ) -> Tuple[Lead, str, Dict[str, Any]]:
        adapter = self.adapters.get(source)
        if adapter is None:
            raise UnmappedSource(f"No adapter registered for {source.value}")

        # Step 1: detail fetch
        state["reason"] = FailureReason.DETAIL_FETCH_FAILED
        raw = await self._fetch_payload(tenant_id, source, adapter, event)
        state["external_id"] = state["external_id"] or adapter.extract_external_id(raw)
        payload = adapter.parse_payload(raw)

        # Step 2: mapping configuration
        state["reason"] = FailureReason.STORAGE_READ_FAILED
        configuration = await self._load_configuration(tenant_id, source)

        # Step 3: resolve
        state["reason"] = FailureReason.INVALID_MAPPING_CONFIGURATION
        resolved, warnings = self.field_mapper.resolve(payload, configuration)
        details: Dict[str, Any] = {}
        if warnings:
            details["warnings"] = _warnings_to_details(warnings)

        extra_tags = []
        if resolved.missing_mandatory:
            if self.missing_field_policy == MissingFieldPolicy.REJECT:
                raise MissingMandatoryField(resolved.missing_mandatory)
            details["missing_fields"] = list(resolved.missing_mandatory)
            details["partial"] = True
            extra_tags.append(INCOMPLETE_TAG)

        # Step 4: upsert
        state["reason"] = FailureReason.STORAGE_WRITE_FAILED
        try:
            lead, outcome = await self.deduplicator.upsert_lead(
                tenant_id,
                resolved,
                configuration.dedup_strategy,
                source,
                default_stage=configuration.default_stage,
                external_id=state["external_id"],
                extra_tags=extra_tags,
            )
        except StorageError as e:
            raise StorageWriteFailed(
                "Lead could not be written",
                {"operation": e.operation, "error": str(e)},
            ) from e

        # Step 5: provenance
        activity = self.activities.lead_ingested(lead, source, state["external_id"], event.account_id)
        try:
            await self.lead_store.append_activity(lead, activity)
        except StorageError as e:
            raise _StepFailed(
                StorageWriteFailed(
                    "Provenance activity could not be written",
                    {"operation": e.operation, "error": str(e)},
                ),
                lead,
                outcome.value,
            ) from e

        details["dedup_strategy"] = configuration.dedup_strategy.value
        return lead, outcome.value, details

    async def _fetch_payload(
        self,
        tenant_id: str,
        source: LeadSource,
        adapter: SourceAdapter,
        event: InboundLeadEvent,
    ) -> Dict[str, Any]:
        if not adapter.requires_detail_fetch(event):
            return event.payload

        try:
            account = await self.credential_store.get_account(tenant_id, source, event.account_id)
        except StorageError as e:
            raise StorageReadFailed(
                "Connected account could not be loaded",
                {"operation": e.operation, "error": str(e)},
            ) from e

        if account is None:
            raise TokenRefreshFailed(
                f"No connected {source.value} account; connect the account to receive leads",
                {"account_id": event.account_id},
            )

        access_token = await self.token_manager.get_valid_access_token(account)

        try:
            return await adapter.fetch_detail(event, access_token)
        except ProviderError as e:
            raise DetailFetchFailed(
                f"Could not fetch lead details from {source.value}",
                {"error": str(e), "provider_status": e.status_code},
            ) from e

    async def _load_configuration(self, tenant_id: str, source: LeadSource) -> MappingConfiguration:
        try:
            configuration = await self.mapping_store.get_configuration(tenant_id, source)
        except StorageError as e:
            raise StorageReadFailed(
                "Mapping configuration could not be loaded",
                {"operation": e.operation, "error": str(e)},
            ) from e

        if configuration is None:
            raise UnmappedSource(f"No mapping configuration for {source.value}")
        if not configuration.is_connected:
            raise UnmappedSource(f"{source.value} integration is not connected")
        return configuration

    async def _record_failure(
        self,
        tenant_id: str,
        source: LeadSource,
        event: InboundLeadEvent,
        state: Dict[str, Any],
        error: IngestionError,
        lead: Optional[Lead] = None,
        upsert_outcome: Optional[str] = None,
    ) -> IngestionAuditLog:
        _log_failure(tenant_id, source, error)
        details = error.to_details()
        # A lead that was already written must not be created twice
        details["retryable"] = error.reason in TRANSIENT_REASONS and lead is None
        record = AuditService.build_record(
            tenant_id=tenant_id,
            source=source,
            payload_ref=AuditService.payload_ref(source, state["external_id"], event.payload),
            outcome=IngestionOutcome.FAILED,
            external_id=state["external_id"],
            failure_reason=error.reason,
            details=details,
            lead_id=lead.id if lead is not None else None,
            upsert_outcome=upsert_outcome,
        )
        return await self.audit_service.log_attempt(record)


def _warnings_to_details(warnings: List[UnmappedFieldWarning]) -> List[Dict[str, Any]]:
    return [
        {"field": w.field, "reason": w.reason, **({"detail": w.detail} if w.detail else {})}
        for w in warnings
    ]


def _error_for_reason(reason: FailureReason, message: str, details: Dict[str, Any]) -> IngestionError:
    error_classes = {
        FailureReason.DETAIL_FETCH_FAILED: DetailFetchFailed,
        FailureReason.STORAGE_READ_FAILED: StorageReadFailed,
        FailureReason.STORAGE_WRITE_FAILED: StorageWriteFailed,
    }
    if reason == FailureReason.INVALID_MAPPING_CONFIGURATION:
        return InvalidMappingConfiguration(message, [details.get("error_type", "error")])
    return error_classes.get(reason, StorageWriteFailed)(message, details)


def _log_failure(tenant_id: str, source: LeadSource, error: IngestionError):
    message = f"Ingestion failed for tenant {tenant_id} ({source.value}): {error.reason.value} - {error.message}"
    if error.reason == FailureReason.INVALID_MAPPING_CONFIGURATION:
        logger.critical(f"{message} {error.details.get('errors', [])}")
    elif error.reason in TENANT_ACTIONABLE_REASONS or error.reason == FailureReason.MISSING_MANDATORY_FIELD:
        logger.warning(message)
    else:
        logger.error(message)
