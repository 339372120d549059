"""
Error types for the ingestion engine.

Every failure inside an ingestion pass is one of the IngestionError
subclasses below. The orchestrator turns them into audit records; nothing
here is meant to escape IngestionOrchestrator.ingest().
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class FailureReason(str, Enum):
    """Reason codes written to IngestionAuditLog.failure_reason."""
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    DETAIL_FETCH_FAILED = "DETAIL_FETCH_FAILED"
    UNMAPPED_SOURCE = "UNMAPPED_SOURCE"
    INVALID_MAPPING_CONFIGURATION = "INVALID_MAPPING_CONFIGURATION"
    MISSING_MANDATORY_FIELD = "MISSING_MANDATORY_FIELD"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"


# Reasons the tenant has to act on (reconnect, configure a mapping).
TENANT_ACTIONABLE_REASONS = frozenset({
    FailureReason.TOKEN_REFRESH_FAILED,
    FailureReason.UNMAPPED_SOURCE,
})

# Reasons that are safe to redeliver as-is.
TRANSIENT_REASONS = frozenset({
    FailureReason.DETAIL_FETCH_FAILED,
    FailureReason.STORAGE_WRITE_FAILED,
    FailureReason.STORAGE_READ_FAILED,
})


class IngestionError(Exception):
    """Base class for failures that end an ingestion pass."""

    reason: FailureReason

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_details(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class TokenRefreshFailed(IngestionError):
    reason = FailureReason.TOKEN_REFRESH_FAILED


class DetailFetchFailed(IngestionError):
    reason = FailureReason.DETAIL_FETCH_FAILED


class UnmappedSource(IngestionError):
    reason = FailureReason.UNMAPPED_SOURCE


class InvalidMappingConfiguration(IngestionError):
    reason = FailureReason.INVALID_MAPPING_CONFIGURATION

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})


class MissingMandatoryField(IngestionError):
    reason = FailureReason.MISSING_MANDATORY_FIELD

    def __init__(self, fields: List[str]):
        self.fields = list(fields)
        super().__init__(
            f"Missing mandatory field(s): {', '.join(self.fields)}",
            {"missing_fields": self.fields},
        )


class StorageWriteFailed(IngestionError):
    reason = FailureReason.STORAGE_WRITE_FAILED


class StorageReadFailed(IngestionError):
    reason = FailureReason.STORAGE_READ_FAILED


# ============================================================================
# COLLABORATOR ERRORS (raised by stores and provider clients)
# ============================================================================

class StorageError(Exception):
    """A persistence operation failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class DuplicateLeadError(StorageError):
    """Insert hit the (tenant_id, dedup_key) uniqueness constraint."""

    def __init__(self, tenant_id: str, dedup_key: str):
        super().__init__("insert_lead", f"dedup key already exists for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.dedup_key = dedup_key


class ProviderError(Exception):
    """An external provider call failed."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Provider rejected the credentials (revoked/expired grant, bad token)."""


class ProviderUnavailableError(ProviderError):
    """Network failure, timeout or 5xx from the provider."""
