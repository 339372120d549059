"""Pydantic schemas for request/response validation."""

from .ingestion import AuditRecordList, IngestionAuditRecordResponse, WebhookAccepted
from .mapping import (
    MappingConfigurationRequest,
    MappingConfigurationResponse,
    MappingRuleSchema,
    MappingValidationError,
)

__all__ = [
    "AuditRecordList",
    "IngestionAuditRecordResponse",
    "MappingConfigurationRequest",
    "MappingConfigurationResponse",
    "MappingRuleSchema",
    "MappingValidationError",
    "WebhookAccepted",
]
