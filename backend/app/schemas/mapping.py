"""
Pydantic schemas for mapping configurations.
These are for API request/response validation, NOT database models
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional

from app.ingestion_engine.core.mapping import MappingConfiguration, MappingRule
from app.ingestion_engine.core.types import DedupStrategy, LeadSource


class MappingRuleSchema(BaseModel):
    """One mapping rule. Accepts the UI's camelCase names too."""
    model_config = ConfigDict(populate_by_name=True)

    source_field: Optional[str] = Field(default=None, alias="sourceField")
    target_field: Optional[str] = Field(default=None, alias="crmField")
    custom_value: Optional[Any] = Field(default=None, alias="customValue")
    default_stage: bool = Field(default=False, alias="isDefaultStage")

    def to_rule(self) -> MappingRule:
        return MappingRule(
            source_field=self.source_field or None,
            target_field=self.target_field or None,
            custom_value=self.custom_value,
            default_stage=self.default_stage,
        )

    @classmethod
    def from_rule(cls, rule: MappingRule) -> "MappingRuleSchema":
        return cls(
            source_field=rule.source_field,
            target_field=rule.target_field,
            custom_value=rule.custom_value,
            default_stage=rule.default_stage,
        )


class MappingConfigurationRequest(BaseModel):
    """Save request for a tenant's mapping configuration"""
    rules: List[MappingRuleSchema] = Field(default_factory=list)
    dedup_strategy: DedupStrategy = DedupStrategy.NONE
    is_connected: bool = True


class MappingConfigurationResponse(BaseModel):
    tenant_id: str
    source: LeadSource
    rules: List[MappingRuleSchema]
    dedup_strategy: DedupStrategy
    is_connected: bool
    default_stage: Optional[str] = None

    @classmethod
    def from_configuration(cls, configuration: MappingConfiguration) -> "MappingConfigurationResponse":
        return cls(
            tenant_id=configuration.tenant_id,
            source=configuration.source,
            rules=[MappingRuleSchema.from_rule(rule) for rule in configuration.rules],
            dedup_strategy=configuration.dedup_strategy,
            is_connected=configuration.is_connected,
            default_stage=configuration.default_stage,
        )


class MappingValidationError(BaseModel):
    """422 body for rejected configurations"""
    message: str
    errors: List[str]
