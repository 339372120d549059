"""
Mapping configuration: canonical schema, mapping rules and the validated
rule set a tenant saves per source.

A MappingConfiguration is validated once, when it is constructed. The
resolver only ever receives validated configurations.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from app.ingestion_engine.core.types import DedupStrategy, LeadSource
from app.ingestion_engine.errors import InvalidMappingConfiguration


MANDATORY_FIELDS = ("name", "email", "phone")

# Source schemas vary, so mandatory fields are recognised by key pattern.
# "name" is anchored so that e.g. company_name does not count as a name.
MANDATORY_FIELD_PATTERNS = {
    "name": re.compile(r"^(full_|first_|last_)?name$"),
    "email": re.compile(r"e-?mail"),
    "phone": re.compile(r"phone|mobile"),
}

FIELD_TYPES = ("string", "email", "phone", "number", "list")


def mandatory_kind(field_key: str) -> Optional[str]:
    """Return which mandatory field a canonical key stands for, if any."""
    key = field_key.lower()
    for kind, pattern in MANDATORY_FIELD_PATTERNS.items():
        if pattern.search(key):
            return kind
    return None


@dataclass(frozen=True)
class CanonicalSchema:
    """
    Canonical lead attributes and their value types.

    Targets of the form "<custom_fields_bucket>.<key>" write into the
    lead's custom-field map. When custom_fields_bucket is set, source
    fields that no rule mentions are preserved there too.
    """
    fields: Mapping[str, str]
    custom_fields_bucket: Optional[str] = "customFields"

    def field_type(self, key: str) -> str:
        return self.fields.get(key, "string")

    def is_custom_target(self, key: str) -> bool:
        return bool(self.custom_fields_bucket) and key.startswith(f"{self.custom_fields_bucket}.")

    def custom_key(self, key: str) -> str:
        return key[len(self.custom_fields_bucket) + 1:]

    def accepts_target(self, key: str) -> bool:
        if self.is_custom_target(key):
            return bool(self.custom_key(key))
        return key in self.fields


DEFAULT_SCHEMA = CanonicalSchema(
    fields={
        "name": "string",
        "first_name": "string",
        "last_name": "string",
        "email": "email",
        "phone": "phone",
        "stage": "string",
        "tags": "list",
        "company": "string",
        "job_title": "string",
        "city": "string",
        "notes": "string",
        "deal_value": "number",
        "follow_up_status": "string",
    },
    custom_fields_bucket="customFields",
)


@dataclass(frozen=True)
class MappingRule:
    """
    One row of a tenant's field-mapping configuration.

    target_field=None means "do not sync": the source field is consumed
    and dropped. A custom_value of None means "no custom value"; any other
    value (including "") is a tenant-asserted constant.
    """
    source_field: Optional[str] = None
    target_field: Optional[str] = None
    custom_value: Any = None
    default_stage: bool = False

    @property
    def has_custom_value(self) -> bool:
        return self.custom_value is not None

    @property
    def source_root(self) -> Optional[str]:
        """Top-level payload key the source path starts at."""
        if not self.source_field:
            return None
        return self.source_field.split(".", 1)[0].split("[", 1)[0]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MappingRule":
        """Build a rule from stored JSON (snake_case or the UI's camelCase)."""
        def pick(*keys):
            for key in keys:
                if key in data:
                    return data[key]
            return None

        return cls(
            source_field=pick("source_field", "sourceField") or None,
            target_field=pick("target_field", "crmField", "targetField") or None,
            custom_value=pick("custom_value", "customValue"),
            default_stage=bool(pick("default_stage", "isDefaultStage")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "custom_value": self.custom_value,
            "default_stage": self.default_stage,
        }


def _custom_value_error(value: Any, field_type: str) -> Optional[str]:
    # Local import: the field mapper depends on this module
    from app.ingestion_engine.core.field_mapper import FieldMapper, InvalidValue, is_blank

    if is_blank(value):
        return None
    try:
        FieldMapper().coerce(value, field_type)
    except InvalidValue as e:
        return str(e)
    return None


def validate_rules(rules: Iterable[MappingRule], schema: CanonicalSchema = DEFAULT_SCHEMA) -> List[str]:
    """
    Validate a rule set, return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    targets: Dict[str, List[int]] = {}
    default_stage_rules = []

    for index, rule in enumerate(rules, start=1):
        if rule.default_stage:
            default_stage_rules.append(index)
            if rule.target_field not in (None, "stage"):
                errors.append(f"Rule {index}: default stage rule cannot target '{rule.target_field}'")
            if not isinstance(rule.custom_value, str) or not rule.custom_value.strip():
                errors.append(f"Rule {index}: default stage rule needs a non-empty stage name")
            continue

        if not rule.source_field and not rule.has_custom_value:
            errors.append(f"Rule {index}: either source_field or custom_value is required")

        if rule.target_field is None:
            if rule.has_custom_value:
                errors.append(f"Rule {index}: custom value has no target field")
            continue

        if not schema.accepts_target(rule.target_field):
            errors.append(f"Rule {index}: unknown canonical field '{rule.target_field}'")
        elif rule.has_custom_value:
            error = _custom_value_error(rule.custom_value, schema.field_type(rule.target_field))
            if error:
                errors.append(f"Rule {index}: custom value for '{rule.target_field}' is invalid: {error}")

        targets.setdefault(rule.target_field, []).append(index)

    for target, indexes in targets.items():
        if len(indexes) > 1:
            errors.append(
                f"Canonical field '{target}' is targeted by rules "
                f"{', '.join(str(i) for i in indexes)}; only one rule may target a field"
            )

    if len(default_stage_rules) > 1:
        errors.append(
            f"Only one default stage rule is allowed (rules {', '.join(str(i) for i in default_stage_rules)})"
        )

    return errors


@dataclass(frozen=True)
class MappingConfiguration:
    """Validated, per-tenant, per-source mapping rule set."""
    tenant_id: str
    source: LeadSource
    rules: Tuple[MappingRule, ...]
    dedup_strategy: DedupStrategy = DedupStrategy.NONE
    is_connected: bool = True
    schema: CanonicalSchema = field(default=DEFAULT_SCHEMA, compare=False, repr=False)

    def __post_init__(self):
        errors = validate_rules(self.rules, self.schema)
        if errors:
            raise InvalidMappingConfiguration(
                f"Invalid mapping configuration for {self.source.value}",
                errors,
            )

    @classmethod
    def build(
        cls,
        tenant_id: str,
        source: LeadSource,
        rules: Iterable[Any],
        dedup_strategy: Optional[DedupStrategy] = None,
        is_connected: bool = True,
        schema: CanonicalSchema = DEFAULT_SCHEMA,
    ) -> "MappingConfiguration":
        """Build from MappingRule objects or stored rule dicts."""
        parsed = tuple(
            rule if isinstance(rule, MappingRule) else MappingRule.from_dict(rule)
            for rule in rules
        )
        return cls(
            tenant_id=str(tenant_id),
            source=LeadSource(source),
            rules=parsed,
            dedup_strategy=DedupStrategy(dedup_strategy or DedupStrategy.NONE),
            is_connected=is_connected,
            schema=schema,
        )

    @property
    def mapping_rules(self) -> Tuple[MappingRule, ...]:
        return tuple(rule for rule in self.rules if not rule.default_stage)

    @property
    def default_stage(self) -> Optional[str]:
        for rule in self.rules:
            if rule.default_stage:
                return rule.custom_value.strip()
        return None

    @property
    def referenced_source_roots(self) -> frozenset:
        return frozenset(
            rule.source_root for rule in self.rules if rule.source_root
        )
