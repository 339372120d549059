"""
Field mapper for resolving external payloads into canonical lead attributes.

Maps fields from Facebook, Google Ads and website payloads to the canonical
lead schema using a tenant's validated MappingConfiguration.
"""
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from app.ingestion_engine.core.mapping import (
    MANDATORY_FIELDS,
    CanonicalSchema,
    MappingConfiguration,
    mandatory_kind,
)
from app.ingestion_engine.core.types import ResolvedLeadAttributes, UnmappedFieldWarning


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_MIN_DIGITS = 4


class InvalidValue(ValueError):
    """Source value cannot be coerced to the canonical field's type."""


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


class FieldMapper:
    """
    Resolves a raw payload against a mapping configuration.

    Supports:
    - Direct mapping: {"source_field": "email", "target_field": "email"}
    - Nested paths: {"source_field": "contact.phones[0].number", ...}
    - Custom values: {"target_field": "stage", "custom_value": "New Lead"}
    - Custom field targets: {"target_field": "customFields.budget", ...}

    resolve() is pure: no I/O, and identical inputs give identical output.
    """

    def __init__(self, schema: Optional[CanonicalSchema] = None):
        """
        Initialize field mapper.

        Args:
            schema: Canonical schema to resolve against. Defaults to the
                schema carried by each configuration.
        """
        self.schema = schema
        self.coercers = {}
        self._register_default_coercers()

    def _register_default_coercers(self):
        """Register built-in coercion functions, one per field type."""
        self.coercers["string"] = self._coerce_string
        self.coercers["email"] = self._coerce_email
        self.coercers["phone"] = self._coerce_phone
        self.coercers["number"] = self._coerce_number
        self.coercers["list"] = self._coerce_list

    # ------------------------------------------------------------------
    # Path extraction
    # ------------------------------------------------------------------

    def _extract_value(self, data: Dict[str, Any], path: str) -> Any:
        """
        Extract value from nested dict using dot notation.

        Args:
            data: Source data dictionary
            path: Path like "contact.city" or "phones[0].number"

        Returns:
            Extracted value or None
        """
        if path in data:
            return data[path]

        value: Any = data
        for part in path.split("."):
            name, indexes = self._split_indexes(part)
            if name:
                if not isinstance(value, dict):
                    return None
                value = value.get(name)
            for index in indexes:
                if isinstance(value, list) and -len(value) <= index < len(value):
                    value = value[index]
                else:
                    return None
        return value

    @staticmethod
    def _split_indexes(part: str) -> Tuple[str, List[int]]:
        """Split "phones[0][1]" into ("phones", [0, 1])."""
        if "[" not in part:
            return part, []
        name, _, rest = part.partition("[")
        indexes = []
        for chunk in rest.replace("]", "").split("["):
            try:
                indexes.append(int(chunk))
            except ValueError:
                return part, []
        return name, indexes

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_string(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, dict):
            raise InvalidValue("expected a scalar, got an object")
        if isinstance(value, list):
            parts = [str(item).strip() for item in value if not is_blank(item)]
            value = ", ".join(part for part in parts if part)
        text = str(value).strip()
        return text or None

    def _coerce_email(self, value: Any) -> Optional[str]:
        text = self._coerce_string(value)
        if text is not None and not EMAIL_PATTERN.match(text):
            raise InvalidValue(f"'{text}' is not an email address")
        return text

    def _coerce_phone(self, value: Any) -> Optional[str]:
        text = self._coerce_string(value)
        if text is not None and sum(ch.isdigit() for ch in text) < PHONE_MIN_DIGITS:
            raise InvalidValue(f"'{text}' is not a phone number")
        return text

    @staticmethod
    def _coerce_number(value: Any) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool):
            raise InvalidValue("expected a number, got a boolean")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            raise InvalidValue(f"'{value}' is not a number")
        return int(number) if number.is_integer() else number

    @staticmethod
    def _coerce_list(value: Any) -> Optional[List[str]]:
        if value is None:
            return None
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, list):
            items = value
        else:
            items = [value]
        cleaned = [str(item).strip() for item in items if not is_blank(item)]
        cleaned = [item for item in cleaned if item]
        return cleaned or None

    def coerce(self, value: Any, field_type: str) -> Any:
        """Coerce a source value, returning None when it counts as absent."""
        coercer = self.coercers.get(field_type, self._coerce_string)
        return coercer(value)

    @staticmethod
    def _clean_unmapped(value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        payload: Dict[str, Any],
        configuration: MappingConfiguration,
        schema: Optional[CanonicalSchema] = None,
    ) -> Tuple[ResolvedLeadAttributes, List[UnmappedFieldWarning]]:
        """
        Resolve a raw payload into canonical attributes.

        Args:
            payload: Flat or nested provider payload
            configuration: Validated mapping configuration
            schema: Canonical schema override

        Returns:
            (resolved attributes, warnings). Missing mandatory fields are
            listed on the result; deciding what to do about them is the
            caller's job.
        """
        schema = schema or self.schema or configuration.schema
        resolved = ResolvedLeadAttributes(default_stage=configuration.default_stage)
        warnings: List[UnmappedFieldWarning] = []

        for rule in configuration.mapping_rules:
            if rule.target_field is None:
                continue

            field_type = schema.field_type(rule.target_field)

            if rule.has_custom_value:
                # Blank custom values are kept as given, they still clear the field
                value = rule.custom_value
                if not is_blank(value):
                    try:
                        value = self.coerce(value, field_type)
                    except InvalidValue as e:
                        warnings.append(UnmappedFieldWarning(rule.target_field, "invalid_custom_value", str(e)))
                        continue
                self._assign(resolved, schema, rule.target_field, value)
                continue

            raw_value = self._extract_value(payload, rule.source_field)
            try:
                value = self.coerce(raw_value, field_type)
            except InvalidValue as e:
                warnings.append(UnmappedFieldWarning(rule.source_field, "invalid_value", str(e)))
                continue

            if value is not None:
                self._assign(resolved, schema, rule.target_field, value)

        referenced = configuration.referenced_source_roots
        for key in sorted(payload):
            if key in referenced:
                continue
            warnings.append(UnmappedFieldWarning(key, "unmapped"))
            if schema.custom_fields_bucket:
                value = self._clean_unmapped(payload[key])
                if not is_blank(value) and key not in resolved.custom_fields:
                    resolved.custom_fields[key] = value

        resolved.missing_mandatory = self.missing_mandatory_fields(resolved.fields)

        if warnings:
            logger.debug(
                f"Resolved {configuration.source.value} payload with "
                f"{len(warnings)} warning(s): {[w.field for w in warnings]}"
            )

        return resolved, warnings

    @staticmethod
    def _assign(resolved: ResolvedLeadAttributes, schema: CanonicalSchema, target: str, value: Any):
        if schema.is_custom_target(target):
            resolved.custom_fields[schema.custom_key(target)] = value
        else:
            resolved.fields[target] = value

    @staticmethod
    def missing_mandatory_fields(fields: Dict[str, Any]) -> List[str]:
        """Return the mandatory fields (name, email, phone) with no usable value."""
        present = {
            mandatory_kind(key)
            for key, value in fields.items()
            if not is_blank(value)
        }
        return [kind for kind in MANDATORY_FIELDS if kind not in present]
