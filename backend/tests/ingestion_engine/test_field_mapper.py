# tests/ingestion_engine/test_field_mapper.py
"""
Tests for FieldMapper.resolve()

Coverage:
- Direct, nested and custom-field targets
- Custom value precedence (including empty custom values)
- Trimming, empty strings and type coercion
- Unmapped field warnings and custom-field preservation
- Mandatory field detection by key pattern
"""

import pytest

from app.ingestion_engine.core.field_mapper import FieldMapper, is_blank
from app.ingestion_engine.core.mapping import CanonicalSchema
from app.ingestion_engine.core.types import LeadSource


@pytest.fixture
def mapper():
    return FieldMapper()


# ============================================================================
# DIRECT MAPPING
# ============================================================================

class TestDirectMapping:

    def test_maps_and_trims_values(self, mapper, make_configuration, website_rules, sample_submission):
        config = make_configuration(rules=website_rules)

        resolved, _ = mapper.resolve(sample_submission, config)

        assert resolved.fields["name"] == "Jane   Doe"
        assert resolved.fields["email"] == "Jane.Doe@Example.com"
        assert resolved.fields["phone"] == "(650) 253-0000"
        assert resolved.fields["company"] == "Acme Corp"
        assert resolved.missing_mandatory == []
        assert resolved.is_complete

    def test_nested_path(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "contact.name", "target_field": "name"},
            {"source_field": "contact.emails[0]", "target_field": "email"},
            {"source_field": "contact.phones[1].number", "target_field": "phone"},
        ])
        payload = {
            "contact": {
                "name": "Sam Lee",
                "emails": ["sam@example.com", "other@example.com"],
                "phones": [{"number": "111"}, {"number": "+1 650 253 0000"}],
            }
        }

        resolved, warnings = mapper.resolve(payload, config)

        assert resolved.fields == {
            "name": "Sam Lee",
            "email": "sam@example.com",
            "phone": "+1 650 253 0000",
        }
        # "contact" is referenced by the rules, so nothing is unmapped
        assert warnings == []

    def test_missing_path_is_absent(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "contact.phones[3].number", "target_field": "phone"},
        ])

        resolved, _ = mapper.resolve({"contact": {"phones": []}}, config)

        assert "phone" not in resolved.fields
        assert "phone" in resolved.missing_mandatory

    def test_custom_field_target(self, mapper, make_configuration, website_rules, sample_submission):
        config = make_configuration(rules=website_rules)

        resolved, _ = mapper.resolve(sample_submission, config)

        assert resolved.custom_fields["budget"] == "5000"
        assert "budget" not in resolved.fields

    def test_do_not_sync_rule_drops_field(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "email", "target_field": "email"},
            {"source_field": "internal_note", "target_field": None},
        ])

        resolved, warnings = mapper.resolve({"email": "a@b.co", "internal_note": "secret"}, config)

        assert "internal_note" not in resolved.custom_fields
        assert all(w.field != "internal_note" for w in warnings)


# ============================================================================
# CUSTOM VALUES
# ============================================================================

class TestCustomValues:

    def test_custom_value_wins_over_payload(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": None, "target_field": "stage", "custom_value": "Qualified"},
        ])

        resolved, warnings = mapper.resolve({"stage": "Cold"}, config)

        assert resolved.fields["stage"] == "Qualified"
        # payload "stage" is not referenced by any rule
        assert [w.field for w in warnings] == ["stage"]

    def test_empty_custom_value_is_authoritative(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": None, "target_field": "notes", "custom_value": ""},
        ])

        resolved, _ = mapper.resolve({}, config)

        assert resolved.fields["notes"] == ""

    def test_empty_custom_value_still_counts_as_missing(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "name", "target_field": "name"},
            {"source_field": "email", "target_field": "email"},
            {"source_field": None, "target_field": "phone", "custom_value": ""},
        ])

        resolved, _ = mapper.resolve({"name": "Al", "email": "al@example.com"}, config)

        assert resolved.fields["phone"] == ""
        assert resolved.missing_mandatory == ["phone"]

    def test_custom_values_are_coerced(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": None, "target_field": "tags", "custom_value": "VIP, Hot"},
            {"source_field": None, "target_field": "deal_value", "custom_value": "5,000"},
            {"source_field": None, "target_field": "phone", "custom_value": 6502530000},
        ])

        resolved, warnings = mapper.resolve({}, config)

        assert resolved.fields["tags"] == ["VIP", "Hot"]
        assert resolved.fields["deal_value"] == 5000
        assert resolved.fields["phone"] == "6502530000"
        assert warnings == []

    def test_default_stage_rule(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"custom_value": " Contacted ", "default_stage": True},
        ])

        resolved, _ = mapper.resolve({}, config)

        assert resolved.default_stage == "Contacted"
        assert "stage" not in resolved.fields


# ============================================================================
# COERCION
# ============================================================================

class TestCoercion:

    def test_empty_string_is_absent(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "fb_phone", "target_field": "phone"},
        ])

        resolved, warnings = mapper.resolve({"fb_phone": "   "}, config)

        assert "phone" not in resolved.fields
        assert warnings == []

    def test_invalid_email_is_a_warning(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "email", "target_field": "email"},
        ])

        resolved, warnings = mapper.resolve({"email": "not-an-email"}, config)

        assert "email" not in resolved.fields
        assert len(warnings) == 1
        assert warnings[0].field == "email"
        assert warnings[0].reason == "invalid_value"

    def test_number_coercion(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "value", "target_field": "deal_value"},
        ])

        resolved, _ = mapper.resolve({"value": "12,500"}, config)
        assert resolved.fields["deal_value"] == 12500

        resolved, warnings = mapper.resolve({"value": "lots"}, config)
        assert "deal_value" not in resolved.fields
        assert warnings[0].reason == "invalid_value"

    def test_list_coercion(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "interests", "target_field": "tags"},
        ])

        resolved, _ = mapper.resolve({"interests": "solar, , batteries "}, config)

        assert resolved.fields["tags"] == ["solar", "batteries"]

    def test_object_for_string_field_is_invalid(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "company", "target_field": "company"},
        ])

        resolved, warnings = mapper.resolve({"company": {"name": "Acme"}}, config)

        assert "company" not in resolved.fields
        assert warnings[0].reason == "invalid_value"


# ============================================================================
# UNMAPPED FIELDS
# ============================================================================

class TestUnmappedFields:

    def test_unmapped_fields_warn_and_are_preserved(self, mapper, make_configuration, website_rules, sample_submission):
        config = make_configuration(rules=website_rules)

        resolved, warnings = mapper.resolve(sample_submission, config)

        unmapped = sorted(w.field for w in warnings if w.reason == "unmapped")
        assert unmapped == ["submission_id", "utm_source"]
        assert resolved.custom_fields["utm_source"] == "newsletter"

    def test_schema_without_bucket_drops_unmapped(self, make_configuration):
        mapper = FieldMapper(schema=CanonicalSchema(fields={"email": "email"}, custom_fields_bucket=None))
        config = make_configuration(rules=[{"source_field": "email", "target_field": "email"}])

        resolved, warnings = mapper.resolve({"email": "a@b.co", "extra": "x"}, config)

        assert resolved.custom_fields == {}
        assert [w.field for w in warnings] == ["extra"]

    def test_resolve_is_deterministic(self, mapper, make_configuration, website_rules, sample_submission):
        config = make_configuration(rules=website_rules)

        first = mapper.resolve(sample_submission, config)
        second = mapper.resolve(sample_submission, config)

        assert first == second


# ============================================================================
# MANDATORY FIELDS
# ============================================================================

class TestMandatoryFields:

    def test_first_and_last_name_satisfy_name(self, mapper, make_configuration):
        config = make_configuration(source=LeadSource.FACEBOOK_ADS, rules=[
            {"source_field": "first_name", "target_field": "first_name"},
            {"source_field": "last_name", "target_field": "last_name"},
            {"source_field": "email", "target_field": "email"},
            {"source_field": "phone_number", "target_field": "phone"},
        ])
        payload = {
            "first_name": "Ana",
            "last_name": "Silva",
            "email": "ana@example.com",
            "phone_number": "+1 650 253 0000",
        }

        resolved, _ = mapper.resolve(payload, config)

        assert resolved.missing_mandatory == []

    def test_missing_fields_listed_in_order(self, mapper, make_configuration):
        config = make_configuration(rules=[
            {"source_field": "company", "target_field": "company"},
        ])

        resolved, _ = mapper.resolve({"company": "Acme"}, config)

        assert resolved.missing_mandatory == ["name", "email", "phone"]

    @pytest.mark.parametrize("value,blank", [
        (None, True),
        ("", True),
        ("  ", True),
        ([], True),
        ({}, True),
        (0, False),
        ("x", False),
    ])
    def test_is_blank(self, value, blank):
        assert is_blank(value) is blank
