# tests/services/test_normalization.py
"""Tests for NormalizationService"""

import pytest

from app.services.normalization import NormalizationService, normalization_service


class TestEmail:

    def test_lowercase_and_trim(self):
        assert NormalizationService.normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty(self, value):
        assert NormalizationService.normalize_email(value) is None


class TestPhone:

    @pytest.mark.parametrize("raw", [
        "(650) 253-0000",
        "650.253.0000",
        "+1 650 253 0000",
        "16502530000",
        "+1-650-253-0000",
    ])
    def test_phone_key_variants(self, raw):
        assert NormalizationService.phone_key(raw) == "16502530000"

    def test_phone_key_other_region(self):
        assert NormalizationService.phone_key("+44 20 7031 3000") == "442070313000"
        assert NormalizationService.phone_key("020 7031 3000", default_region="GB") == "442070313000"

    def test_phone_key_unparseable_falls_back_to_digits(self):
        assert NormalizationService.phone_key("12-34") == "1234"

    def test_phone_key_empty(self):
        assert NormalizationService.phone_key(None) is None
        assert NormalizationService.phone_key("call me") is None

    def test_normalize_phone_e164(self):
        assert NormalizationService.normalize_phone("(650) 253-0000") == "+16502530000"

    def test_normalize_phone_keeps_unparseable(self):
        assert NormalizationService.normalize_phone("  12-34 ") == "12-34"


class TestContact:

    def test_normalize_contact_returns_copy(self):
        fields = {
            "name": "  Jane   Doe ",
            "email": "JANE@EXAMPLE.COM",
            "phone": "650-253-0000",
            "deal_value": 100,
        }

        normalized = normalization_service.normalize_contact(fields)

        assert normalized == {
            "name": "Jane Doe",
            "email": "jane@example.com",
            "phone": "+16502530000",
            "deal_value": 100,
        }
        assert fields["name"] == "  Jane   Doe "

    def test_collapse_whitespace(self):
        assert NormalizationService.collapse_whitespace(" a \t b\n") == "a b"
        assert NormalizationService.collapse_whitespace("   ") is None
