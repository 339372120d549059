"""Lead data normalization service."""

import re
import logging
from typing import Any, Dict, Optional
import phonenumbers

from app.config import settings

logger = logging.getLogger(__name__)


class NormalizationService:
    """Normalize contact data and compute dedup keys."""

    @staticmethod
    def normalize_email(email: Optional[str]) -> Optional[str]:
        """
        Normalize email address.
        - Convert to lowercase
        - Strip whitespace
        """
        if not email:
            return None
        normalized = email.strip().lower()
        return normalized or None

    @staticmethod
    def normalize_phone(phone: Optional[str], default_region: Optional[str] = None) -> Optional[str]:
        """
        Normalize phone number to E.164 format.
        Returns the trimmed input if parsing fails.
        """
        if not phone:
            return None

        region = default_region or settings.DEFAULT_PHONE_REGION
        try:
            # Remove common separators and whitespace
            cleaned = re.sub(r'[\s\-\(\)\.]', '', phone)

            parsed = phonenumbers.parse(cleaned, region)

            if phonenumbers.is_valid_number(parsed):
                return phonenumbers.format_number(
                    parsed,
                    phonenumbers.PhoneNumberFormat.E164
                )
        except phonenumbers.NumberParseException:
            logger.debug(f"Failed to parse phone number: {phone}")

        return phone.strip() or None

    @classmethod
    def phone_key(cls, phone: Optional[str], default_region: Optional[str] = None) -> Optional[str]:
        """
        Dedup key for a phone number: digits only, country code included.

        "+1 (415) 555-0100", "415.555.0100" and "14155550100" all give
        "14155550100" under the US default region. Numbers phonenumbers
        cannot parse fall back to their raw digits.
        """
        if not phone:
            return None

        region = default_region or settings.DEFAULT_PHONE_REGION
        digits = re.sub(r'\D', '', phone)
        if not digits:
            return None

        candidates = [phone.strip()]
        if not phone.strip().startswith('+'):
            # "14155550100" parses as a national number with a stray prefix
            # unless tried as international too.
            candidates.append(f"+{digits}")

        for candidate in candidates:
            try:
                parsed = phonenumbers.parse(candidate, region)
            except phonenumbers.NumberParseException:
                continue
            if phonenumbers.is_valid_number(parsed):
                return f"{parsed.country_code}{parsed.national_number}"

        return digits

    @classmethod
    def email_key(cls, email: Optional[str]) -> Optional[str]:
        return cls.normalize_email(email)

    @staticmethod
    def collapse_whitespace(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        collapsed = ' '.join(value.split())
        return collapsed or None

    def normalize_contact(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize the contact fields of resolved lead attributes.
        Returns a copy; fields that are not present are left alone.
        """
        normalized = dict(fields)

        if normalized.get('email'):
            normalized['email'] = self.normalize_email(normalized['email'])

        if normalized.get('phone'):
            normalized['phone'] = self.normalize_phone(normalized['phone'])

        for key in ('name', 'first_name', 'last_name', 'company', 'job_title', 'city'):
            if isinstance(normalized.get(key), str):
                normalized[key] = self.collapse_whitespace(normalized[key])

        return normalized


# Singleton instance
normalization_service = NormalizationService()
