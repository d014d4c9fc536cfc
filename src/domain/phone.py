"""
Phone Number Normalization
==========================

Brings user-entered numbers to E.164 ("+4512345678"). Bare 8-digit numbers
are treated as local numbers of the configured home country.
"""

import re

DEFAULT_COUNTRY_CODE = "45"

_STRIP_PATTERN = re.compile(r"[^\d+]")
_E164_PATTERN = re.compile(r"^\+\d{8,15}$")


def normalize_phone(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Normalize a phone number to E.164.

    Examples (country_code="45"):
        "+45 12 34 56 78" -> "+4512345678"
        "004512345678"    -> "+4512345678"
        "4512345678"      -> "+4512345678"
        "12345678"        -> "+4512345678"
    """
    cleaned = _STRIP_PATTERN.sub("", phone or "")

    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    if cleaned.startswith("+"):
        return cleaned

    if cleaned.startswith(country_code) and len(cleaned) == len(country_code) + 8:
        return "+" + cleaned

    if len(cleaned) == 8:
        return f"+{country_code}{cleaned}"

    return "+" + cleaned


def is_valid_phone_number(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> bool:
    return bool(_E164_PATTERN.match(normalize_phone(phone, country_code)))


def mask_phone(phone: str) -> str:
    """Keep the last 4 digits for logs."""
    if not phone or len(phone) < 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]
