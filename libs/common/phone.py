"""Russian phone number helpers shared by the API and the login client."""

from __future__ import annotations

import re

CANONICAL_PHONE_RE = re.compile(r"^\+7\d{10}$")


class PhoneFormatError(ValueError):
    """Raised when a phone number cannot be brought to +7XXXXXXXXXX."""


def _digits(phone: str | None) -> str:
    return "".join(filter(str.isdigit, phone or ""))


def normalize_phone(phone: str | None) -> str:
    """
    Bring a phone number to the canonical ``+7XXXXXXXXXX`` form.

    Accepts ``8XXXXXXXXXX``, ``7XXXXXXXXXX``, ``+7 (XXX) XXX-XX-XX`` and bare
    10-digit input. Longer inputs keep their last 10 digits. Anything shorter
    than 10 digits comes back as ``+<digits>`` and fails ``is_valid_phone``.
    """
    digits = _digits(phone)
    if not digits:
        return ""
    if len(digits) > 11:
        digits = digits[-10:]
    if len(digits) in (10, 11):
        return f"+7{digits[-10:]}"
    return f"+{digits}"


def is_valid_phone(phone: str | None) -> bool:
    return bool(phone) and CANONICAL_PHONE_RE.match(phone) is not None


def require_phone(phone: str | None) -> str:
    normalized = normalize_phone(phone)
    if not is_valid_phone(normalized):
        raise PhoneFormatError(f"Invalid phone number: {phone!r}")
    return normalized


def require_mobile_phone(phone: str | None) -> str:
    """Stricter check used before asking the provider to place a call."""
    digits = _digits(phone)
    if len(digits) == 10:
        digits = "7" + digits
    elif len(digits) == 11 and digits.startswith("8"):
        digits = "7" + digits[1:]
    if len(digits) != 11 or not digits.startswith("7"):
        raise PhoneFormatError("Phone must have 11 digits starting with 7")
    if digits[1] != "9":
        raise PhoneFormatError("Phone must start with 9 after the +7 country code")
    return f"+{digits}"


def provider_format(phone: str) -> str:
    """Digits-only form the call provider expects, e.g. 79991234567."""
    return _digits(phone)


def build_phone_variants(phone: str | None) -> list[str]:
    """Every spelling of the number that older rows may have been stored under."""
    digits = _digits(phone)
    if len(digits) < 10:
        return []
    last10 = digits[-10:]
    return [f"+7{last10}", f"7{last10}", f"8{last10}", last10]


def pretty_phone(phone: str) -> str:
    """+79991234567 -> +7 999 123-45-67"""
    digits = _digits(phone)
    if len(digits) != 11:
        return phone
    return f"+7 {digits[1:4]} {digits[4:7]}-{digits[7:9]}-{digits[9:11]}"
