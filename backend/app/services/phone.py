"""Phone number normalization to E.164, with Indian mobile numbers as the default."""

import re

_INDIAN_MOBILE = re.compile(r"^(?:91)?([6-9]\d{9})$")


def normalize_phone(raw: str | None) -> str | None:
    """Return the E.164 form of ``raw`` or None when it cannot be a phone number.

    - 10 digits starting 6-9, optionally prefixed 91 -> +91XXXXXXXXXX
    - leading '+' with 10..15 digits -> kept as is
    - more than 10 digits without '+' (up to 15) -> '+' prefixed
    """
    if not raw:
        return None
    raw = raw.strip()
    has_plus = raw.startswith("+")
    digits = re.sub(r"\D", "", raw)

    match = _INDIAN_MOBILE.match(digits)
    if match:
        return f"+91{match.group(1)}"
    if has_plus and 10 <= len(digits) <= 15:
        return f"+{digits}"
    if 10 < len(digits) <= 15:
        return f"+{digits}"
    return None


def is_valid_phone(raw: str | None) -> bool:
    return normalize_phone(raw) is not None


def display_phone(phone: str) -> str:
    """Human-readable form: '+91 98765 43210' for Indian numbers."""
    normalized = normalize_phone(phone)
    if not normalized:
        return phone
    if normalized.startswith("+91") and len(normalized) == 13:
        local = normalized[3:]
        return f"+91 {local[:5]} {local[5:]}"
    return normalized


def mask_phone(phone: str | None) -> str:
    """Hide everything but the last four digits."""
    if not phone:
        return ""
    normalized = normalize_phone(phone)
    if not normalized:
        return phone
    return "••••••" + normalized[-4:]
