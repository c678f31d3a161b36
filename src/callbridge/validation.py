import re

SENTINEL_VALUES = {"", "unknown", "n/a", "none", "null", "undefined", "not provided"}

_E164 = re.compile(r"^\+[1-9]\d{7,14}$")
_LEAD_ID = re.compile(r"^[A-Za-z0-9_\-:.]{1,128}$")


def validate_phone(value: str | None) -> str:
    """Normalize a phone number to E.164, or "" if it can't be dialed.

    Spaces, dashes, dots and parentheses are stripped.  Ten-digit numbers
    without a country code are assumed to be North American.
    """
    if not value:
        return ""
    cleaned = re.sub(r"[\s\-().]", "", str(value))
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    if re.match(r"^\d{10}$", cleaned):
        cleaned = "+1" + cleaned
    elif re.match(r"^1\d{10}$", cleaned):
        cleaned = "+" + cleaned
    if _E164.match(cleaned):
        return cleaned
    return ""


def validate_lead_id(value) -> str:
    if value is None:
        return ""
    cleaned = str(value).strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    # Reject template variables
    if "{{" in cleaned or "}}" in cleaned:
        return ""
    if _LEAD_ID.match(cleaned):
        return cleaned
    return ""


def validate_text(value, max_length: int = 500) -> str:
    """Free-text lead field: trimmed, sentinels dropped, length-capped."""
    if value is None:
        return ""
    cleaned = str(value).strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    if "{{" in cleaned or "}}" in cleaned:
        return ""
    return cleaned[:max_length]
