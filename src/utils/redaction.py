"""Redaction helpers for safe logging of bridge traffic.

Bridge payloads carry QR challenges, media blobs and phone numbers.
None of these belong in logs verbatim: keys are matched
case-insensitively by substring, contact ids are masked.
"""

_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "password",
    "qr", "session_key", "base64",
})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in _SENSITIVE_PATTERNS)


def redact_for_logging(obj: dict) -> dict:
    """Redact sensitive values from a dict for safe logging.

    Args:
        obj: Dict to redact (not mutated; a copy is returned).

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
        Nested dicts and lists of dicts are handled recursively.
    """
    result = {}
    for key, value in obj.items():
        if _is_sensitive_key(str(key)):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def mask_contact(contact_id: str | None) -> str:
    """Mask the middle of a contact id, keeping enough to correlate logs.

    Example:
        mask_contact("15551234567") -> "155*****567"
    """
    if not contact_id:
        return "<none>"
    if len(contact_id) <= 6:
        return "*" * len(contact_id)
    return f"{contact_id[:3]}{'*' * (len(contact_id) - 6)}{contact_id[-3:]}"
