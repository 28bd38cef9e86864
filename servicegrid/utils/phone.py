"""Phone number normalization for profile and customer fields."""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_e164(phone: str) -> str:
    """Normalize a North American number to E.164.

    Ten digits get a ``+1`` prefix, eleven digits starting with ``1`` get ``+``.
    Anything else is returned unchanged.
    """
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return phone


def is_valid_phone(phone: str) -> bool:
    """Empty is valid (optional field); otherwise it must normalize to +1XXXXXXXXXX."""
    if not _NON_DIGITS.sub("", phone):
        return True
    return re.fullmatch(r"\+1\d{10}", normalize_phone_e164(phone)) is not None
