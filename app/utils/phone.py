"""
Phone number helpers.
"""
import re
from typing import Optional

_E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")


def digits_only(value: Optional[str]) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", value or "")


def normalize_e164(phone: Optional[str]) -> Optional[str]:
    """
    Normalise a phone string to E.164, or return ``None`` if it can't be.

    * 10 bare digits → North American number, ``+1`` prefixed
    * anything else  → digits prefixed with ``+``

    The result must be 7-15 digits with a non-zero leading digit.
    """
    if phone is None:
        return None

    digits = digits_only(str(phone))
    if not digits:
        return None

    if len(digits) == 10:
        digits = "1" + digits

    candidate = f"+{digits}"
    if not _E164_RE.match(candidate):
        return None
    return candidate


def contains_number(haystack: Optional[str], needle: Optional[str]) -> bool:
    """True if the digits of ``needle`` appear inside the digits of ``haystack``."""
    needle_digits = digits_only(needle)
    if not needle_digits:
        return False
    return needle_digits in digits_only(haystack)
