"""Phone number comparison helpers (core domain)."""

from __future__ import annotations

import re
from typing import Optional

import phonenumbers

DEFAULT_SUFFIX_LENGTH = 7

# Characters that may appear in a dialable number as stored in a contact card.
_DIALABLE = re.compile(r"^\+?[\d\s().\-/*#]+$")


def normalize_phone_number(number: str, default_region: Optional[str] = None) -> Optional[str]:
    """Return the E.164 form of ``number`` or None when it is not a valid number."""

    if not number or not number.strip():
        return None
    try:
        parsed = phonenumbers.parse(number.strip(), default_region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def _digits(number: str) -> Optional[str]:
    stripped = number.strip()
    if not stripped or not _DIALABLE.match(stripped):
        return None
    digits = phonenumbers.normalize_digits_only(stripped)
    return digits or None


def numbers_match(
    candidate: str,
    stored: str,
    *,
    default_region: Optional[str] = None,
    suffix_length: int = DEFAULT_SUFFIX_LENGTH,
) -> bool:
    """Return True when two phone numbers refer to the same line.

    Matching logic:
    - Anything that is not a dialable number never matches.
    - If both sides are valid numbers for ``default_region``, their E.164
      forms must be equal.
    - Otherwise the digit strings must be equal, or, when both are long
      enough, share the last ``suffix_length`` digits. This absorbs country
      code and trunk prefix differences ("+358 40 1234567" vs "040 1234567").
    """

    candidate_digits = _digits(candidate or "")
    stored_digits = _digits(stored or "")
    if candidate_digits is None or stored_digits is None:
        return False

    candidate_e164 = normalize_phone_number(candidate, default_region)
    stored_e164 = normalize_phone_number(stored, default_region)
    if candidate_e164 and stored_e164:
        return candidate_e164 == stored_e164

    if candidate_digits == stored_digits:
        return True
    if len(candidate_digits) >= suffix_length and len(stored_digits) >= suffix_length:
        return candidate_digits[-suffix_length:] == stored_digits[-suffix_length:]
    return False
