"""External (PSTN) destination validation."""

from __future__ import annotations

import re

import phonenumbers
from phonenumbers import NumberParseException

_DIAL_STRING_RE = re.compile(r"\+?\d+", re.ASCII)


def is_valid_external(number: str) -> bool:
    """Return True if the dial string is a plausible international phone number.

    A leading ``+`` is added when absent, so ``15551234567`` and
    ``+15551234567`` are equivalent. The region is inferred from the
    country code and the length is checked against that region's plan.
    Allocation is not checked: fictional ranges such as NANP 555 pass.
    Never raises: unparseable input is simply invalid.
    """
    if not isinstance(number, str) or not _DIAL_STRING_RE.fullmatch(number):
        return False

    candidate = number if number.startswith("+") else f"+{number}"
    try:
        parsed = phonenumbers.parse(candidate, None)
    except NumberParseException:
        return False
    reason = phonenumbers.is_possible_number_with_reason(parsed)
    return reason == phonenumbers.ValidationResult.IS_POSSIBLE
