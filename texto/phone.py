"""Phone number normalization.

Full validation is left to the consuming app; this only brings numbers into
a consistent E.164 shape before they reach a provider or the message store.
"""

from __future__ import annotations

import re

MIN_E164_DIGITS = 8
MAX_E164_DIGITS = 15


def normalize_e164(phone: str | None) -> str | None:
    """Normalize a phone number to E.164 format.

    Punctuation is stripped. Ten-digit numbers without a leading ``+`` are
    assumed to be North American and get a ``1`` country code.

    Returns:
        Normalized ``+<digits>`` string, or None if the input is empty or
        has an implausible digit count.
    """
    if not phone:
        return None

    candidate = phone.strip()
    if not candidate:
        return None

    digits = re.sub(r"\D", "", candidate)
    if not digits:
        return None

    if not candidate.startswith("+") and len(digits) == 10:
        digits = "1" + digits

    if not MIN_E164_DIGITS <= len(digits) <= MAX_E164_DIGITS:
        return None

    return f"+{digits}"
