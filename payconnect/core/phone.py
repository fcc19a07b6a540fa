"""
Phone number helpers: digit normalization and Moolre channel lookup.
"""

import re
from typing import Any, Optional

# Moolre channel codes
CHANNEL_MTN = 13
CHANNEL_TELECEL = 6
CHANNEL_AIRTELTIGO = 7

# Leading three digits (local format) -> channel
CHANNEL_PREFIXES = {
    CHANNEL_MTN: ("024", "025", "053", "054", "055", "059"),
    CHANNEL_TELECEL: ("020", "050"),
    CHANNEL_AIRTELTIGO: ("026", "027", "056", "057"),
}

_NON_DIGITS = re.compile(r"\D")
_PARENTHESIZED = re.compile(r"\(([^)]+)\)")


def normalize_phone(raw: Any) -> str:
    """Strip every non-digit character. Non-string input yields ''."""
    if not isinstance(raw, str):
        return ""
    return _NON_DIGITS.sub("", raw)


def resolve_channel(normalized_phone: str) -> int:
    """
    Infer the Moolre channel code from the first three digits.

    Falls back to MTN when no prefix matches (including international
    "233..." numbers).
    """
    prefix = (normalized_phone or "")[:3]
    for channel, prefixes in CHANNEL_PREFIXES.items():
        if prefix in prefixes:
            return channel
    return CHANNEL_MTN


def extract_payer_number(payer_display: Optional[str], fallback_phone: Optional[str] = "") -> str:
    """
    Pull the number out of a Moolre payer string.

    Moolre reports payers like "MTN Mobile Money (233531300654)". Returns the
    parenthesized fragment when present, otherwise the display string, otherwise
    the fallback.
    """
    if not payer_display or not isinstance(payer_display, str):
        return fallback_phone or ""

    match = _PARENTHESIZED.search(payer_display)
    if match and match.group(1):
        return match.group(1)
    return payer_display
