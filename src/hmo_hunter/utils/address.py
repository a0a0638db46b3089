"""Address and postcode normalization utilities."""

import re
from typing import Final

# Minimum length (exclusive) for a word to count when comparing addresses.
SIGNIFICANT_TOKEN_LENGTH: Final = 3

_UNIT_PREFIX_RE: Final = re.compile(
    r"^(?:flat|apartment|apt|unit|room|studio)\s*\d+[a-z]?\s*[,\s]\s*"
)
_POSTCODE_RE: Final = re.compile(r"^([A-Z]{1,2}\d[A-Z\d]?)\s*(\d[A-Z]{2})$")
_OUTCODE_RE: Final = re.compile(r"([A-Z]{1,2}\d{1,2}[A-Z]?)")
_LEADING_NUMBER_RE: Final = re.compile(r"^(\d+[a-z]?)\s", re.IGNORECASE)
_NUMBER_BEFORE_WORD_RE: Final = re.compile(r"(?<![a-z\d])(\d+[a-z]?)\s+\w", re.IGNORECASE)
_NUMBER_TOKEN_RE: Final = re.compile(r"^\d+[a-z]?$")


def normalize_address(address: str | None) -> str:
    """Normalize an address for comparison.

    Handles:
    - "Flat 2, 10 Mare Street" -> "10 mare street"
    - "St. John's Road" -> "st johns road"
    - "10  DOWNING   STREET" -> "10 downing street"

    Args:
        address: Free-text address, as supplied by any source.

    Returns:
        Lower-case address without unit prefixes or punctuation, with
        whitespace collapsed. Empty string for missing input.
    """
    if not address:
        return ""

    addr = address.lower().strip()
    addr = _UNIT_PREFIX_RE.sub("", addr)
    addr = re.sub(r"[.']", "", addr)
    addr = re.sub(r"[^\w\s-]", " ", addr)
    return " ".join(addr.split())


def extract_street_number(address: str | None) -> str | None:
    """Extract the street number from an address.

    Prefers a leading number ("12a Mare Street" -> "12a") and otherwise takes
    the first number followed by a word ("The Lodge, 4 Mill Lane" -> "4").
    Unit prefixes are stripped first so "Flat 3, 10 Mare St" yields "10".
    """
    addr = normalize_address(address)
    if not addr:
        return None

    match = _LEADING_NUMBER_RE.match(addr) or _NUMBER_BEFORE_WORD_RE.search(addr)
    return match.group(1).lower() if match else None


def is_number_token(token: str) -> bool:
    """Check whether a token looks like a house number ("10", "12a")."""
    return bool(_NUMBER_TOKEN_RE.match(token))


def significant_tokens(address: str | None) -> set[str]:
    """Words long enough to discriminate between addresses.

    Numbers are excluded; they are compared separately as street numbers.
    """
    return {
        token
        for token in normalize_address(address).split()
        if len(token) > SIGNIFICANT_TOKEN_LENGTH and not token.isdigit()
    }


def normalize_postcode(postcode: str | None) -> str | None:
    """Upper-case a postcode and put a single space before the inward code.

    Partial postcodes (outcodes) are returned upper-cased and stripped.
    """
    if not postcode:
        return None

    compact = re.sub(r"\s+", "", postcode.upper())
    if not compact:
        return None

    match = _POSTCODE_RE.match(compact)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return " ".join(postcode.upper().split())


def compact_postcode(postcode: str) -> str:
    """Postcode without spaces, as several APIs require ("N7 6PA" -> "N76PA")."""
    return re.sub(r"\s+", "", postcode.upper())


def is_full_postcode(postcode: str | None) -> bool:
    """Check whether a string is a complete UK postcode (outcode + incode)."""
    if not postcode:
        return False
    return bool(_POSTCODE_RE.match(compact_postcode(postcode)))


def extract_outcode(postcode: str | None) -> str | None:
    """Extract outcode from full or partial postcode.

    Args:
        postcode: Full postcode like "E8 3RH" or partial like "E8".

    Returns:
        Outcode like "E8", or None if invalid.
    """
    if not postcode:
        return None

    normalized = normalize_postcode(postcode)
    if normalized and " " in normalized and is_full_postcode(normalized):
        return normalized.split(" ", 1)[0]

    match = _OUTCODE_RE.match(postcode.upper().strip())
    return match.group(1) if match else None
