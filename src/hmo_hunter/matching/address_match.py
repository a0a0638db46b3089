"""Fuzzy address matching between property descriptions from different sources."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Final, TypeVar

from hmo_hunter.utils.address import (
    extract_street_number,
    normalize_address,
    significant_tokens,
)

T = TypeVar("T")

# Shared significant words needed for a token-overlap match
MIN_COMMON_TOKENS: Final = 2

# Minimum word-overlap ratio for address_similarity to count as a match
SIMILARITY_THRESHOLD: Final = 0.3

SCORE_EXACT: Final = 100
SCORE_CONTAINS: Final = 80
SCORE_TOKEN_OVERLAP_BASE: Final = 50
SCORE_PER_EXTRA_TOKEN: Final = 5
SCORE_TOKEN_OVERLAP_MAX: Final = 75


class AddressMatchKind(Enum):
    """How two addresses matched, strongest first."""

    EXACT = "exact"
    CONTAINS = "contains"
    TOKEN_OVERLAP = "token_overlap"
    NONE = "none"

    @property
    def rank(self) -> int:
        return _KIND_RANK[self]


_KIND_RANK: dict[AddressMatchKind, int] = {
    AddressMatchKind.EXACT: 3,
    AddressMatchKind.CONTAINS: 2,
    AddressMatchKind.TOKEN_OVERLAP: 1,
    AddressMatchKind.NONE: 0,
}


@dataclass(frozen=True)
class AddressMatch:
    """Outcome of comparing two addresses."""

    kind: AddressMatchKind
    common_tokens: int = 0

    @property
    def is_match(self) -> bool:
        return self.kind is not AddressMatchKind.NONE

    @property
    def score(self) -> int:
        """0-100, never lower for a stronger kind or more shared tokens."""
        if self.kind is AddressMatchKind.EXACT:
            return SCORE_EXACT
        if self.kind is AddressMatchKind.CONTAINS:
            return SCORE_CONTAINS
        if self.kind is AddressMatchKind.TOKEN_OVERLAP:
            extra = max(0, self.common_tokens - MIN_COMMON_TOKENS)
            return min(
                SCORE_TOKEN_OVERLAP_BASE + extra * SCORE_PER_EXTRA_TOKEN,
                SCORE_TOKEN_OVERLAP_MAX,
            )
        return 0


NO_MATCH: Final = AddressMatch(AddressMatchKind.NONE)


def _contains_on_word_boundary(haystack: str, needle: str) -> bool:
    return f" {needle} " in f" {haystack} "


def match_addresses(address: str | None, candidate: str | None) -> AddressMatch:
    """Compare two free-text addresses.

    Priority: exact equality of normalized forms, then containment in either
    direction (whole words only), then at least ``MIN_COMMON_TOKENS`` shared
    significant words with the same street number. When both addresses carry
    a street number, anything short of an exact match requires them to agree:
    "12 Downing Street" never matches "10 Downing Street".
    """
    a = normalize_address(address)
    b = normalize_address(candidate)
    if not a or not b:
        return NO_MATCH

    if a == b:
        return AddressMatch(AddressMatchKind.EXACT, len(significant_tokens(a)))

    number_a = extract_street_number(a)
    number_b = extract_street_number(b)
    if number_a and number_b and number_a != number_b:
        return NO_MATCH

    common = len(significant_tokens(a) & significant_tokens(b))

    if _contains_on_word_boundary(a, b) or _contains_on_word_boundary(b, a):
        return AddressMatch(AddressMatchKind.CONTAINS, common)

    if number_a and number_b and common >= MIN_COMMON_TOKENS:
        return AddressMatch(AddressMatchKind.TOKEN_OVERLAP, common)

    return NO_MATCH


def find_matching_entry(
    address: str | None,
    entries: Iterable[T],
    key: Callable[[T], str | None],
) -> tuple[T, AddressMatch] | None:
    """Find the entry whose address best matches ``address``.

    Match kinds are tried strongest first across all entries, so an exact
    match anywhere beats a containment match earlier in the list. Within a
    kind the first entry wins.
    """
    best: tuple[T, AddressMatch] | None = None
    for entry in entries:
        result = match_addresses(address, key(entry))
        if not result.is_match:
            continue
        if result.kind is AddressMatchKind.EXACT:
            return entry, result
        if best is None or result.kind.rank > best[1].kind.rank:
            best = (entry, result)
    return best


def address_similarity(address: str | None, candidate: str | None) -> float:
    """Share of the words of ``address`` that also appear in ``candidate`` (0-1)."""
    words_a = set(normalize_address(address).split())
    words_b = set(normalize_address(candidate).split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))
