"""Address matching and listing scoring."""

from hmo_hunter.matching.address_match import (
    AddressMatch,
    AddressMatchKind,
    address_similarity,
    find_matching_entry,
    match_addresses,
)
from hmo_hunter.matching.listing_matcher import ListingMatch, ListingMatcher, OverlapReport
from hmo_hunter.matching.scoring import ListingScore, score_listing, select_best_listing

__all__ = [
    "AddressMatch",
    "AddressMatchKind",
    "ListingMatch",
    "ListingMatcher",
    "ListingScore",
    "OverlapReport",
    "address_similarity",
    "find_matching_entry",
    "match_addresses",
    "score_listing",
    "select_best_listing",
]
