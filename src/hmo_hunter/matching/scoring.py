"""Additive match scoring between a stored property and marketplace listings.

One scorer serves both the listing matcher (recovering photos and a direct
URL for a register record) and the register-vs-marketplace overlap report.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final, Protocol, TypeVar

from hmo_hunter.utils.address import extract_street_number

EARTH_RADIUS_METERS: Final = 6_371_000

# Distance bands (inclusive upper bounds, metres)
HIGH_CONFIDENCE_DISTANCE_METERS: Final = 15.0
MEDIUM_CONFIDENCE_DISTANCE_METERS: Final = 30.0

SCORE_DISTANCE_HIGH: Final = 50
SCORE_DISTANCE_MEDIUM: Final = 40
SCORE_BEDROOMS: Final = 15
SCORE_STREET_NUMBER: Final = 20

# Minimum total for a candidate to count as the same property
MATCH_THRESHOLD: Final = 50

MAX_SCORE: Final = SCORE_DISTANCE_HIGH + SCORE_BEDROOMS + SCORE_STREET_NUMBER


class Locatable(Protocol):
    """Anything with an address, optional coordinates and a bedroom count."""

    @property
    def address(self) -> str | None: ...

    @property
    def latitude(self) -> float | None: ...

    @property
    def longitude(self) -> float | None: ...

    @property
    def bedrooms(self) -> int | None: ...


L = TypeVar("L", bound=Locatable)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two coordinates in meters.

    Args:
        lat1, lon1: First coordinate.
        lat2, lon2: Second coordinate.

    Returns:
        Distance in meters.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def distance_score(distance_meters: float | None) -> int:
    """Points for proximity: 15 m or closer is high, 30 m or closer is medium."""
    if distance_meters is None:
        return 0
    if distance_meters <= HIGH_CONFIDENCE_DISTANCE_METERS:
        return SCORE_DISTANCE_HIGH
    if distance_meters <= MEDIUM_CONFIDENCE_DISTANCE_METERS:
        return SCORE_DISTANCE_MEDIUM
    return 0


@dataclass
class ListingScore:
    """Breakdown of the score between a property and one candidate listing."""

    distance_meters: float | None = None
    distance: int = 0
    bedrooms: int = 0
    street_number: int = 0

    @property
    def total(self) -> int:
        return self.distance + self.bedrooms + self.street_number

    @property
    def confidence(self) -> float:
        """Total scaled to 0-1."""
        return round(min(self.total, MAX_SCORE) / MAX_SCORE, 2)

    def is_match(self, threshold: int = MATCH_THRESHOLD) -> bool:
        return self.total >= threshold

    def to_dict(self) -> dict[str, float | int | None]:
        """Convert to dict for logging."""
        return {
            "distance_meters": (
                round(self.distance_meters, 1) if self.distance_meters is not None else None
            ),
            "distance": self.distance,
            "bedrooms": self.bedrooms,
            "street_number": self.street_number,
            "total": self.total,
        }


def score_listing(subject: Locatable, candidate: Locatable) -> ListingScore:
    """Score how likely ``candidate`` describes the same property as ``subject``."""
    score = ListingScore()

    if (
        subject.latitude is not None
        and subject.longitude is not None
        and candidate.latitude is not None
        and candidate.longitude is not None
    ):
        score.distance_meters = haversine_distance(
            subject.latitude, subject.longitude, candidate.latitude, candidate.longitude
        )
        score.distance = distance_score(score.distance_meters)

    if subject.bedrooms and candidate.bedrooms == subject.bedrooms:
        score.bedrooms = SCORE_BEDROOMS

    subject_number = extract_street_number(subject.address)
    candidate_number = extract_street_number(candidate.address)
    if subject_number and subject_number == candidate_number:
        score.street_number = SCORE_STREET_NUMBER

    return score


def rank_listings(
    subject: Locatable, candidates: Iterable[L]
) -> tuple[L, ListingScore] | None:
    """Highest-scoring candidate regardless of threshold.

    Only a strictly greater total replaces the current best, so ties keep the
    candidate seen first. Returns None when nothing scores above zero.
    """
    best: tuple[L, ListingScore] | None = None
    for candidate in candidates:
        score = score_listing(subject, candidate)
        if score.total > (best[1].total if best else 0):
            best = (candidate, score)
    return best


def select_best_listing(
    subject: Locatable,
    candidates: Sequence[L],
    threshold: int = MATCH_THRESHOLD,
) -> tuple[L, ListingScore] | None:
    """Best candidate if it clears ``threshold``, otherwise None."""
    best = rank_listings(subject, candidates)
    if best is None or not best[1].is_match(threshold):
        return None
    return best
