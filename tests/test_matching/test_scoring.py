"""Tests for listing match scoring."""

import pytest

from hmo_hunter.matching.scoring import (
    MATCH_THRESHOLD,
    ListingScore,
    distance_score,
    haversine_distance,
    rank_listings,
    score_listing,
    select_best_listing,
)
from hmo_hunter.models import MarketListing, PropertyRecord

# Roughly 11 m per 0.0001 degrees of latitude
SUBJECT_LAT, SUBJECT_LON = 51.5465, -0.0553


def _listing(listing_id: str, **kwargs: object) -> MarketListing:
    return MarketListing(listing_id=listing_id, **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def subject() -> PropertyRecord:
    return PropertyRecord(
        address="12 Mare Street, London",
        latitude=SUBJECT_LAT,
        longitude=SUBJECT_LON,
        bedrooms=5,
    )


class TestDistance:
    def test_haversine_known_distance(self) -> None:
        # One degree of latitude is about 111 km
        assert haversine_distance(51.0, 0.0, 52.0, 0.0) == pytest.approx(111_195, rel=1e-3)

    @pytest.mark.parametrize(
        ("metres", "expected"),
        [(None, 0), (0.0, 50), (15.0, 50), (15.01, 40), (15.1, 40), (30.0, 40), (30.01, 0)],
    )
    def test_distance_bands(self, metres: float | None, expected: int) -> None:
        assert distance_score(metres) == expected


class TestScoreListing:
    def test_full_match(self, subject: PropertyRecord) -> None:
        listing = _listing(
            "1",
            address="12 Mare Street, E8",
            latitude=SUBJECT_LAT,
            longitude=SUBJECT_LON,
            bedrooms=5,
        )
        score = score_listing(subject, listing)
        assert score.total == 85
        assert score.confidence == 1.0
        assert score.is_match()

    def test_medium_distance_and_number(self, subject: PropertyRecord) -> None:
        listing = _listing(
            "1",
            address="12 Mare Street",
            latitude=SUBJECT_LAT + 0.0002,
            longitude=SUBJECT_LON,
            bedrooms=3,
        )
        score = score_listing(subject, listing)
        assert score.distance == 40
        assert score.bedrooms == 0
        assert score.street_number == 20
        assert score.total == 60

    def test_number_and_bedrooms_without_coordinates(self, subject: PropertyRecord) -> None:
        listing = _listing("1", address="12 Mare Street", bedrooms=5)
        score = score_listing(subject, listing)
        assert score.distance_meters is None
        assert score.total == 35
        assert not score.is_match()

    def test_zero_bedrooms_never_score(self) -> None:
        subject = PropertyRecord(address="Mare Street", bedrooms=0)
        listing = _listing("1", address="Mare Street", bedrooms=0)
        assert score_listing(subject, listing).total == 0

    def test_to_dict(self) -> None:
        score = ListingScore(distance_meters=12.345, distance=50, bedrooms=15)
        assert score.to_dict() == {
            "distance_meters": 12.3,
            "distance": 50,
            "bedrooms": 15,
            "street_number": 0,
            "total": 65,
        }


class TestRanking:
    def test_best_candidate_wins(self, subject: PropertyRecord) -> None:
        far = _listing("far", address="40 Mare Street", latitude=51.55, longitude=-0.06)
        near = _listing(
            "near", address="12 Mare Street", latitude=SUBJECT_LAT, longitude=SUBJECT_LON
        )
        best = rank_listings(subject, [far, near])
        assert best is not None
        assert best[0].listing_id == "near"

    def test_ties_keep_first(self, subject: PropertyRecord) -> None:
        a = _listing("a", address="12 Mare Street")
        b = _listing("b", address="12 Mare St")
        best = rank_listings(subject, [a, b])
        assert best is not None
        assert best[0].listing_id == "a"

    def test_nothing_scores(self, subject: PropertyRecord) -> None:
        assert rank_listings(subject, [_listing("x", address="Somewhere else")]) is None
        assert rank_listings(subject, []) is None

    def test_select_respects_threshold(self, subject: PropertyRecord) -> None:
        weak = _listing("weak", address="12 Mare Street", bedrooms=5)
        assert select_best_listing(subject, [weak]) is None
        assert select_best_listing(subject, [weak], threshold=30) is not None
        assert MATCH_THRESHOLD == 50
