"""HMO conversion potential and deal scoring.

Runs last, with no network access, over whatever Phases 1-3 gathered: size,
location demand, price against the city average, gross yield at HMO room
rents, and energy rating are weighted into a 0-100 deal score, from which a
record is classified as ready to let, worth improving, or unsuitable.
"""

import math
from dataclasses import dataclass
from typing import Final

from hmo_hunter.adapters.base import EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import (
    EpcRating,
    FloorAreaBand,
    HmoClassification,
    HmoStatus,
    Phase,
    PropertyPatch,
    PropertyRecord,
    PropertyType,
    YieldBand,
)

logger = get_logger(__name__)

MIN_BEDROOMS: Final = 3
READY_TO_GO_BEDROOMS: Final = 4
MAX_OCCUPANTS: Final = 6

DEFAULT_BASE_FLOOR_AREA: Final = 60
FLOOR_AREA_PER_BEDROOM: Final = 15
BASE_FLOOR_AREA: Final = {
    PropertyType.HOUSE: 70,
    PropertyType.FLAT: 50,
    PropertyType.HMO: 100,
    PropertyType.STUDIO: 30,
}

DEFAULT_ROOM_RENT: Final = 450
ROOM_RENTS: Final = {
    "london": 850,
    "manchester": 550,
    "birmingham": 500,
    "leeds": 480,
    "bristol": 600,
    "liverpool": 450,
    "newcastle": 450,
    "sheffield": 420,
    "nottingham": 450,
    "leicester": 450,
    "reading": 650,
    "portsmouth": 500,
    "southampton": 520,
    "brighton": 650,
    "oxford": 700,
    "cambridge": 700,
}

DEFAULT_AVERAGE_PRICE: Final = 250_000
AVERAGE_PRICES: Final = {
    "london": 550_000,
    "manchester": 280_000,
    "birmingham": 250_000,
    "bristol": 350_000,
    "leeds": 230_000,
}

HIGH_DEMAND_CITIES: Final = frozenset(
    {"london", "manchester", "birmingham", "bristol", "leeds", "brighton"}
)
MEDIUM_DEMAND_CITIES: Final = frozenset(
    {"liverpool", "newcastle", "sheffield", "nottingham", "reading", "portsmouth"}
)
ARTICLE_4_PENALTY: Final = 30

EPC_SCORES: Final = {
    EpcRating.A: 100,
    EpcRating.B: 90,
    EpcRating.C: 80,
    EpcRating.D: 65,
    EpcRating.E: 45,
    EpcRating.F: 25,
    EpcRating.G: 10,
}
UNKNOWN_EPC_SCORE: Final = 50
READY_EPC_RATINGS: Final = frozenset({EpcRating.A, EpcRating.B, EpcRating.C, EpcRating.D})

WEIGHTS: Final = {
    "size_score": 0.2,
    "location_score": 0.25,
    "price_score": 0.2,
    "yield_score": 0.25,
    "epc_score": 0.1,
}

READY_TO_GO_SCORE: Final = 60
VALUE_ADD_SCORE: Final = 40
NOT_SUITABLE_SCORE: Final = 30
HIGH_YIELD: Final = 8.0
MEDIUM_YIELD: Final = 5.0


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _city_key(city: str | None) -> str:
    return (city or "").strip().lower()


def estimate_floor_area(bedrooms: int, property_type: PropertyType | None) -> float:
    base = DEFAULT_BASE_FLOOR_AREA
    if property_type is not None:
        base = BASE_FLOOR_AREA.get(property_type, DEFAULT_BASE_FLOOR_AREA)
    return base + bedrooms * FLOOR_AREA_PER_BEDROOM


def floor_area_band(square_metres: float) -> FloorAreaBand:
    if square_metres < 90:
        return FloorAreaBand.UNDER_90
    if square_metres < 120:
        return FloorAreaBand.FROM_90_TO_120
    return FloorAreaBand.OVER_120


def potential_occupants(bedrooms: int) -> int:
    return min(bedrooms + 1, MAX_OCCUPANTS)


def rent_per_room(city: str | None, epc_rating: EpcRating | None) -> int:
    rent = float(ROOM_RENTS.get(_city_key(city), DEFAULT_ROOM_RENT))
    if epc_rating in (EpcRating.A, EpcRating.B):
        rent *= 1.1
    elif epc_rating in (EpcRating.F, EpcRating.G):
        rent *= 0.85
    return _round_half_up(rent)


def size_score(square_metres: float) -> int:
    if square_metres < 60:
        return 20
    if square_metres < 90:
        return 50
    if square_metres <= 150:
        return 90
    return 75


def location_score(city: str | None, article_4: bool | None) -> int:
    key = _city_key(city)
    if key in HIGH_DEMAND_CITIES:
        score = 85
    elif key in MEDIUM_DEMAND_CITIES:
        score = 70
    else:
        score = 50
    if article_4:
        score -= ARTICLE_4_PENALTY
    return max(0, score)


def price_score(price: int, city: str | None) -> int:
    ratio = price / AVERAGE_PRICES.get(_city_key(city), DEFAULT_AVERAGE_PRICE)
    if ratio < 0.7:
        return 95
    if ratio < 0.85:
        return 80
    if ratio < 1.0:
        return 65
    if ratio < 1.15:
        return 50
    return 30


def gross_yield(monthly_rent: int, purchase_price: int) -> float:
    return monthly_rent * 12 / purchase_price * 100


def yield_score(monthly_rent: int, purchase_price: int) -> int:
    if purchase_price == 0:
        return 50
    value = gross_yield(monthly_rent, purchase_price)
    for threshold, score in ((10, 100), (8, 85), (6, 70), (5, 55), (4, 40)):
        if value >= threshold:
            return score
    return 25


def epc_score(rating: EpcRating | None) -> int:
    return EPC_SCORES.get(rating, UNKNOWN_EPC_SCORE) if rating else UNKNOWN_EPC_SCORE


def yield_band(value: float) -> YieldBand:
    if value >= HIGH_YIELD:
        return YieldBand.HIGH
    if value >= MEDIUM_YIELD:
        return YieldBand.MEDIUM
    return YieldBand.LOW


@dataclass(frozen=True)
class DealAnalysis:
    occupants: int
    monthly_rent: int
    deal_score: int
    breakdown: dict[str, int]


def analyze_deal(record: PropertyRecord, square_metres: float) -> DealAnalysis:
    bedrooms = record.bedrooms or 0
    price = record.purchase_price or 0
    occupants = potential_occupants(bedrooms)
    monthly_rent = occupants * rent_per_room(record.city, record.epc_rating)

    breakdown = {
        "size_score": size_score(square_metres),
        "location_score": location_score(record.city, record.article_4_area),
        "price_score": price_score(price, record.city),
        "yield_score": yield_score(monthly_rent, price),
        "epc_score": epc_score(record.epc_rating),
    }
    weighted = sum(breakdown[name] * weight for name, weight in WEIGHTS.items())
    deal_score = max(0, min(100, _round_half_up(weighted)))
    return DealAnalysis(occupants, monthly_rent, deal_score, breakdown)


def classify(record: PropertyRecord, deal_score: int) -> HmoClassification:
    bedrooms = record.bedrooms or 0
    if bedrooms < MIN_BEDROOMS or deal_score < NOT_SUITABLE_SCORE:
        return HmoClassification.NOT_SUITABLE
    # A missing rating is assumed to be a D
    rating = record.epc_rating or EpcRating.D
    if (
        deal_score >= READY_TO_GO_SCORE
        and not record.article_4_area
        and rating in READY_EPC_RATINGS
        and bedrooms >= READY_TO_GO_BEDROOMS
    ):
        return HmoClassification.READY_TO_GO
    if deal_score >= VALUE_ADD_SCORE:
        return HmoClassification.VALUE_ADD
    return HmoClassification.NOT_SUITABLE


class PotentialHmoAnalyzer(EnrichmentAdapter):
    """Score every record that has not been analysed yet."""

    name = "potential-hmo"
    phase = Phase.DERIVED

    def eligibility(self) -> RecordFilter:
        return super().eligibility().is_null("is_potential_hmo")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if record.is_potential_hmo is not None:
            return PropertyPatch()

        bedrooms = record.bedrooms or 0
        price = record.purchase_price or record.price_pcm or 0
        square_metres = record.floor_area or estimate_floor_area(bedrooms, record.property_type)
        band = floor_area_band(square_metres)

        if bedrooms < MIN_BEDROOMS or price == 0:
            return PropertyPatch(
                is_potential_hmo=False,
                hmo_classification=HmoClassification.NOT_SUITABLE,
                deal_score=0,
            )

        analysis = analyze_deal(record, square_metres)

        # Already licensed: scored for comparison but not a conversion prospect
        if record.hmo_status is HmoStatus.LICENSED:
            return PropertyPatch(
                is_potential_hmo=False,
                deal_score=analysis.deal_score,
                deal_score_breakdown=analysis.breakdown,
                floor_area_band=band,
            )

        classification = classify(record, analysis.deal_score)
        if record.purchase_price:
            estimated_yield = gross_yield(analysis.monthly_rent, record.purchase_price)
        else:
            estimated_yield = 0.0

        logger.debug(
            "hmo_potential_scored",
            record_id=record.id,
            deal_score=analysis.deal_score,
            classification=classification.value,
        )
        return PropertyPatch(
            is_potential_hmo=classification is not HmoClassification.NOT_SUITABLE,
            hmo_classification=classification,
            deal_score=analysis.deal_score,
            deal_score_breakdown=analysis.breakdown,
            potential_occupants=analysis.occupants,
            estimated_gross_monthly_rent=analysis.monthly_rent,
            estimated_yield_percentage=_round_half_up(estimated_yield * 10) / 10,
            yield_band=yield_band(estimated_yield),
            floor_area_band=band,
        )
