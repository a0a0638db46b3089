"""Pydantic models for property records, enrichment patches and run results."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum, IntEnum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hmo_hunter.utils.address import normalize_postcode

RECORDS_TABLE: Final = "properties"


class Phase(IntEnum):
    """Ordered stages of an ingestion run."""

    CORE = 1
    VALUATION = 2
    OWNERSHIP = 3
    DERIVED = 4


class ListingType(str, Enum):
    RENT = "rent"
    PURCHASE = "purchase"


class PropertyType(str, Enum):
    HMO = "HMO"
    FLAT = "Flat"
    HOUSE = "House"
    STUDIO = "Studio"


class LicenceStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    PENDING = "pending"
    NONE = "none"


class HmoStatus(str, Enum):
    LICENSED = "Licensed HMO"
    UNLICENSED = "Unlicensed HMO"


class OwnerType(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    TRUST = "trust"
    GOVERNMENT = "government"
    UNKNOWN = "unknown"


class EpcRating(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    G = "G"


class ListedBuildingGrade(str, Enum):
    GRADE_I = "I"
    GRADE_II_STAR = "II*"
    GRADE_II = "II"


class HmoClassification(str, Enum):
    READY_TO_GO = "ready_to_go"
    VALUE_ADD = "value_add"
    NOT_SUITABLE = "not_suitable"


class YieldBand(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FloorAreaBand(str, Enum):
    UNDER_90 = "under_90"
    FROM_90_TO_120 = "90_120"
    OVER_120 = "120_plus"


class Director(BaseModel):
    """An active company officer."""

    model_config = ConfigDict(frozen=True)

    name: str
    role: str | None = None
    appointed_on: date | None = None
    nationality: str | None = None
    occupation: str | None = None


class PlanningConstraint(BaseModel):
    """A planning restriction affecting a property."""

    model_config = ConfigDict(frozen=True)

    type: str
    description: str | None = None
    reference: str | None = None
    authority: str | None = None


class ListingAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    phone: str | None = None


class PropertyFields(BaseModel):
    """Attributes shared by stored records and enrichment patches.

    Every attribute is optional: a record is assembled from several sources,
    none of which supplies all of it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Location
    title: str | None = None
    address: str | None = None
    postcode: str | None = None
    city: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    # Listing economics
    listing_type: ListingType | None = None
    price_pcm: int | None = Field(default=None, ge=0)
    purchase_price: int | None = Field(default=None, ge=0)

    # Physical attributes
    property_type: PropertyType | None = None
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: int | None = Field(default=None, ge=0)
    floor_area: float | None = Field(default=None, ge=0, description="Square metres")
    floor_area_sqft: float | None = Field(default=None, ge=0)
    description: str | None = None
    available_from: date | None = None
    is_furnished: bool | None = None
    is_student_friendly: bool | None = None
    is_pet_friendly: bool | None = None
    has_garden: bool | None = None
    wifi_included: bool | None = None
    near_tube_station: bool | None = None

    # Media
    images: list[str] | None = None
    floor_plans: list[str] | None = None
    primary_image: str | None = None
    live_listing_url: str | None = None
    listing_agent: ListingAgent | None = None
    listing_match_confidence: float | None = Field(default=None, ge=0, le=1)

    # Provenance
    source_name: str | None = None
    source_url: str | None = None

    # HMO licensing
    hmo_status: HmoStatus | None = None
    licensed_hmo: bool | None = None
    licence_id: str | None = None
    licence_start_date: date | None = None
    licence_end_date: date | None = None
    licence_status: LicenceStatus | None = None
    max_occupants: int | None = Field(default=None, ge=0)
    hmo_licence_reference: str | None = None
    hmo_licence_type: str | None = None
    hmo_council: str | None = None
    hmo_licence_expiry: date | None = None
    hmo_max_occupancy: int | None = Field(default=None, ge=0)
    hmo_sleeping_rooms: int | None = Field(default=None, ge=0)
    hmo_shared_bathrooms: int | None = Field(default=None, ge=0)

    # Valuation
    uprn: str | None = None
    year_built: int | None = None
    property_age: str | None = None
    estimated_value: int | None = Field(default=None, ge=0)
    rental_yield: float | None = None
    area_population: int | None = Field(default=None, ge=0)
    area_avg_rent: int | None = Field(default=None, ge=0)

    # Sold prices
    last_sale_price: int | None = Field(default=None, ge=0)
    last_sale_date: date | None = None
    tenure: str | None = None
    new_build: bool | None = None
    postcode_avg_price: int | None = Field(default=None, ge=0)
    postcode_transactions: int | None = Field(default=None, ge=0)

    # Ownership
    owner_name: str | None = None
    owner_address: str | None = None
    owner_type: OwnerType | None = None
    owner_contact_email: str | None = None
    owner_contact_phone: str | None = None
    owner_enrichment_source: str | None = None
    title_number: str | None = None
    company_name: str | None = None
    company_number: str | None = None
    company_status: str | None = None
    company_incorporation_date: date | None = None
    company_address: str | None = None
    company_sic_codes: list[str] | None = None
    directors: list[Director] | None = None

    # EPC
    epc_rating: EpcRating | None = None
    epc_rating_numeric: int | None = Field(default=None, ge=0, le=100)
    epc_certificate_url: str | None = None
    epc_expiry_date: date | None = None

    # Planning
    article_4_area: bool | None = None
    conservation_area: bool | None = None
    listed_building_grade: ListedBuildingGrade | None = None
    planning_constraints: list[PlanningConstraint] | None = None

    # Broadband (Mbps)
    broadband_basic_down: int | None = None
    broadband_basic_up: int | None = None
    broadband_superfast_down: int | None = None
    broadband_superfast_up: int | None = None
    broadband_ultrafast_down: int | None = None
    broadband_ultrafast_up: int | None = None
    broadband_max_down: int | None = None
    broadband_max_up: int | None = None
    has_fiber: bool | None = None
    has_superfast: bool | None = None

    # Potential HMO analysis
    is_potential_hmo: bool | None = None
    hmo_classification: HmoClassification | None = None
    deal_score: int | None = Field(default=None, ge=0, le=100)
    deal_score_breakdown: dict[str, int] | None = None
    potential_occupants: int | None = None
    estimated_gross_monthly_rent: int | None = None
    estimated_yield_percentage: float | None = None
    yield_band: YieldBand | None = None
    floor_area_band: FloorAreaBand | None = None

    @field_validator("postcode")
    @classmethod
    def clean_postcode(cls, v: str | None) -> str | None:
        """Normalize postcode to uppercase with single space."""
        return normalize_postcode(v)

    @field_validator("epc_rating", mode="before")
    @classmethod
    def upper_epc_rating(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class PropertyPatch(PropertyFields):
    """Partial update produced by an enrichment adapter.

    Only fields passed explicitly are part of the patch: ``PropertyPatch()``
    changes nothing, while ``PropertyPatch(owner_name=None)`` clears a value.
    """

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields, JSON-encoded for the record store."""
        return self.model_dump(mode="json", exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set


class PropertyRecord(PropertyFields):
    """Canonical property entity as held in the record store."""

    id: str | None = None
    external_id: str | None = Field(
        default=None, description="Source-qualified identity, unique across the store"
    )

    # Freshness
    last_synced: datetime | None = None
    last_seen_at: datetime | None = None
    last_ingested_at: datetime | None = None
    is_stale: bool = False
    stale_marked_at: datetime | None = None

    # Enrichment cursors, set by the ingestion manager
    propertydata_enriched_at: datetime | None = None
    geocoded_at: datetime | None = None
    patma_enriched_at: datetime | None = None
    streetdata_enriched_at: datetime | None = None
    land_registry_checked_at: datetime | None = None
    kamma_enriched_at: datetime | None = None
    companies_house_enriched_at: datetime | None = None
    title_last_enriched_at: datetime | None = None
    epc_enriched_at: datetime | None = None
    planning_enriched_at: datetime | None = None
    broadband_last_checked: datetime | None = None
    listing_matched_at: datetime | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def has_consistent_pricing(self) -> bool:
        """Check the listing-type/price invariant.

        Rent listings must carry a monthly price and purchase listings a
        purchase price. Records without a listing type are not checked.
        """
        if self.listing_type is ListingType.RENT:
            return self.price_pcm is not None
        if self.listing_type is ListingType.PURCHASE:
            return self.purchase_price is not None
        return True

    def to_store(self) -> dict[str, Any]:
        """Serialize for the record store, leaving out unknown values."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"id"})


class MarketListing(BaseModel):
    """A live marketplace listing, before it becomes a property record."""

    model_config = ConfigDict(frozen=True)

    listing_id: str
    url: str | None = None
    title: str | None = None
    address: str | None = None
    postcode: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    listing_type: ListingType = ListingType.RENT
    property_type: PropertyType | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    price_pcm: int | None = None
    price: int | None = None
    description: str | None = None
    images: tuple[str, ...] = ()
    floor_plans: tuple[str, ...] = ()
    floor_area_sqft: float | None = None
    is_furnished: bool | None = None
    is_pet_friendly: bool | None = None
    is_student_friendly: bool | None = None
    agent: ListingAgent | None = None

    @field_validator("postcode")
    @classmethod
    def clean_postcode(cls, v: str | None) -> str | None:
        return normalize_postcode(v)

    @property
    def live_price(self) -> int | None:
        return self.price_pcm if self.listing_type is ListingType.RENT else self.price


class SourceQuery(BaseModel):
    """Parameters for a source adapter fetch."""

    model_config = ConfigDict(frozen=True)

    postcode: str | None = None
    area: str | None = None
    radius: float | None = Field(default=None, gt=0)
    page_size: int | None = Field(default=None, ge=1)
    listing_type: ListingType | None = None

    def describe(self) -> str:
        return self.postcode or self.area or "default"


@dataclass
class IngestionResult:
    """Per-source summary of one ingestion run."""

    source: str
    phase: Phase
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        """True when the source wrote something or had nothing to fail on."""
        return not self.errors or (self.created + self.updated) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "phase": int(self.phase),
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }
