"""Zoopla property listings API.

Serves as a Phase 1 source of live rental and sale listings, and as the
listings search behind the listing matcher.
"""

from typing import Any, Final
from urllib.parse import quote_plus

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, SourceAdapter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import (
    ListingAgent,
    ListingType,
    MarketListing,
    PropertyRecord,
    PropertyType,
    SourceQuery,
)
from hmo_hunter.utils.address import normalize_postcode

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.zoopla.co.uk/api/v1"
SEARCH_BASE_URL: Final = "https://www.zoopla.co.uk"
DEFAULT_RADIUS_MILES: Final = 1.0
DEFAULT_PAGE_SIZE: Final = 100
EXTERNAL_ID_PREFIX: Final = "zoopla-"

_PROPERTY_TYPES: Final[dict[str, PropertyType]] = {
    "detached house": PropertyType.HOUSE,
    "semi-detached house": PropertyType.HOUSE,
    "terraced house": PropertyType.HOUSE,
    "end of terrace house": PropertyType.HOUSE,
    "town house": PropertyType.HOUSE,
    "cottage": PropertyType.HOUSE,
    "bungalow": PropertyType.HOUSE,
    "flat": PropertyType.FLAT,
    "maisonette": PropertyType.FLAT,
    "studio": PropertyType.STUDIO,
}


def map_property_type(value: str | None) -> PropertyType | None:
    if not value:
        return None
    return _PROPERTY_TYPES.get(value.strip().lower())


def extract_images(raw: dict[str, Any]) -> list[str]:
    """All gallery images for a listing, highest usable resolution first."""
    images = [
        img["url"].replace("/354/255/", "/645/430/")
        for img in raw.get("other_image") or []
        if isinstance(img, dict) and img.get("url")
    ]
    if not images:
        images = [url for url in raw.get("original_image") or [] if isinstance(url, str)]
    if not images:
        single = raw.get("image_645_430_url") or raw.get("image_url")
        if single:
            images = [single]
    return images


def _to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_listing(raw: dict[str, Any]) -> MarketListing:
    """Convert one element of the API's ``listing`` array."""
    is_rental = raw.get("listing_status") == "rent"
    displayable = raw.get("displayable_address") or ""
    number = raw.get("property_number")
    address = f"{number} {displayable}".strip() if number else displayable

    postcode = None
    if raw.get("outcode"):
        postcode = normalize_postcode(f"{raw['outcode']} {raw.get('incode') or ''}")

    rent = raw.get("rental_prices") or {}
    price = _to_int(raw.get("price"))

    agent = None
    if raw.get("agent_name"):
        agent = ListingAgent(name=raw["agent_name"], phone=raw.get("agent_phone"))

    floor_plan = raw.get("floor_plan")
    if isinstance(floor_plan, list):
        floor_plans = tuple(fp for fp in floor_plan if isinstance(fp, str))
    else:
        floor_plans = (floor_plan,) if isinstance(floor_plan, str) and floor_plan else ()

    floor_area = raw.get("floor_area")
    floor_area_sqft = _to_float(floor_area.get("value")) if isinstance(floor_area, dict) else None

    def _flag(key: str, *truthy: str) -> bool | None:
        value = raw.get(key)
        return value in truthy if value else None

    return MarketListing(
        listing_id=str(raw["listing_id"]),
        url=raw.get("details_url"),
        title=raw.get("title") or displayable or None,
        address=address or None,
        postcode=postcode,
        city=raw.get("post_town") or raw.get("county"),
        latitude=_to_float(raw.get("latitude")),
        longitude=_to_float(raw.get("longitude")),
        listing_type=ListingType.RENT if is_rental else ListingType.PURCHASE,
        property_type=map_property_type(raw.get("property_type")),
        bedrooms=_to_int(raw.get("num_bedrooms")),
        bathrooms=_to_int(raw.get("num_bathrooms")),
        price_pcm=(_to_int(rent.get("per_month")) or price) if is_rental else None,
        price=price,
        description=raw.get("description") or raw.get("short_description"),
        images=tuple(extract_images(raw)),
        floor_plans=floor_plans,
        floor_area_sqft=floor_area_sqft,
        is_furnished=_flag("furnished_state", "furnished", "part_furnished"),
        is_pet_friendly=_flag("pets_allowed", "Y"),
        is_student_friendly=_flag("students_allowed", "Y"),
        agent=agent,
    )


def listing_to_record(listing: MarketListing) -> PropertyRecord:
    is_rental = listing.listing_type is ListingType.RENT
    return PropertyRecord(
        external_id=f"{EXTERNAL_ID_PREFIX}{listing.listing_id}",
        title=listing.title,
        address=listing.address,
        postcode=listing.postcode,
        city=listing.city,
        latitude=listing.latitude,
        longitude=listing.longitude,
        listing_type=listing.listing_type,
        property_type=listing.property_type,
        bedrooms=listing.bedrooms,
        bathrooms=listing.bathrooms,
        price_pcm=listing.price_pcm if is_rental else None,
        purchase_price=None if is_rental else listing.price,
        description=listing.description,
        images=list(listing.images) or None,
        primary_image=listing.images[0] if listing.images else None,
        floor_plans=list(listing.floor_plans) or None,
        floor_area_sqft=listing.floor_area_sqft,
        is_furnished=listing.is_furnished,
        is_pet_friendly=listing.is_pet_friendly,
        is_student_friendly=listing.is_student_friendly,
        listing_agent=listing.agent,
        source_url=listing.url,
        live_listing_url=listing.url,
    )


class ZooplaListingsAdapter(SourceAdapter):
    """Phase 1 source of live listings, also used for listing matching."""

    name = "zoopla"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        areas: list[str] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")
        self._areas = areas or ["London"]
        self._page_size = page_size

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def default_queries(self) -> list[SourceQuery]:
        return [
            SourceQuery(area=area, listing_type=ListingType.RENT, page_size=self._page_size)
            for area in self._areas
        ]

    async def search_listings(
        self,
        *,
        postcode: str | None = None,
        area: str | None = None,
        radius: float = DEFAULT_RADIUS_MILES,
        page_size: int = DEFAULT_PAGE_SIZE,
        listing_type: ListingType = ListingType.RENT,
    ) -> list[MarketListing]:
        """Search live listings around a postcode or within a named area.

        Returns an empty list when unconfigured. Listings that cannot be
        parsed are logged and dropped.
        """
        if not self.is_configured:
            logger.warning("adapter_not_configured", source=self.name)
            return []

        params: dict[str, str] = {
            "api_key": self._api_key.get_secret_value(),
            "listing_status": "rent" if listing_type is ListingType.RENT else "sale",
            "page_size": str(page_size),
            "radius": str(radius),
        }
        normalized = normalize_postcode(postcode)
        if normalized:
            params["postcode"] = normalized
        else:
            params["area"] = area or "London"

        data = await self.request_json(
            "GET",
            f"{self._base_url}/property_listings.json",
            params=params,
            headers={"Accept": "application/json"},
        )
        raw_listings = data.get("listing") if isinstance(data, dict) else None
        if not isinstance(raw_listings, list):
            logger.info("zoopla_no_listings", postcode=normalized, area=area)
            return []

        listings: list[MarketListing] = []
        for raw in raw_listings:
            if not isinstance(raw, dict) or raw.get("listing_id") is None:
                continue
            try:
                listings.append(parse_listing(raw))
            except ValueError:
                logger.warning(
                    "zoopla_listing_unparseable", listing_id=raw.get("listing_id"), exc_info=True
                )
        return listings

    async def fetch(self, query: SourceQuery) -> list[PropertyRecord]:
        listings = await self.search_listings(
            postcode=query.postcode,
            area=query.area,
            radius=query.radius or DEFAULT_RADIUS_MILES,
            page_size=query.page_size or self._page_size,
            listing_type=query.listing_type or ListingType.RENT,
        )
        logger.info("zoopla_listings_fetched", query=query.describe(), count=len(listings))
        return [listing_to_record(listing) for listing in listings]

    def search_url(self, postcode: str, address: str | None = None) -> str:
        """Public search-results page for a postcode, used when no listing matches."""
        query = normalize_postcode(postcode) or postcode
        return (
            f"{SEARCH_BASE_URL}/to-rent/property/?q={quote_plus(query)}"
            "&radius=0.25&results_sort=newest_listings"
        )
