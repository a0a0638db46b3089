"""Link stored properties to live marketplace listings.

Register records carry an address but no photos, price or agent. The matcher
searches live listings around the postcode, scores each candidate against
the property and, when one clears the threshold, returns its URL, photos,
price and agent. When nothing matches, the caller still gets a usable
search-results URL.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final, Protocol

from hmo_hunter.errors import HmoHunterError
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.scoring import MATCH_THRESHOLD, rank_listings
from hmo_hunter.models import ListingAgent, ListingType, MarketListing, PropertyRecord
from hmo_hunter.utils.address import normalize_postcode
from hmo_hunter.utils.cache import TTLCache
from hmo_hunter.utils.throttle import ThrottleFactory, fixed_delay_throttle

logger = get_logger(__name__)

SEARCH_RADIUS_MILES: Final = 0.25
SEARCH_PAGE_SIZE: Final = 50
CACHE_TTL_SECONDS: Final = 1800.0
BATCH_DELAY_SECONDS: Final = 0.2
FALLBACK_SOURCE: Final = "fallback"
PLACEHOLDER_IMAGE: Final = "/placeholder.jpg"
STREETVIEW_URL: Final = "https://maps.googleapis.com/maps/api/streetview"


class ListingSearch(Protocol):
    """A marketplace that can be searched for live listings around a postcode."""

    name: str

    @property
    def is_configured(self) -> bool: ...

    async def search_listings(
        self,
        *,
        postcode: str | None = None,
        area: str | None = None,
        radius: float = ...,
        page_size: int = ...,
        listing_type: ListingType = ...,
    ) -> list[MarketListing]: ...

    def search_url(self, postcode: str, address: str | None = None) -> str: ...


@dataclass(frozen=True)
class ListingMatch:
    found: bool
    source: str
    direct_url: str
    images: tuple[str, ...] = ()
    live_price: int | None = None
    agent: ListingAgent | None = None
    match_confidence: float = 0.0


@dataclass(frozen=True)
class BookingUrl:
    url: str
    is_direct: bool
    source: str


@dataclass(frozen=True)
class PropertyImage:
    url: str
    source: str  # "listing", "streetview" or "placeholder"


@dataclass(frozen=True)
class _Subject:
    """The property being matched, in the shape the scorer expects."""

    address: str | None
    latitude: float | None = None
    longitude: float | None = None
    bedrooms: int | None = None


@dataclass
class OverlapResult:
    record_id: str | None
    address: str | None
    postcode: str | None
    matched: bool
    best_score: int = 0
    reason: str | None = None
    listing_url: str | None = None


@dataclass
class OverlapReport:
    """How many register records also appear as live marketplace listings."""

    results: list[OverlapResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def matched(self) -> int:
        return sum(1 for r in self.results if r.matched)

    @property
    def not_matched(self) -> int:
        return self.total - self.matched

    @property
    def match_rate(self) -> float:
        """Percentage of checked records with a matching listing."""
        if not self.results:
            return 0.0
        return round(self.matched / self.total * 100, 1)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "matched": self.matched,
            "not_matched": self.not_matched,
            "match_rate": self.match_rate,
            "results": [vars(r) for r in self.results],
        }


class ListingMatcher:
    """Find the live listing for a property, with a search-page fallback."""

    def __init__(
        self,
        search: ListingSearch,
        *,
        cache: TTLCache[str, list[MarketListing]] | None = None,
        throttle_factory: ThrottleFactory = fixed_delay_throttle,
        request_delay: float = BATCH_DELAY_SECONDS,
        maps_api_key: str = "",
        threshold: int = MATCH_THRESHOLD,
    ) -> None:
        self._search = search
        self._cache: TTLCache[str, list[MarketListing]] = (
            cache if cache is not None else TTLCache(CACHE_TTL_SECONDS)
        )
        self._throttle_factory = throttle_factory
        self._request_delay = request_delay
        self._maps_api_key = maps_api_key
        self._threshold = threshold

    @property
    def source(self) -> str:
        return self._search.name

    @property
    def is_configured(self) -> bool:
        return self._search.is_configured

    async def _listings_near(self, postcode: str) -> list[MarketListing]:
        cached = self._cache.get(postcode)
        if cached is not None:
            return cached
        listings = await self._search.search_listings(
            postcode=postcode,
            radius=SEARCH_RADIUS_MILES,
            page_size=SEARCH_PAGE_SIZE,
            listing_type=ListingType.RENT,
        )
        self._cache.set(postcode, listings)
        return listings

    def _fallback(self, postcode: str, address: str | None) -> ListingMatch:
        return ListingMatch(
            found=False,
            source=FALLBACK_SOURCE,
            direct_url=self._search.search_url(postcode, address),
        )

    async def find_matching_listing(
        self,
        address: str | None,
        postcode: str,
        bedrooms: int | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> ListingMatch:
        """Best live listing for a property, or a search-results fallback.

        Upstream failures are logged and answered with the fallback; they
        never propagate to the caller.
        """
        normalized = normalize_postcode(postcode) or postcode
        if not self._search.is_configured:
            return self._fallback(normalized, address)

        try:
            listings = await self._listings_near(normalized)
        except HmoHunterError:
            logger.warning("listing_search_failed", postcode=normalized, exc_info=True)
            return self._fallback(normalized, address)

        subject = _Subject(address, latitude, longitude, bedrooms)
        best = rank_listings(subject, listings)
        if best is None or not best[1].is_match(self._threshold):
            logger.debug(
                "listing_not_matched",
                address=address,
                candidates=len(listings),
                best_score=best[1].total if best else 0,
            )
            return self._fallback(normalized, address)

        listing, score = best
        logger.info(
            "listing_matched",
            address=address,
            listing_id=listing.listing_id,
            score=score.to_dict(),
        )
        return ListingMatch(
            found=True,
            source=self.source,
            direct_url=listing.url or self._search.search_url(normalized, address),
            images=listing.images,
            live_price=listing.live_price,
            agent=listing.agent,
            match_confidence=score.confidence,
        )

    async def find_matching_listings_batch(
        self, properties: Iterable[PropertyRecord]
    ) -> dict[str, ListingMatch]:
        """Match many properties, grouped by postcode so each area is searched once.

        Properties without an id or postcode are left out of the result.
        """
        by_postcode: dict[str, list[tuple[str, PropertyRecord]]] = {}
        for prop in properties:
            if prop.id and prop.postcode:
                by_postcode.setdefault(prop.postcode, []).append((prop.id, prop))

        throttle = self._throttle_factory(self._request_delay)
        results: dict[str, ListingMatch] = {}
        for postcode, group in by_postcode.items():
            await throttle.wait()
            for record_id, prop in group:
                results[record_id] = await self.find_matching_listing(
                    prop.address, postcode, prop.bedrooms, prop.latitude, prop.longitude
                )
        return results

    async def get_booking_url(
        self, address: str | None, postcode: str, bedrooms: int | None = None
    ) -> BookingUrl:
        match = await self.find_matching_listing(address, postcode, bedrooms)
        return BookingUrl(url=match.direct_url, is_direct=match.found, source=match.source)

    async def get_best_property_image(
        self,
        address: str | None,
        postcode: str,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> PropertyImage:
        """Listing photo, else a street-level image, else the placeholder."""
        match = await self.find_matching_listing(address, postcode, None, latitude, longitude)
        if match.images:
            return PropertyImage(url=match.images[0], source="listing")
        if latitude is not None and longitude is not None and self._maps_api_key:
            url = (
                f"{STREETVIEW_URL}?size=600x400&location={latitude},{longitude}"
                f"&key={self._maps_api_key}"
            )
            return PropertyImage(url=url, source="streetview")
        return PropertyImage(url=PLACEHOLDER_IMAGE, source="placeholder")

    async def check_listing_overlap(self, records: Iterable[PropertyRecord]) -> OverlapReport:
        """Check which records have a live listing, using the same scorer.

        Each record triggers a fresh search; the cache is bypassed so the
        report reflects the marketplace as it is now.
        """
        report = OverlapReport()
        throttle = self._throttle_factory(self._request_delay)

        for record in records:
            result = OverlapResult(
                record_id=record.id,
                address=record.address,
                postcode=record.postcode,
                matched=False,
            )
            report.results.append(result)
            if not record.postcode:
                result.reason = "No postcode"
                continue

            await throttle.wait()
            try:
                listings = await self._search.search_listings(
                    postcode=record.postcode,
                    radius=SEARCH_RADIUS_MILES,
                    page_size=SEARCH_PAGE_SIZE,
                    listing_type=ListingType.RENT,
                )
            except HmoHunterError as e:
                logger.warning("overlap_search_failed", postcode=record.postcode, error=str(e))
                result.reason = "API error"
                continue

            if not listings:
                result.reason = f"No {self.source} listings in area"
                continue

            best = rank_listings(record, listings)
            result.best_score = best[1].total if best else 0
            if best is not None and best[1].is_match(self._threshold):
                result.matched = True
                result.listing_url = best[0].url
            else:
                result.reason = f"Best score: {result.best_score}"

        logger.info(
            "listing_overlap_checked",
            total=report.total,
            matched=report.matched,
            match_rate=report.match_rate,
        )
        return report
