"""Recover photos, live price and agent for records that have none."""

from typing import Any

from hmo_hunter.adapters.base import EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.listing_matcher import ListingMatcher
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord

logger = get_logger(__name__)


class MarketplaceListingAdapter(EnrichmentAdapter):
    """Enrich image-less records from their matching live listing.

    The HTTP work is done by the listing search behind ``matcher``, so this
    adapter owns no client of its own.
    """

    name = "marketplace-listing"
    phase = Phase.OWNERSHIP
    cursor_field = "listing_matched_at"

    def __init__(self, matcher: ListingMatcher, *, request_delay: float | None = 0.5) -> None:
        super().__init__(request_delay=request_delay)
        self._matcher = matcher

    @property
    def is_configured(self) -> bool:
        return self._matcher.is_configured

    def eligibility(self) -> RecordFilter:
        return super().eligibility().is_null("images").not_null("postcode").not_null("address")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not record.postcode or not record.address or record.images:
            return PropertyPatch()

        match = await self._matcher.find_matching_listing(
            record.address,
            record.postcode,
            record.bedrooms,
            record.latitude,
            record.longitude,
        )
        if not match.found:
            return PropertyPatch()

        updates: dict[str, Any] = {
            "live_listing_url": match.direct_url,
            "listing_match_confidence": match.match_confidence,
        }
        if match.images:
            updates["images"] = list(match.images)
            updates["primary_image"] = match.images[0]
        if match.live_price is not None and record.price_pcm is None:
            updates["price_pcm"] = match.live_price
        if match.agent is not None:
            updates["listing_agent"] = match.agent
        logger.info(
            "marketplace_listing_attached",
            record_id=record.id,
            confidence=match.match_confidence,
            images=len(match.images),
        )
        return PropertyPatch.model_validate(updates)
