"""Postcode geocoding via postcodes.io.

Register records and some listings arrive without coordinates, which the
title search and the listing matcher need. postcodes.io is free and keyless.
"""

from typing import Final

import httpx

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord
from hmo_hunter.utils.address import is_full_postcode, normalize_postcode

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.postcodes.io"


class PostcodeGeocoderAdapter(EnrichmentAdapter):
    """Fill latitude/longitude (and city when missing) from the postcode centroid."""

    name = "postcode-geocoder"
    phase = Phase.VALUATION
    cursor_field = "geocoded_at"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.1,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._base_url = base_url.rstrip("/")

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode").is_null("latitude")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        postcode = normalize_postcode(record.postcode)
        if not postcode or not is_full_postcode(postcode) or record.has_coordinates:
            return PropertyPatch()

        data = await self.request_json("GET", f"{self._base_url}/postcodes/{postcode}")
        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            logger.debug("postcode_not_found", postcode=postcode)
            return PropertyPatch()

        lat = result.get("latitude")
        lon = result.get("longitude")
        if lat is None or lon is None:
            return PropertyPatch()

        updates: dict[str, object] = {"latitude": lat, "longitude": lon}
        district = result.get("admin_district")
        if district and not record.city:
            updates["city"] = district
        return PropertyPatch.model_validate(updates)
