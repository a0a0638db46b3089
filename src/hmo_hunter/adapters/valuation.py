"""Area valuation and rental market data.

Two providers answer the same question, what a postcode is worth and what it
rents for, at different granularity: PaTMa reports area rental prices and
StreetData reports postcode-level price estimates plus building age.
"""

from datetime import UTC, datetime
from typing import Any, Final

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord
from hmo_hunter.utils.address import compact_postcode

logger = get_logger(__name__)

PATMA_BASE_URL: Final = "https://app.patma.co.uk/api"
STREETDATA_BASE_URL: Final = "https://api.street.co.uk"

# (max age in years, label), checked in order
PROPERTY_AGE_BANDS: Final = (
    (10, "New Build"),
    (30, "Modern"),
    (50, "Post-War"),
    (100, "Victorian/Edwardian"),
)
OLDEST_AGE_LABEL: Final = "Period Property"


def property_age_label(year_built: int | None, *, current_year: int | None = None) -> str | None:
    """Bucket a construction year into a descriptive age band."""
    if not year_built:
        return None
    year = current_year if current_year is not None else datetime.now(UTC).year
    age = year - year_built
    for limit, label in PROPERTY_AGE_BANDS:
        if age < limit:
            return label
    return OLDEST_AGE_LABEL


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return round(float(value))
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _patch_from(values: dict[str, Any]) -> PropertyPatch:
    return PropertyPatch.model_validate({k: v for k, v in values.items() if v is not None})


class PatmaValuationAdapter(EnrichmentAdapter):
    """Area rental prices and yields from PaTMa Prospector."""

    name = "patma"
    phase = Phase.VALUATION
    cursor_field = "patma_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = PATMA_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if not record.postcode:
            return PropertyPatch()

        data = await self.request_json(
            "GET",
            f"{self._base_url}/prospector/v1/rental-prices/",
            params={"postcode": compact_postcode(record.postcode)},
            headers={"Authorization": f"Token {self._api_key.get_secret_value()}"},
        )
        if not isinstance(data, dict):
            return PropertyPatch()
        if data.get("status") == "error":
            logger.warning("patma_api_error", postcode=record.postcode, message=data.get("message"))
            return PropertyPatch()

        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        return _patch_from(
            {
                "rental_yield": _as_float(_pick(payload, "rental_yield", "yield")),
                "area_population": _as_int(_pick(payload, "area_population", "population")),
                "area_avg_rent": _as_int(_pick(payload, "area_average_rent", "average_rent")),
                "estimated_value": _as_int(_pick(payload, "estimated_value", "property_value")),
            }
        )


class StreetDataValuationAdapter(EnrichmentAdapter):
    """Postcode price estimates and build year from StreetData."""

    name = "streetdata"
    phase = Phase.VALUATION
    cursor_field = "streetdata_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = STREETDATA_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if not record.postcode:
            return PropertyPatch()

        data = await self.request_json(
            "GET",
            f"{self._base_url}/properties/areas/postcodes",
            params={"postcode": compact_postcode(record.postcode), "tier": "core"},
            headers={"x-api-key": self._api_key.get_secret_value()},
        )
        if not isinstance(data, dict):
            return PropertyPatch()

        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        attributes = payload.get("attributes")
        if isinstance(attributes, dict):
            payload = {**payload, **attributes}

        year_built = _as_int(payload.get("year_built"))
        age = payload.get("property_age") or property_age_label(year_built)
        return _patch_from(
            {
                "estimated_value": _as_int(_pick(payload, "average_price", "estimate", "price")),
                "rental_yield": _as_float(_pick(payload, "rental_yield", "yield")),
                "area_avg_rent": _as_int(_pick(payload, "average_rent", "rental_estimate")),
                "year_built": year_built,
                "property_age": age,
            }
        )
