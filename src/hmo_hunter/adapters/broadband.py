"""Fixed broadband coverage from the Ofcom Connected Nations API.

Speeds are in Mbps. Ofcom reports ``-1`` for a tier that is not available at
the address; those become ``None``.
"""

from typing import Any, Final

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.address_match import find_matching_entry
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord
from hmo_hunter.utils.address import compact_postcode

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api-proxy.ofcom.org.uk/broadband/coverage"
UNAVAILABLE: Final = -1

# record field -> Ofcom availability key
SPEED_FIELDS: Final = {
    "broadband_basic_down": "MaxBbPredictedDown",
    "broadband_basic_up": "MaxBbPredictedUp",
    "broadband_superfast_down": "MaxSfbbPredictedDown",
    "broadband_superfast_up": "MaxSfbbPredictedUp",
    "broadband_ultrafast_down": "MaxUfbbPredictedDown",
    "broadband_ultrafast_up": "MaxUfbbPredictedUp",
    "broadband_max_down": "MaxPredictedDown",
    "broadband_max_up": "MaxPredictedUp",
}


def parse_speed(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        speed = float(value)
    except (TypeError, ValueError):
        return None
    if speed == UNAVAILABLE or speed < 0:
        return None
    return round(speed)


def select_availability(
    rows: list[dict[str, Any]], *, uprn: str | None, address: str | None
) -> dict[str, Any]:
    """Row for this property: by UPRN, then by address, then the first row."""
    if uprn:
        for row in rows:
            if str(row.get("UPRN") or "") == uprn.strip():
                return row
    if address:
        found = find_matching_entry(address, rows, key=lambda r: r.get("AddressShortDescription"))
        if found is not None:
            return found[0]
    return rows[0]


class BroadbandAdapter(EnrichmentAdapter):
    """Predicted broadband speeds per tier for a record's postcode."""

    name = "broadband"
    phase = Phase.OWNERSHIP
    cursor_field = "broadband_last_checked"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
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
            f"{self._base_url}/{compact_postcode(record.postcode)}",
            headers={
                "Ocp-Apim-Subscription-Key": self._api_key.get_secret_value(),
                "Accept": "application/json",
            },
        )
        rows = data.get("Availability") if isinstance(data, dict) else None
        rows = [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []
        if not rows:
            logger.debug("broadband_no_coverage", postcode=record.postcode)
            return PropertyPatch()

        row = select_availability(rows, uprn=record.uprn, address=record.address)
        updates: dict[str, Any] = {
            field: parse_speed(row.get(key)) for field, key in SPEED_FIELDS.items()
        }
        updates = {k: v for k, v in updates.items() if v is not None}
        updates["has_fiber"] = (parse_speed(row.get("MaxUfbbPredictedDown")) or 0) > 0
        updates["has_superfast"] = (parse_speed(row.get("MaxSfbbPredictedDown")) or 0) > 0
        if not record.uprn and row.get("UPRN"):
            updates["uprn"] = str(row["UPRN"])
        return PropertyPatch.model_validate(updates)
