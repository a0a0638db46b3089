"""Energy Performance Certificates from the Open Data Communities register."""

from datetime import date
from typing import Any, Final

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.errors import MalformedDataError
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.address_match import SIMILARITY_THRESHOLD, address_similarity
from hmo_hunter.models import EpcRating, Phase, PropertyPatch, PropertyRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://epc.opendatacommunities.org/api/v1"
CERTIFICATE_URL: Final = "https://find-energy-certificate.service.gov.uk/energy-certificate"
SEARCH_SIZE: Final = 25
CERTIFICATE_VALIDITY_YEARS: Final = 10
SQFT_PER_SQM: Final = 10.764


def best_certificate_row(rows: list[dict[str, Any]], address: str | None) -> dict[str, Any]:
    """Row whose address best resembles ``address``; the first row otherwise."""
    if len(rows) == 1 or not address:
        return rows[0]
    best, best_score = rows[0], 0.0
    for row in rows:
        score = address_similarity(address, row.get("address"))
        if score > best_score:
            best, best_score = row, score
    return best if best_score > SIMILARITY_THRESHOLD else rows[0]


def parse_rating(value: Any) -> EpcRating | None:
    if not isinstance(value, str):
        return None
    try:
        return EpcRating(value.strip().upper())
    except ValueError:
        return None


def parse_efficiency(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = round(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        score = int(value.strip())
    else:
        return None
    return score if 0 <= score <= 100 else None


def add_years(start: date, years: int) -> date:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return start.replace(year=start.year + years, day=28)


def certificate_expiry(row: dict[str, Any]) -> date | None:
    for key in ("expiry-date", "lodgement-date"):
        raw = row.get(key)
        if not raw:
            continue
        try:
            parsed = date.fromisoformat(str(raw)[:10])
        except ValueError:
            continue
        return parsed if key == "expiry-date" else add_years(parsed, CERTIFICATE_VALIDITY_YEARS)
    return None


def certificate_patch(row: dict[str, Any]) -> PropertyPatch:
    """Build the EPC patch for one certificate row.

    Raises:
        MalformedDataError: The row carries no valid A-G rating.
    """
    rating = parse_rating(row.get("current-energy-rating"))
    if rating is None:
        raise MalformedDataError(f"invalid energy rating {row.get('current-energy-rating')!r}")

    updates: dict[str, Any] = {"epc_rating": rating}
    numeric = parse_efficiency(row.get("current-energy-efficiency"))
    if numeric is not None:
        updates["epc_rating_numeric"] = numeric
    certificate = row.get("lmk-key") or row.get("certificate-hash")
    if certificate:
        updates["epc_certificate_url"] = f"{CERTIFICATE_URL}/{certificate}"
    expiry = certificate_expiry(row)
    if expiry is not None:
        updates["epc_expiry_date"] = expiry

    try:
        floor_area = float(row.get("total-floor-area") or 0)
    except (TypeError, ValueError):
        floor_area = 0.0
    if floor_area > 0:
        updates["floor_area"] = floor_area
        updates["floor_area_sqft"] = round(floor_area * SQFT_PER_SQM)

    return PropertyPatch.model_validate(updates)


class EpcAdapter(EnrichmentAdapter):
    """Current energy rating, score, certificate link and floor area by postcode."""

    name = "epc"
    phase = Phase.OWNERSHIP
    cursor_field = "epc_enriched_at"

    def __init__(
        self,
        email: str = "",
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._email = email
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._email and self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if not record.postcode:
            return PropertyPatch()

        data = await self.request_json(
            "GET",
            f"{self._base_url}/domestic/search",
            params={"postcode": record.postcode, "size": str(SEARCH_SIZE)},
            headers={"Accept": "application/json"},
            auth=httpx.BasicAuth(self._email, self._api_key.get_secret_value()),
        )
        rows = data.get("rows") if isinstance(data, dict) else None
        if not isinstance(rows, list) or not rows:
            return PropertyPatch()
        rows = [row for row in rows if isinstance(row, dict)]
        if not rows:
            return PropertyPatch()

        try:
            return certificate_patch(best_certificate_row(rows, record.address))
        except MalformedDataError as e:
            logger.info("epc_invalid_certificate", postcode=record.postcode, error=str(e))
            return PropertyPatch()
