"""Land Registry title ownership via the Searchland titles API.

Titles are found by geometry rather than address: a small square around the
record's coordinates is searched, a freehold title preferred, and the first
registered proprietor taken as the owner.
"""

from typing import Any, Final

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import OwnerType, Phase, PropertyPatch, PropertyRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.searchland.co.uk/v1"
SEARCH_OFFSET_DEGREES: Final = 0.0005
SEARCH_PAGE_SIZE: Final = 10
ENRICHMENT_SOURCE: Final = "searchland"


def search_polygon(
    latitude: float, longitude: float, offset: float = SEARCH_OFFSET_DEGREES
) -> dict[str, Any]:
    """Closed GeoJSON square centred on a point (lng/lat order)."""
    ring = [
        [longitude - offset, latitude - offset],
        [longitude + offset, latitude - offset],
        [longitude + offset, latitude + offset],
        [longitude - offset, latitude + offset],
        [longitude - offset, latitude - offset],
    ]
    return {"type": "Polygon", "coordinates": [ring]}


def choose_title(titles: list[dict[str, Any]]) -> dict[str, Any] | None:
    if not titles:
        return None
    freeholds = [t for t in titles if t.get("calculated_class_of_title") == "freehold"]
    return (freeholds or titles)[0]


def classify_owner(title: dict[str, Any], proprietor: dict[str, Any]) -> OwnerType:
    ownership = str(title.get("ownership_category") or "").lower()
    proprietorship = str(proprietor.get("proprietorship_category") or "").lower()

    if any(word in ownership for word in ("company", "corporate")) or any(
        word in proprietorship for word in ("company", "limited")
    ):
        return OwnerType.COMPANY
    if "housing association" in ownership:
        return OwnerType.COMPANY
    if any(word in ownership for word in ("government", "council", "local authority")):
        return OwnerType.GOVERNMENT
    if "trust" in ownership:
        return OwnerType.TRUST
    if "private" in ownership:
        return OwnerType.INDIVIDUAL
    if proprietor.get("company_registration_no"):
        return OwnerType.COMPANY
    return OwnerType.UNKNOWN


def format_proprietor_address(address: Any) -> str | None:
    if isinstance(address, str):
        return address or None
    if isinstance(address, list):
        return ", ".join(str(part) for part in address if part) or None
    return None


def extract_owner(title: dict[str, Any]) -> dict[str, Any]:
    """Owner fields from a title detail payload."""
    proprietors = title.get("proprietor")
    proprietor: dict[str, Any] = {}
    if isinstance(proprietors, list) and proprietors and isinstance(proprietors[0], dict):
        proprietor = proprietors[0]

    owner_type = classify_owner(title, proprietor)
    company_number = proprietor.get("company_registration_no") or None
    is_company = owner_type is OwnerType.COMPANY or company_number is not None

    return {
        "title_number": title.get("title_no"),
        "owner_name": proprietor.get("name") or None,
        "owner_address": format_proprietor_address(proprietor.get("address")),
        "owner_type": owner_type,
        "company_name": proprietor.get("name") if is_company else None,
        "company_number": company_number,
        "owner_enrichment_source": ENRICHMENT_SOURCE,
    }


class LandTitleAdapter(EnrichmentAdapter):
    """Registered owner of the title under a record's coordinates."""

    name = "land-titles"
    phase = Phase.OWNERSHIP
    cursor_field = "title_last_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.2,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("latitude").not_null("longitude")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key.get_secret_value()}"}

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if record.latitude is None or record.longitude is None:
            return PropertyPatch()

        found = await self.request_json(
            "POST",
            f"{self._base_url}/titles/search",
            json={
                "geometry": search_polygon(record.latitude, record.longitude),
                "page": 1,
                "perPage": SEARCH_PAGE_SIZE,
            },
            headers=self._headers(),
        )
        titles = found.get("data") if isinstance(found, dict) else None
        candidates = [t for t in titles if isinstance(t, dict)] if isinstance(titles, list) else []
        best = choose_title(candidates)
        if best is None or not best.get("title_no"):
            logger.info("title_not_found", address=record.address)
            return PropertyPatch()

        detail = await self.request_json(
            "GET",
            f"{self._base_url}/titles/get",
            params={"titleNumber": best["title_no"]},
            headers=self._headers(),
        )
        title = detail.get("data") if isinstance(detail, dict) else None
        if not isinstance(title, dict):
            logger.info("title_detail_missing", title_number=best["title_no"])
            return PropertyPatch()

        owner = extract_owner({"title_no": best["title_no"], **title})
        logger.info(
            "title_enriched",
            title_number=owner["title_number"],
            owner_type=owner["owner_type"].value,
        )
        return PropertyPatch.model_validate({k: v for k, v in owner.items() if v is not None})
