"""Companies House profile and officers for corporate landlords."""

from typing import Any, Final

import httpx
from pydantic import SecretStr, ValidationError

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import Director, Phase, PropertyPatch, PropertyRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.company-information.service.gov.uk"
MAX_DIRECTORS: Final = 10
ENRICHMENT_SOURCE: Final = "companies_house"

_STATUS_MAP: Final = {
    "active": "active",
    "dissolved": "dissolved",
    "liquidation": "liquidation",
    "receivership": "receivership",
    "administration": "administration",
    "voluntary-arrangement": "voluntary-arrangement",
    "converted-closed": "converted-closed",
    "insolvency-proceedings": "insolvency",
    "registered": "active",
    "removed": "dissolved",
}

_ADDRESS_PARTS: Final = (
    "premises",
    "address_line_1",
    "address_line_2",
    "locality",
    "region",
    "postal_code",
    "country",
)


def normalize_company_status(status: str | None) -> str:
    if not status:
        return "unknown"
    key = status.strip().lower()
    return _STATUS_MAP.get(key, key)


def format_registered_office(address: Any) -> str | None:
    if not address:
        return None
    if isinstance(address, str):
        return address
    if not isinstance(address, dict):
        return None
    parts = [str(address[part]) for part in _ADDRESS_PARTS if address.get(part)]
    return ", ".join(parts) or None


def parse_directors(items: Any) -> list[Director]:
    """Active officers only, in the order Companies House lists them."""
    if not isinstance(items, list):
        return []
    directors: list[Director] = []
    for item in items:
        if not isinstance(item, dict) or item.get("resigned_on") or not item.get("name"):
            continue
        try:
            directors.append(
                Director(
                    name=item["name"],
                    role=item.get("officer_role") or "director",
                    appointed_on=item.get("appointed_on"),
                    nationality=item.get("nationality"),
                    occupation=item.get("occupation"),
                )
            )
        except ValidationError:
            logger.debug("officer_unparseable", name=item.get("name"))
        if len(directors) >= MAX_DIRECTORS:
            break
    return directors


class CompaniesHouseAdapter(EnrichmentAdapter):
    """Company profile, registered office and directors by company number."""

    name = "companies-house"
    phase = Phase.OWNERSHIP
    cursor_field = "companies_house_enriched_at"

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
        return super().eligibility().not_null("company_number")

    def _auth(self) -> httpx.BasicAuth:
        # The API key is the username with an empty password
        return httpx.BasicAuth(self._api_key.get_secret_value(), "")

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        number = (record.company_number or "").strip()
        if not number:
            return PropertyPatch()

        profile = await self.request_json(
            "GET", f"{self._base_url}/company/{number}", auth=self._auth()
        )
        if not isinstance(profile, dict):
            logger.info("company_not_found", company_number=number)
            return PropertyPatch()

        officers = await self.request_json(
            "GET", f"{self._base_url}/company/{number}/officers", auth=self._auth()
        )
        directors = parse_directors(officers.get("items") if isinstance(officers, dict) else None)

        updates: dict[str, Any] = {
            "company_name": profile.get("company_name"),
            "company_number": profile.get("company_number") or number,
            "company_status": normalize_company_status(profile.get("company_status")),
            "company_incorporation_date": profile.get("date_of_creation"),
            "directors": directors,
            "owner_enrichment_source": ENRICHMENT_SOURCE,
        }
        sic_codes = profile.get("sic_codes")
        if isinstance(sic_codes, list) and sic_codes:
            updates["company_sic_codes"] = [str(code) for code in sic_codes]

        office = format_registered_office(profile.get("registered_office_address"))
        if office:
            updates["company_address"] = office
            updates["owner_address"] = office

        logger.info(
            "company_enriched",
            company_number=number,
            status=updates["company_status"],
            directors=len(directors),
        )
        return PropertyPatch.model_validate({k: v for k, v in updates.items() if v is not None})
