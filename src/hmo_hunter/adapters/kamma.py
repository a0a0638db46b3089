"""HMO licensing compliance checks from Kamma.

Kamma answers three questions per property: which licences it holds, which
licensing schemes and Article 4 directions cover it, and its current EPC.
Properties are identified by UPRN when known and by address otherwise.

Kamma is a secondary source for every field it reports. The register,
planning and EPC adapters own those fields, so Kamma only fills gaps.
"""

from datetime import date
from typing import Any, Final
from urllib.parse import quote

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.adapters.epc import parse_efficiency, parse_rating
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import (
    HmoStatus,
    LicenceStatus,
    Phase,
    PlanningConstraint,
    PropertyPatch,
    PropertyRecord,
)

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://kamma.api.kammadata.com"
ENRICHMENT_SOURCE: Final = "kamma"

_STATUSES: Final = {
    "active": LicenceStatus.ACTIVE,
    "valid": LicenceStatus.ACTIVE,
    "current": LicenceStatus.ACTIVE,
    "expired": LicenceStatus.EXPIRED,
    "pending": LicenceStatus.PENDING,
    "applied": LicenceStatus.PENDING,
}
_LIVE_SCHEME_STATUSES: Final = frozenset({"active", "live"})


def property_identifier(record: PropertyRecord) -> str | None:
    """Kamma property id: ``geoplace:uprn:<uprn>`` or ``kamma:address:<words+joined>``."""
    if record.uprn:
        return f"geoplace:uprn:{record.uprn.strip()}"
    if not record.address or not record.postcode:
        return None
    address = record.address.strip().rstrip(",").strip()
    full = f"{address} {record.postcode.strip().upper()}"
    return "kamma:address:" + "+".join(full.lower().split())


def parse_licence_status(value: Any) -> LicenceStatus:
    if not isinstance(value, str):
        return LicenceStatus.NONE
    return _STATUSES.get(value.strip().lower(), LicenceStatus.NONE)


def _date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def licensing_updates(data: dict[str, Any]) -> dict[str, Any]:
    """Licence fields from a licensing check; only the first current licence counts."""
    updates: dict[str, Any] = {}
    if data.get("uprn"):
        updates["uprn"] = str(data["uprn"])

    licences = _dicts(data.get("current_licences"))
    if licences:
        licence = licences[0]
        details = {
            "licence_id": licence.get("licence_number"),
            "licence_start_date": _date(licence.get("start_date")),
            "licence_end_date": _date(licence.get("end_date")),
            "max_occupants": licence.get("max_occupants"),
            "owner_name": licence.get("licence_holder"),
        }
        updates.update({k: v for k, v in details.items() if v is not None})
        if licence.get("status"):
            updates["licence_status"] = parse_licence_status(licence["status"])
    elif data.get("has_licence") is False:
        updates["licence_status"] = LicenceStatus.NONE

    status = updates.get("licence_status")
    if status is not None:
        licensed = status is LicenceStatus.ACTIVE
        updates["licensed_hmo"] = licensed
        updates["hmo_status"] = HmoStatus.LICENSED if licensed else HmoStatus.UNLICENSED
    return updates


def determination_updates(data: dict[str, Any]) -> dict[str, Any]:
    """Article 4 flag and live licensing schemes from a determination check."""
    updates: dict[str, Any] = {}
    directions = _dicts(data.get("article_4_directions"))
    if directions:
        updates["article_4_area"] = any(d.get("applies") is True for d in directions)

    schemes = [
        s
        for s in _dicts(data.get("schemes"))
        if str(s.get("status") or "").lower() in _LIVE_SCHEME_STATUSES
    ]
    if schemes:
        updates["planning_constraints"] = [
            PlanningConstraint(
                type=s.get("scheme_type") or "licensing_scheme",
                description=s.get("scheme_name") or "Unknown scheme",
                authority=s.get("council"),
            )
            for s in schemes
        ]
    return updates


def epc_updates(data: dict[str, Any]) -> dict[str, Any]:
    epc = data.get("current_epc")
    if not isinstance(epc, dict):
        return {}
    details = {
        "epc_rating": parse_rating(epc.get("rating")),
        "epc_rating_numeric": parse_efficiency(epc.get("score")),
        "epc_certificate_url": epc.get("certificate_url") or None,
        "epc_expiry_date": _date(epc.get("expiry_date")),
    }
    return {k: v for k, v in details.items() if v is not None}


class KammaLicensingAdapter(EnrichmentAdapter):
    """Licence, licensing-scheme and EPC checks against the Kamma API."""

    name = "kamma"
    phase = Phase.VALUATION
    cursor_field = "kamma_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        group_id: str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._group_id = group_id
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode")

    def _headers(self) -> dict[str, str]:
        headers = {"X-SSO-API-Key": self._api_key.get_secret_value(), "Accept": "application/json"}
        if self._group_id:
            headers["X-SSO-Service-Key"] = self._group_id
        return headers

    async def _check(self, check: str, identifier: str) -> dict[str, Any]:
        data = await self.request_json(
            "GET",
            f"{self._base_url}/api/properties/{check}/{quote(identifier, safe=':+')}",
            headers=self._headers(),
        )
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning("kamma_unexpected_shape", check=check, type=type(data).__name__)
            return {}
        return data

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        identifier = property_identifier(record)
        if identifier is None:
            return PropertyPatch()

        updates = licensing_updates(await self._check("licensing-check", identifier))
        updates.update(determination_updates(await self._check("determination-check", identifier)))
        if record.epc_rating is None:
            updates.update(epc_updates(await self._check("epc-check", identifier)))

        if not updates:
            return PropertyPatch()
        updates["owner_enrichment_source"] = ENRICHMENT_SOURCE
        logger.debug("kamma_checked", identifier=identifier, fields=sorted(updates))
        return PropertyPatch.model_validate(updates)
