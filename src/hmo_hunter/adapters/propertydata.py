"""PropertyData national HMO register.

The register is used twice: as a Phase 1 source creating licensed-HMO records
for a set of postcodes, and as a Phase 2 enrichment that fuzzy-matches stored
records against the register for their postcode to attach licence details.
"""

import re
from datetime import date, datetime
from typing import Any, Final

import httpx
from pydantic import BaseModel, ConfigDict, SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, Adapter, EnrichmentAdapter, SourceAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.errors import MalformedDataError
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.address_match import find_matching_entry
from hmo_hunter.models import (
    HmoStatus,
    LicenceStatus,
    Phase,
    PropertyPatch,
    PropertyRecord,
    PropertyType,
    SourceQuery,
)
from hmo_hunter.utils.address import normalize_postcode
from hmo_hunter.utils.cache import TTLCache

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.propertydata.co.uk"
DEFAULT_REGISTER_POSTCODES: Final = ("N7 6PA", "E2 9PL", "SE5 8TR", "NW5 2HB", "E8 1EJ")
REGISTER_CACHE_TTL_SECONDS: Final = 1800.0
SOURCE_URL: Final = "https://propertydata.co.uk"

_ORDINAL_RE: Final = re.compile(r"(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)


class RegisterEntry(BaseModel):
    """One licence from the national HMO register, in a source-neutral shape."""

    model_config = ConfigDict(frozen=True)

    reference: str | None = None
    address: str | None = None
    postcode: str | None = None
    council: str | None = None
    licence_type: str | None = None
    licence_status: LicenceStatus = LicenceStatus.ACTIVE
    licence_start: date | None = None
    licence_expiry: date | None = None
    max_occupancy: int | None = None
    sleeping_rooms: int | None = None
    shared_bathrooms: int | None = None
    bedrooms: int | None = None
    uprn: str | None = None
    latitude: float | None = None
    longitude: float | None = None


def parse_licence_date(value: Any) -> date | None:
    """Parse the date formats the register uses.

    Handles "10th February 2027", "24/02/2027" and ISO "2027-02-24".
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()

    if "/" in text:
        try:
            return datetime.strptime(text, "%d/%m/%Y").date()
        except ValueError:
            return None

    cleaned = _ORDINAL_RE.sub(r"\1", text)
    for fmt in ("%d %B %Y", "%d %b %Y"):
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_licence_status(value: Any) -> LicenceStatus:
    """Map free-text register status onto the licence vocabulary (default active)."""
    if not value:
        return LicenceStatus.ACTIVE
    text = str(value).lower()
    if "expir" in text:
        return LicenceStatus.EXPIRED
    if "pend" in text or "applic" in text or "applied" in text:
        return LicenceStatus.PENDING
    if text in {"none", "revoked", "refused", "cancelled"}:
        return LicenceStatus.NONE
    return LicenceStatus.ACTIVE


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_register_entry(raw: dict[str, Any]) -> RegisterEntry:
    reference = _first(raw, "reference", "licence_number", "licence_reference")
    uprn = _first(raw, "uprn")
    return RegisterEntry(
        reference=str(reference) if reference is not None else None,
        address=_first(raw, "address", "property_address"),
        postcode=normalize_postcode(_first(raw, "postcode")),
        council=_first(raw, "council", "local_authority"),
        licence_type=_first(raw, "licence_type"),
        licence_status=parse_licence_status(_first(raw, "status", "licence_status")),
        licence_start=parse_licence_date(_first(raw, "licence_start", "licence_issue_date")),
        licence_expiry=parse_licence_date(
            _first(raw, "licence_expiry", "licence_end", "licence_expiry_date")
        ),
        max_occupancy=_int_or_none(_first(raw, "occupancy", "max_occupants", "maximum_occupancy")),
        sleeping_rooms=_int_or_none(
            _first(raw, "number_of_rooms_providing_sleeping_accommodation")
        ),
        shared_bathrooms=_int_or_none(_first(raw, "number_of_shared_bathrooms")),
        bedrooms=_int_or_none(_first(raw, "bedrooms", "number_of_bedrooms")),
        uprn=str(uprn) if uprn is not None else None,
        latitude=_first(raw, "latitude"),
        longitude=_first(raw, "longitude"),
    )


def extract_register_rows(data: Any) -> list[dict[str, Any]]:
    """Pull the licence rows out of any of the register's response shapes.

    Raises:
        MalformedDataError: The payload matches none of the known shapes.
    """
    if not isinstance(data, dict):
        raise MalformedDataError(f"register payload is {type(data).__name__}, not an object")

    inner = data.get("data")
    if isinstance(inner, dict) and isinstance(inner.get("hmos"), list):
        rows: Any = inner["hmos"]
    elif isinstance(inner, list):
        rows = inner
    elif isinstance(data.get("hmo_licences"), list):
        rows = data["hmo_licences"]
    elif isinstance(data.get("results"), list):
        rows = data["results"]
    elif isinstance(data.get("result"), dict):
        rows = [data["result"]]
    elif isinstance(inner, dict):
        rows = [inner]
    else:
        raise MalformedDataError(f"unrecognised register payload keys: {sorted(data)}")

    return [row for row in rows if isinstance(row, dict)]


async def fetch_register(
    adapter: Adapter, base_url: str, api_key: str, postcode: str
) -> list[RegisterEntry]:
    """Fetch all register entries for one full postcode."""
    data = await adapter.request_json(
        "GET",
        f"{base_url}/national-hmo-register",
        params={"key": api_key, "postcode": postcode},
    )
    if data is None:
        return []
    if isinstance(data, dict) and data.get("status") == "error":
        logger.warning(
            "propertydata_api_error", postcode=postcode, message=data.get("message")
        )
        return []
    try:
        rows = extract_register_rows(data)
    except MalformedDataError as e:
        logger.warning("propertydata_unexpected_shape", postcode=postcode, error=str(e))
        return []
    return [parse_register_entry(row) for row in rows]


class PropertyDataHmoRegisterAdapter(SourceAdapter):
    """Phase 1 source creating one record per register licence."""

    name = "propertydata-register"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        postcodes: list[str] | tuple[str, ...] = DEFAULT_REGISTER_POSTCODES,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 1.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")
        self._postcodes = [p for p in (normalize_postcode(pc) for pc in postcodes) if p]

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def default_queries(self) -> list[SourceQuery]:
        return [SourceQuery(postcode=pc) for pc in self._postcodes]

    async def fetch(self, query: SourceQuery) -> list[PropertyRecord]:
        if not self.is_configured:
            logger.warning("adapter_not_configured", source=self.name)
            return []
        postcode = normalize_postcode(query.postcode)
        if not postcode:
            return []

        entries = await fetch_register(
            self, self._base_url, self._api_key.get_secret_value(), postcode
        )
        records = [self._to_record(entry, postcode) for entry in entries]
        logger.info("propertydata_register_fetched", postcode=postcode, count=len(records))
        return records

    def _to_record(self, entry: RegisterEntry, query_postcode: str) -> PropertyRecord:
        council = entry.council or "local council"
        return PropertyRecord(
            external_id=f"propertydata-{entry.reference}" if entry.reference else None,
            title=f"Licensed HMO - {entry.address}" if entry.address else "Licensed HMO",
            address=entry.address,
            postcode=entry.postcode or query_postcode,
            city=entry.council,
            latitude=entry.latitude,
            longitude=entry.longitude,
            property_type=PropertyType.HMO,
            bedrooms=entry.bedrooms or entry.sleeping_rooms,
            description=(
                f"Licensed HMO property registered with {council}. "
                f"Reference: {entry.reference or 'N/A'}."
            ),
            source_url=SOURCE_URL,
            licence_id=entry.reference,
            licence_start_date=entry.licence_start,
            licence_end_date=entry.licence_expiry,
            licence_status=entry.licence_status,
            max_occupants=entry.max_occupancy,
            hmo_licence_reference=entry.reference,
            hmo_licence_type=entry.licence_type,
            hmo_council=entry.council,
            uprn=entry.uprn,
        )


class PropertyDataLicenceAdapter(EnrichmentAdapter):
    """Attach register licence details to records whose address matches."""

    name = "propertydata-licensing"
    phase = Phase.VALUATION
    cursor_field = "propertydata_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache: TTLCache[str, list[RegisterEntry]] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 1.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")
        self._cache = cache if cache is not None else TTLCache(REGISTER_CACHE_TTL_SECONDS)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode").not_null("address")

    async def _register_for(self, postcode: str) -> list[RegisterEntry]:
        cached = self._cache.get(postcode)
        if cached is not None:
            return cached
        entries = await fetch_register(
            self, self._base_url, self._api_key.get_secret_value(), postcode
        )
        self._cache.set(postcode, entries)
        return entries

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if not record.postcode or not record.address:
            return PropertyPatch()

        entries = await self._register_for(record.postcode)
        found = find_matching_entry(record.address, entries, key=lambda e: e.address)
        if found is None:
            logger.debug("propertydata_no_match", address=record.address, candidates=len(entries))
            return PropertyPatch()

        entry, match = found
        logger.info(
            "propertydata_matched",
            address=record.address,
            reference=entry.reference,
            kind=match.kind.value,
        )
        # The register entry's own status decides; an expired licence is not licensed
        licensed = entry.licence_status is LicenceStatus.ACTIVE
        updates: dict[str, Any] = {
            "licence_status": entry.licence_status,
            "licensed_hmo": licensed,
            "hmo_status": HmoStatus.LICENSED if licensed else HmoStatus.UNLICENSED,
        }
        # Missing register values never clear what is already stored
        details = {
            "hmo_licence_reference": entry.reference,
            "hmo_licence_type": entry.licence_type,
            "hmo_council": entry.council,
            "hmo_licence_expiry": entry.licence_expiry,
            "hmo_max_occupancy": entry.max_occupancy,
            "hmo_sleeping_rooms": entry.sleeping_rooms,
            "hmo_shared_bathrooms": entry.shared_bathrooms,
        }
        updates.update({k: v for k, v in details.items() if v is not None})
        return PropertyPatch(**updates)
