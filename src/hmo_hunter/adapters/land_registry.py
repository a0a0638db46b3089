"""Sold prices from HM Land Registry Price Paid Data.

The data is free and needs no key. One SPARQL query per postcode returns the
recent transactions there; the property's own last sale is picked out with
the shared address matcher, and the postcode as a whole gives an average.
Postcode results are cached, since a run usually holds several records in
the same postcode.
"""

from dataclasses import dataclass
from datetime import date
from statistics import mean
from typing import Any, Final

import httpx

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.db.store import RecordFilter
from hmo_hunter.errors import MalformedDataError
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.address_match import find_matching_entry
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord
from hmo_hunter.utils.address import is_full_postcode, normalize_postcode
from hmo_hunter.utils.cache import TTLCache

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://landregistry.data.gov.uk"
DEFAULT_CACHE_TTL_SECONDS: Final = 1800
MAX_TRANSACTIONS: Final = 50

PRICE_PAID_QUERY: Final = """\
PREFIX lrppi: <http://landregistry.data.gov.uk/def/ppi/>
PREFIX lrcommon: <http://landregistry.data.gov.uk/def/common/>
SELECT ?paon ?saon ?street ?amount ?date ?newBuild ?tenure
WHERE {{
  ?transx lrppi:pricePaid ?amount ;
          lrppi:transactionDate ?date ;
          lrppi:propertyAddress ?addr .
  ?addr lrcommon:postcode "{postcode}" .
  OPTIONAL {{ ?addr lrcommon:paon ?paon }}
  OPTIONAL {{ ?addr lrcommon:saon ?saon }}
  OPTIONAL {{ ?addr lrcommon:street ?street }}
  OPTIONAL {{ ?transx lrppi:newBuild ?newBuild }}
  OPTIONAL {{ ?transx lrppi:estateType ?tenure }}
}}
ORDER BY DESC(?date)
LIMIT {limit}
"""


@dataclass(frozen=True)
class SoldPrice:
    """One completed sale in the Price Paid register."""

    price: int
    sold_on: date
    address: str
    tenure: str | None = None
    new_build: bool | None = None


def price_paid_query(postcode: str, limit: int = MAX_TRANSACTIONS) -> str:
    """SPARQL for the most recent sales in one full postcode."""
    if not is_full_postcode(postcode):
        raise ValueError(f"not a full postcode: {postcode!r}")
    return PRICE_PAID_QUERY.format(postcode=normalize_postcode(postcode), limit=limit)


def _value(binding: dict[str, Any], name: str) -> str:
    cell = binding.get(name)
    if isinstance(cell, dict) and cell.get("value") is not None:
        return str(cell["value"]).strip()
    return ""


def parse_tenure(uri: str) -> str | None:
    lowered = uri.lower()
    if "freehold" in lowered:
        return "Freehold"
    if "leasehold" in lowered:
        return "Leasehold"
    return None


def parse_binding(binding: dict[str, Any]) -> SoldPrice | None:
    """Turn one result row into a sale; None if price or date is unusable."""
    try:
        price = int(float(_value(binding, "amount")))
        sold_on = date.fromisoformat(_value(binding, "date")[:10])
    except (ValueError, OverflowError):
        return None
    if price <= 0:
        return None

    # Unit last, so a flat sale never reads as the whole building
    parts = (_value(binding, "paon"), _value(binding, "street"), _value(binding, "saon"))
    address = " ".join(p for p in parts if p)
    new_build = _value(binding, "newBuild").lower()
    return SoldPrice(
        price=price,
        sold_on=sold_on,
        address=address,
        tenure=parse_tenure(_value(binding, "tenure")),
        new_build={"true": True, "false": False}.get(new_build),
    )


def parse_results(data: Any) -> list[SoldPrice]:
    """Sales from a SPARQL JSON response, most recent first.

    Raises:
        MalformedDataError: The response has no ``results.bindings`` list.
    """
    results = data.get("results") if isinstance(data, dict) else None
    bindings = results.get("bindings") if isinstance(results, dict) else None
    if not isinstance(bindings, list):
        raise MalformedDataError("price paid response has no results.bindings list")

    sales = [
        sale
        for binding in bindings
        if isinstance(binding, dict) and (sale := parse_binding(binding)) is not None
    ]
    sales.sort(key=lambda s: s.sold_on, reverse=True)
    return sales


def sold_price_patch(sales: list[SoldPrice], address: str | None) -> PropertyPatch:
    """Postcode averages, plus the property's own latest sale when it is listed."""
    if not sales:
        return PropertyPatch()

    updates: dict[str, Any] = {
        "postcode_avg_price": round(mean(s.price for s in sales)),
        "postcode_transactions": len(sales),
    }
    match = find_matching_entry(address, sales, key=lambda s: s.address)
    if match is not None:
        sale, _ = match
        updates["last_sale_price"] = sale.price
        updates["last_sale_date"] = sale.sold_on
        if sale.tenure is not None:
            updates["tenure"] = sale.tenure
        if sale.new_build is not None:
            updates["new_build"] = sale.new_build
    return PropertyPatch.model_validate(updates)


class LandRegistrySoldPricesAdapter(EnrichmentAdapter):
    """Last sale and postcode average price from Price Paid Data."""

    name = "land-registry"
    phase = Phase.VALUATION
    cursor_field = "land_registry_checked_at"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache: TTLCache[str, list[SoldPrice]] | None = None,
        limit: int = MAX_TRANSACTIONS,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._base_url = base_url.rstrip("/")
        self._cache: TTLCache[str, list[SoldPrice]] = (
            cache if cache is not None else TTLCache(DEFAULT_CACHE_TTL_SECONDS)
        )
        self._limit = limit

    def eligibility(self) -> RecordFilter:
        return super().eligibility().not_null("postcode")

    async def sold_prices(self, postcode: str) -> list[SoldPrice]:
        """Recent sales in ``postcode``, served from the cache when fresh."""
        key = normalize_postcode(postcode) or postcode
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("sold_prices_cache_hit", postcode=key)
            return cached

        data = await self.request_json(
            "GET",
            f"{self._base_url}/landregistry/query",
            params={"query": price_paid_query(key, self._limit)},
            headers={"Accept": "application/sparql-results+json"},
        )
        if data is None:
            return []
        try:
            sales = parse_results(data)
        except MalformedDataError as e:
            logger.warning("land_registry_unexpected_shape", postcode=key, error=str(e))
            return []

        self._cache.set(key, sales)
        logger.debug("sold_prices_fetched", postcode=key, count=len(sales))
        return sales

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        postcode = record.postcode
        if postcode is None or not is_full_postcode(postcode):
            return PropertyPatch()
        sales = await self.sold_prices(postcode)
        return sold_price_patch(sales, record.address)
