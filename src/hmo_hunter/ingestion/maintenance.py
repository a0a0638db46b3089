"""Housekeeping passes over the record store.

These run outside the phase loop: the stale sweep after every ingestion, and
the repair and licensed-HMO cross-reference passes on demand from the CLI.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Final

from hmo_hunter.db.store import RecordFilter, RecordStore
from hmo_hunter.errors import StoreError
from hmo_hunter.logging import get_logger
from hmo_hunter.matching.address_match import match_addresses
from hmo_hunter.models import RECORDS_TABLE, HmoStatus, LicenceStatus, ListingType
from hmo_hunter.utils.address import extract_outcode

logger = get_logger(__name__)

RENTAL_URL_MARKER: Final = "/to-rent/"
MAX_MONTHLY_RENT_PER_BEDROOM: Final = 2500
PLAUSIBLE_MONTHLY_RENT_PER_BEDROOM: Final = (200, 1500)

# Central London outcodes where very high per-bedroom rents are normal
CENTRAL_LONDON_RE: Final = re.compile(
    r"^(W[1-9]|W1[0-4]|WC[12]|SW[1-9]|SW1[0-2]|SE1|EC[1-4]|NW[1-9]|N1|E1)\b",
    re.IGNORECASE,
)


@dataclass
class StaleSweep:
    marked: int = 0
    errors: list[str] = field(default_factory=list)


async def mark_stale(
    store: RecordStore,
    *,
    now: datetime,
    stale_after_days: int = 7,
    table: str = RECORDS_TABLE,
) -> StaleSweep:
    """Flag records not seen by any source for ``stale_after_days``.

    A record that cannot be updated is reported in ``errors`` and the sweep
    moves on. A failing select raises ``StoreError``.
    """
    sweep = StaleSweep()
    cutoff = (now - timedelta(days=stale_after_days)).isoformat()
    rows = await store.select(
        table, RecordFilter().not_null("last_seen_at").lt("last_seen_at", cutoff)
    )
    stamp = now.isoformat()
    for row in rows:
        try:
            await store.update(
                table,
                {"is_stale": True, "stale_marked_at": stamp},
                match_column="id",
                match_value=row["id"],
            )
        except StoreError as e:
            logger.error("stale_mark_failed", record_id=row["id"], error=str(e), exc_info=True)
            sweep.errors.append(f"{row['id']}: {e}")
            continue
        sweep.marked += 1
    if rows:
        logger.info(
            "records_marked_stale", count=sweep.marked, errors=len(sweep.errors), cutoff=cutoff
        )
    return sweep


@dataclass
class RepairReport:
    misclassified: int = 0
    fixed_misclassified: int = 0
    suspicious_rent: int = 0
    fixed_annual_rent: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total_fixed(self) -> int:
        return self.fixed_misclassified + self.fixed_annual_rent


def is_central_london(postcode: str | None) -> bool:
    return bool(postcode and CENTRAL_LONDON_RE.match(postcode.strip()))


def annual_rent_correction(price_pcm: int, bedrooms: int, postcode: str | None) -> int | None:
    """Monthly rent to store if ``price_pcm`` looks like an annual figure, else None."""
    if price_pcm <= 0 or bedrooms <= 0 or is_central_london(postcode):
        return None
    if price_pcm / bedrooms <= MAX_MONTHLY_RENT_PER_BEDROOM:
        return None
    monthly = price_pcm / 12
    low, high = PLAUSIBLE_MONTHLY_RENT_PER_BEDROOM
    if low <= monthly / bedrooms <= high:
        return round(monthly)
    return None


async def repair_listing_types(
    store: RecordStore, *, table: str = RECORDS_TABLE
) -> RepairReport:
    """Fix listings whose type or rent period was recorded wrongly.

    Pass 1 turns "purchase" listings with a rental URL into rent listings.
    Pass 2 divides rents that look annual by twelve. Records fixed in the
    first pass are left alone by the second.
    """
    report = RepairReport()
    fixed_ids: set[str] = set()

    misclassified = await store.select(
        table,
        RecordFilter()
        .eq("listing_type", ListingType.PURCHASE.value)
        .contains("source_url", RENTAL_URL_MARKER),
    )
    report.misclassified = len(misclassified)
    for row in misclassified:
        patch: dict[str, Any] = {
            "listing_type": ListingType.RENT.value,
            "price_pcm": (
                row["price_pcm"] if row.get("price_pcm") is not None else row.get("purchase_price")
            ),
            "purchase_price": None,
        }
        try:
            await store.update(table, patch, match_column="id", match_value=row["id"])
        except StoreError as e:
            report.errors.append(f"{row['id']}: {e}")
            continue
        report.fixed_misclassified += 1
        fixed_ids.add(row["id"])

    rentals = await store.select(
        table,
        RecordFilter()
        .eq("listing_type", ListingType.RENT.value)
        .gt("price_pcm", 0)
        .gt("bedrooms", 0),
    )
    for row in rentals:
        if row["id"] in fixed_ids:
            continue
        price, bedrooms = row.get("price_pcm") or 0, row.get("bedrooms") or 0
        postcode = row.get("postcode")
        if price / bedrooms <= MAX_MONTHLY_RENT_PER_BEDROOM or is_central_london(postcode):
            continue
        report.suspicious_rent += 1
        corrected = annual_rent_correction(price, bedrooms, postcode)
        if corrected is None:
            continue
        try:
            await store.update(
                table, {"price_pcm": corrected}, match_column="id", match_value=row["id"]
            )
        except StoreError as e:
            report.errors.append(f"{row['id']} (annual->monthly): {e}")
            continue
        report.fixed_annual_rent += 1

    logger.info(
        "listing_types_repaired",
        fixed_misclassified=report.fixed_misclassified,
        fixed_annual_rent=report.fixed_annual_rent,
        errors=len(report.errors),
    )
    return report


async def match_licensed_hmos(store: RecordStore, *, table: str = RECORDS_TABLE) -> int:
    """Flag marketplace listings whose address appears on the HMO register.

    Register records and listings are paired within the same outcode and
    matched with the shared address matcher. Returns the number of listings
    newly flagged as licensed.
    """
    licensed = await store.select(
        table, RecordFilter().eq("licensed_hmo", True).not_null("postcode").not_null("address")
    )
    by_outcode: dict[str, list[dict[str, Any]]] = {}
    for row in licensed:
        outcode = extract_outcode(row["postcode"])
        if outcode:
            by_outcode.setdefault(outcode, []).append(row)
    if not by_outcode:
        logger.info("no_licensed_hmos")
        return 0

    listings = await store.select(
        table,
        RecordFilter()
        .not_null("listing_type")
        .ne("licensed_hmo", True)
        .not_null("postcode")
        .not_null("address"),
    )

    matched = 0
    for listing in listings:
        candidates = by_outcode.get(extract_outcode(listing["postcode"]) or "")
        if not candidates:
            continue
        register = next(
            (c for c in candidates if match_addresses(listing["address"], c["address"]).is_match),
            None,
        )
        if register is None:
            continue
        await store.update(
            table,
            {
                "licensed_hmo": True,
                "licence_status": LicenceStatus.ACTIVE.value,
                "hmo_status": HmoStatus.LICENSED.value,
                "hmo_licence_reference": register.get("hmo_licence_reference")
                or register.get("licence_id"),
            },
            match_column="id",
            match_value=listing["id"],
        )
        matched += 1
        logger.debug(
            "listing_matched_to_register", listing_id=listing["id"], register_id=register["id"]
        )

    logger.info(
        "licensed_hmos_matched",
        licensed_outcodes=len(by_outcode),
        listings_checked=len(listings),
        matched=matched,
    )
    return matched
