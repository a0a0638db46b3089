"""Command-line entry point for the HMO ingestion pipeline."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime

from hmo_hunter.adapters.broadband import BroadbandAdapter
from hmo_hunter.adapters.companies_house import CompaniesHouseAdapter
from hmo_hunter.adapters.epc import EpcAdapter
from hmo_hunter.adapters.geocoder import PostcodeGeocoderAdapter
from hmo_hunter.adapters.kamma import KammaLicensingAdapter
from hmo_hunter.adapters.land_registry import LandRegistrySoldPricesAdapter
from hmo_hunter.adapters.marketplace import MarketplaceListingAdapter
from hmo_hunter.adapters.planning import PlanningAdapter
from hmo_hunter.adapters.potential_hmo import PotentialHmoAnalyzer
from hmo_hunter.adapters.propertydata import (
    PropertyDataHmoRegisterAdapter,
    PropertyDataLicenceAdapter,
)
from hmo_hunter.adapters.title import LandTitleAdapter
from hmo_hunter.adapters.valuation import PatmaValuationAdapter, StreetDataValuationAdapter
from hmo_hunter.adapters.zoopla import ZooplaListingsAdapter
from hmo_hunter.config import Settings
from hmo_hunter.db.store import RecordFilter, RecordStore, SqliteRecordStore
from hmo_hunter.ingestion.maintenance import (
    mark_stale,
    match_licensed_hmos,
    repair_listing_types,
)
from hmo_hunter.ingestion.manager import IngestionManager
from hmo_hunter.logging import configure_logging, get_logger
from hmo_hunter.matching.listing_matcher import ListingMatcher
from hmo_hunter.models import RECORDS_TABLE, IngestionResult, PropertyRecord
from hmo_hunter.utils.cache import TTLCache

logger = get_logger(__name__)


def build_listing_matcher(settings: Settings, zoopla: ZooplaListingsAdapter) -> ListingMatcher:
    return ListingMatcher(
        zoopla,
        cache=TTLCache(settings.listing_cache_ttl_seconds),
        maps_api_key=settings.google_maps_api_key.get_secret_value(),
    )


def build_manager(settings: Settings, store: RecordStore) -> IngestionManager:
    """Create a manager with every known adapter registered in its phase.

    Adapters without credentials are still registered; the manager skips
    them at run time.
    """
    timeout = settings.http_timeout_seconds
    manager = IngestionManager(
        store,
        batch_size=settings.enrichment_batch_size,
        stale_after_days=settings.stale_after_days,
    )

    zoopla = ZooplaListingsAdapter(
        settings.zoopla_api_key,
        base_url=settings.zoopla_base_url,
        areas=settings.get_zoopla_search_areas(),
        page_size=settings.zoopla_page_size,
        timeout=timeout,
        request_delay=settings.request_delay_seconds,
    )

    # Phase 1: core records
    manager.register_phase1_adapter(
        PropertyDataHmoRegisterAdapter(
            settings.propertydata_api_key,
            base_url=settings.propertydata_base_url,
            postcodes=settings.get_register_postcodes(),
            timeout=timeout,
            request_delay=settings.propertydata_delay_seconds,
        )
    )
    manager.register_phase1_adapter(zoopla)

    # Phase 2: licensing, location and valuation
    manager.register_phase2_adapter(
        PropertyDataLicenceAdapter(
            settings.propertydata_api_key,
            base_url=settings.propertydata_base_url,
            timeout=timeout,
            request_delay=settings.propertydata_delay_seconds,
        )
    )
    manager.register_phase2_adapter(PostcodeGeocoderAdapter(timeout=timeout))
    manager.register_phase2_adapter(
        PatmaValuationAdapter(
            settings.patma_api_key,
            base_url=settings.patma_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase2_adapter(
        StreetDataValuationAdapter(
            settings.streetdata_api_key,
            base_url=settings.streetdata_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase2_adapter(
        LandRegistrySoldPricesAdapter(
            base_url=settings.land_registry_base_url,
            cache=TTLCache(settings.sold_prices_cache_ttl_seconds),
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase2_adapter(
        KammaLicensingAdapter(
            settings.kamma_api_key,
            settings.kamma_group_id,
            base_url=settings.kamma_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )

    # Phase 3: ownership, compliance and listing recovery
    manager.register_phase3_adapter(
        CompaniesHouseAdapter(
            settings.companies_house_api_key,
            base_url=settings.companies_house_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase3_adapter(
        LandTitleAdapter(
            settings.searchland_api_key,
            base_url=settings.searchland_base_url,
            timeout=timeout,
            request_delay=settings.title_delay_seconds,
        )
    )
    manager.register_phase3_adapter(
        EpcAdapter(
            settings.epc_email,
            settings.epc_api_key,
            base_url=settings.epc_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase3_adapter(
        PlanningAdapter(
            settings.searchland_api_key,
            base_url=settings.searchland_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase3_adapter(
        BroadbandAdapter(
            settings.ofcom_api_key,
            base_url=settings.ofcom_base_url,
            timeout=timeout,
            request_delay=settings.request_delay_seconds,
        )
    )
    manager.register_phase3_adapter(
        MarketplaceListingAdapter(
            build_listing_matcher(settings, zoopla),
            request_delay=settings.request_delay_seconds,
        )
    )

    # Phase 4: derived analysis
    manager.register_phase4_adapter(PotentialHmoAnalyzer())
    return manager


def _print_results(results: list[IngestionResult]) -> None:
    for result in results:
        status = "ok" if result.succeeded else "FAILED"
        print(
            f"[phase {int(result.phase)}] {result.source:<24} {status:<6} "
            f"total={result.total} created={result.created} updated={result.updated} "
            f"skipped={result.skipped} errors={len(result.errors)}"
        )
        for error in result.errors[:5]:
            print(f"    - {error}")


async def run_ingest(settings: Settings, source: str | None = None) -> bool:
    """Run a full ingestion. Returns False if any adapter failed outright."""
    store = SqliteRecordStore(settings.database_path)
    manager = build_manager(settings, store)
    try:
        known = {a.name for a in manager.adapters}
        if source is not None and source not in known:
            logger.error("unknown_source", source=source, known=sorted(known))
            print(f"Unknown source {source!r}. Known sources: {', '.join(sorted(known))}")
            return False
        results = await manager.run_ingestion(source)
        _print_results(results)
        return all(r.succeeded for r in results)
    finally:
        await manager.close()
        await store.close()


async def run_mark_stale(settings: Settings) -> bool:
    store = SqliteRecordStore(settings.database_path)
    try:
        sweep = await mark_stale(
            store, now=datetime.now(UTC), stale_after_days=settings.stale_after_days
        )
    finally:
        await store.close()
    print(f"Marked {sweep.marked} records stale")
    for error in sweep.errors:
        print(f"    - {error}")
    return not sweep.errors


async def run_repair(settings: Settings) -> bool:
    store = SqliteRecordStore(settings.database_path)
    try:
        report = await repair_listing_types(store)
    finally:
        await store.close()
    print(
        f"Misclassified listings: {report.misclassified} (fixed {report.fixed_misclassified})\n"
        f"Suspicious rents: {report.suspicious_rent} (fixed {report.fixed_annual_rent})\n"
        f"Total fixed: {report.total_fixed}"
    )
    for error in report.errors:
        print(f"    - {error}")
    return not report.errors


async def run_match_hmos(settings: Settings) -> None:
    store = SqliteRecordStore(settings.database_path)
    try:
        matched = await match_licensed_hmos(store)
    finally:
        await store.close()
    print(f"Flagged {matched} listings as licensed HMOs")


async def run_match_listing(
    settings: Settings, address: str, postcode: str, bedrooms: int | None
) -> None:
    zoopla = ZooplaListingsAdapter(
        settings.zoopla_api_key,
        base_url=settings.zoopla_base_url,
        timeout=settings.http_timeout_seconds,
    )
    matcher = build_listing_matcher(settings, zoopla)
    try:
        match = await matcher.find_matching_listing(address, postcode, bedrooms)
    finally:
        await zoopla.close()
    print(
        json.dumps(
            {
                "found": match.found,
                "source": match.source,
                "url": match.direct_url,
                "confidence": match.match_confidence,
                "live_price": match.live_price,
                "images": list(match.images),
            },
            indent=2,
        )
    )


async def run_overlap(settings: Settings, limit: int) -> None:
    store = SqliteRecordStore(settings.database_path)
    zoopla = ZooplaListingsAdapter(
        settings.zoopla_api_key,
        base_url=settings.zoopla_base_url,
        timeout=settings.http_timeout_seconds,
    )
    matcher = build_listing_matcher(settings, zoopla)
    try:
        rows = await store.select(
            RECORDS_TABLE,
            RecordFilter().not_contains("external_id", "zoopla-").limit(limit),
        )
        records = [PropertyRecord.model_validate(row) for row in rows]
        report = await matcher.check_listing_overlap(records)
    finally:
        await zoopla.close()
        await store.close()
    print(json.dumps(report.to_dict(), indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HMO Hunter - phased ingestion and enrichment of UK HMO property data"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit one JSON object per log line (for scheduled runs)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Run every phase against the record store")
    ingest.add_argument(
        "--source",
        default=None,
        help="Only run the adapter with this name (e.g. zoopla, epc)",
    )

    commands.add_parser("mark-stale", help="Flag records not seen recently as stale")
    commands.add_parser(
        "repair-listings", help="Fix misclassified listing types and annual rents"
    )
    commands.add_parser(
        "match-hmos", help="Flag marketplace listings that appear on the HMO register"
    )

    match_listing = commands.add_parser(
        "match-listing", help="Find the live listing for one address"
    )
    match_listing.add_argument("address")
    match_listing.add_argument("postcode")
    match_listing.add_argument("--bedrooms", type=int, default=None)

    overlap = commands.add_parser(
        "overlap", help="Report how many register records have a live listing"
    )
    overlap.add_argument("--limit", type=int, default=50)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    configure_logging(
        json_output=args.json_logs,
        level=logging.DEBUG if args.debug else logging.INFO,
    )

    try:
        settings = Settings()
    except Exception as e:
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from HMO_HUNTER_* environment variables or a .env file.")
        sys.exit(1)

    logger.info("starting_hmo_hunter", command=args.command, database=settings.database_path)

    ok = True
    match args.command:
        case "ingest":
            ok = asyncio.run(run_ingest(settings, args.source))
        case "mark-stale":
            ok = asyncio.run(run_mark_stale(settings))
        case "repair-listings":
            ok = asyncio.run(run_repair(settings))
        case "match-hmos":
            asyncio.run(run_match_hmos(settings))
        case "match-listing":
            asyncio.run(run_match_listing(settings, args.address, args.postcode, args.bedrooms))
        case "overlap":
            asyncio.run(run_overlap(settings, args.limit))

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
