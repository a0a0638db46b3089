"""Field-ownership merge of enrichment patches into stored records.

Several adapters can report the same attribute. Each attribute has at most one
authoritative adapter, which may overwrite it; every other adapter may only
fill it while it is empty. Bookkeeping fields are never touched by a patch.
"""

from typing import Any, Final

from pydantic_core import to_jsonable_python

from hmo_hunter.models import PropertyPatch

FRESHNESS_FIELDS: Final = frozenset(
    {"last_synced", "last_seen_at", "last_ingested_at", "is_stale", "stale_marked_at"}
)

CURSOR_FIELDS: Final = frozenset(
    {
        "propertydata_enriched_at",
        "geocoded_at",
        "patma_enriched_at",
        "streetdata_enriched_at",
        "land_registry_checked_at",
        "kamma_enriched_at",
        "companies_house_enriched_at",
        "title_last_enriched_at",
        "epc_enriched_at",
        "planning_enriched_at",
        "broadband_last_checked",
        "listing_matched_at",
    }
)

PROTECTED_FIELDS: Final = frozenset({"id", "external_id"}) | FRESHNESS_FIELDS | CURSOR_FIELDS


def _owned(source: str, *fields: str) -> dict[str, str]:
    return dict.fromkeys(fields, source)


FIELD_OWNERS: Final[dict[str, str]] = {
    **_owned(
        "propertydata-licensing",
        "hmo_status",
        "licensed_hmo",
        "licence_status",
        "hmo_licence_reference",
        "hmo_licence_type",
        "hmo_council",
        "hmo_licence_expiry",
        "hmo_max_occupancy",
        "hmo_sleeping_rooms",
        "hmo_shared_bathrooms",
    ),
    **_owned("patma", "rental_yield", "area_avg_rent", "area_population"),
    **_owned("streetdata", "estimated_value", "year_built", "property_age"),
    **_owned(
        "land-registry",
        "last_sale_price",
        "last_sale_date",
        "tenure",
        "new_build",
        "postcode_avg_price",
        "postcode_transactions",
    ),
    **_owned(
        "land-titles",
        "title_number",
        "owner_name",
        "owner_address",
        "owner_type",
        "company_number",
        "owner_enrichment_source",
    ),
    **_owned(
        "companies-house",
        "company_name",
        "company_status",
        "company_incorporation_date",
        "company_address",
        "company_sic_codes",
        "directors",
    ),
    **_owned(
        "epc",
        "epc_rating",
        "epc_rating_numeric",
        "epc_certificate_url",
        "epc_expiry_date",
        "floor_area",
        "floor_area_sqft",
    ),
    **_owned(
        "planning",
        "article_4_area",
        "conservation_area",
        "listed_building_grade",
        "planning_constraints",
    ),
    **_owned(
        "broadband",
        "broadband_basic_down",
        "broadband_basic_up",
        "broadband_superfast_down",
        "broadband_superfast_up",
        "broadband_ultrafast_down",
        "broadband_ultrafast_up",
        "broadband_max_down",
        "broadband_max_up",
        "has_fiber",
        "has_superfast",
    ),
    **_owned(
        "marketplace-listing",
        "live_listing_url",
        "listing_match_confidence",
        "listing_agent",
        "images",
        "primary_image",
    ),
    **_owned(
        "potential-hmo",
        "is_potential_hmo",
        "hmo_classification",
        "deal_score",
        "deal_score_breakdown",
        "potential_occupants",
        "estimated_gross_monthly_rent",
        "estimated_yield_percentage",
        "yield_band",
        "floor_area_band",
    ),
}


def is_empty_value(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_patch(
    current: dict[str, Any], patch: PropertyPatch | dict[str, Any], source: str
) -> dict[str, Any]:
    """Return the subset of ``patch`` that should be written over ``current``.

    ``current`` is the stored (JSON-encoded) record. The result holds only
    fields whose value actually changes; fields the patch does not mention
    are never part of it.
    """
    changes = patch.changes() if isinstance(patch, PropertyPatch) else to_jsonable_python(patch)

    merged: dict[str, Any] = {}
    for field, value in changes.items():
        if field in PROTECTED_FIELDS:
            continue
        existing = current.get(field)
        if existing == value:
            continue
        if FIELD_OWNERS.get(field) == source:
            merged[field] = value
        elif is_empty_value(existing) and not is_empty_value(value):
            merged[field] = value
    return merged
