"""Phased ingestion: orchestration, merge policy and maintenance passes."""

from hmo_hunter.ingestion.maintenance import (
    RepairReport,
    StaleSweep,
    mark_stale,
    match_licensed_hmos,
    repair_listing_types,
)
from hmo_hunter.ingestion.manager import IngestionManager
from hmo_hunter.ingestion.merge import FIELD_OWNERS, PROTECTED_FIELDS, merge_patch

__all__ = [
    "FIELD_OWNERS",
    "IngestionManager",
    "PROTECTED_FIELDS",
    "RepairReport",
    "StaleSweep",
    "mark_stale",
    "match_licensed_hmos",
    "merge_patch",
    "repair_listing_types",
]
