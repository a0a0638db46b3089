"""Phased ingestion orchestrator.

A run walks four phases in order. Phase 1 adapters fetch complete records and
upsert them by ``external_id``; Phases 2-4 select stored records each adapter
is eligible for and merge the adapter's patches back. Adapters within a phase
run concurrently; the records of one adapter are processed sequentially
behind that adapter's throttle.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Final

from pydantic import ValidationError

from hmo_hunter.adapters.base import Adapter, EnrichmentAdapter, SourceAdapter
from hmo_hunter.db.store import RecordFilter, RecordStore
from hmo_hunter.ingestion.maintenance import mark_stale
from hmo_hunter.ingestion.merge import CURSOR_FIELDS, FRESHNESS_FIELDS, merge_patch
from hmo_hunter.logging import get_logger
from hmo_hunter.models import (
    RECORDS_TABLE,
    HmoStatus,
    IngestionResult,
    LicenceStatus,
    Phase,
    PropertyRecord,
    SourceQuery,
)
from hmo_hunter.utils.throttle import ThrottleFactory, fixed_delay_throttle

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE: Final = 100
DEFAULT_STALE_AFTER_DAYS: Final = 7

# Result name for the post-run stale sweep; reported only when it fails
STALE_SWEEP_SOURCE: Final = "stale-sweep"

# Fields that do not count as content when deciding whether a record changed
_BOOKKEEPING_FIELDS: Final = frozenset({"id", "external_id"}) | FRESHNESS_FIELDS | CURSOR_FIELDS


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def apply_licence_status(record: PropertyRecord) -> PropertyRecord:
    """Derive ``hmo_status``/``licensed_hmo`` from a supplied licence status."""
    if record.licence_status is None:
        return record
    licensed = record.licence_status is LicenceStatus.ACTIVE
    return record.model_copy(
        update={
            "licensed_hmo": licensed,
            "hmo_status": HmoStatus.LICENSED if licensed else HmoStatus.UNLICENSED,
        }
    )


class IngestionManager:
    """Registers adapters per phase and runs them against a record store."""

    def __init__(
        self,
        store: RecordStore,
        *,
        table: str = RECORDS_TABLE,
        throttle_factory: ThrottleFactory = fixed_delay_throttle,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._table = table
        self._throttle_factory = throttle_factory
        self._batch_size = batch_size
        self._stale_after_days = stale_after_days
        self._clock = clock
        self._sources: list[SourceAdapter] = []
        self._enrichers: dict[Phase, list[EnrichmentAdapter]] = {
            Phase.VALUATION: [],
            Phase.OWNERSHIP: [],
            Phase.DERIVED: [],
        }

    # Registration

    def register_phase1_adapter(self, adapter: SourceAdapter) -> None:
        if not isinstance(adapter, SourceAdapter):
            raise TypeError(f"Phase 1 requires a SourceAdapter, got {type(adapter).__name__}")
        self._check_unique(adapter, self._sources)
        self._sources.append(adapter)

    def register_phase2_adapter(self, adapter: EnrichmentAdapter) -> None:
        self._register_enricher(adapter, Phase.VALUATION)

    def register_phase3_adapter(self, adapter: EnrichmentAdapter) -> None:
        self._register_enricher(adapter, Phase.OWNERSHIP)

    def register_phase4_adapter(self, adapter: EnrichmentAdapter) -> None:
        self._register_enricher(adapter, Phase.DERIVED)

    def _register_enricher(self, adapter: EnrichmentAdapter, phase: Phase) -> None:
        if not isinstance(adapter, EnrichmentAdapter):
            raise TypeError(
                f"Phase {int(phase)} requires an EnrichmentAdapter, got {type(adapter).__name__}"
            )
        if adapter.phase is not phase:
            raise ValueError(
                f"{adapter.name} belongs to phase {int(adapter.phase)}, not phase {int(phase)}"
            )
        self._check_unique(adapter, self._enrichers[phase])
        self._enrichers[phase].append(adapter)

    @staticmethod
    def _check_unique(adapter: Adapter, registered: list[Any]) -> None:
        if any(existing.name == adapter.name for existing in registered):
            raise ValueError(f"Adapter {adapter.name!r} is already registered")

    @property
    def adapters(self) -> list[Adapter]:
        """Every registered adapter in phase order."""
        ordered: list[Adapter] = list(self._sources)
        for phase in (Phase.VALUATION, Phase.OWNERSHIP, Phase.DERIVED):
            ordered.extend(self._enrichers[phase])
        return ordered

    async def close(self) -> None:
        """Close every adapter, carrying on past any that fail to close."""
        for adapter in self.adapters:
            try:
                await adapter.close()
            except Exception as e:
                logger.error(
                    "adapter_close_failed", source=adapter.name, error=str(e), exc_info=True
                )

    # Running

    async def run_ingestion(self, source_name: str | None = None) -> list[IngestionResult]:
        """Run all phases in order and return one result per adapter run.

        ``source_name`` restricts every phase to adapters with that name. The
        stale sweep runs afterwards either way; if it fails, a
        ``stale-sweep`` result carrying the errors is appended.
        """
        started = time.monotonic()
        logger.info("ingestion_started", source=source_name)
        results: list[IngestionResult] = []

        sources = [a for a in self._sources if source_name in (None, a.name)]
        if sources:
            results.extend(await asyncio.gather(*(self._run_source(a) for a in sources)))

        for phase, enrichers in self._enrichers.items():
            selected = [a for a in enrichers if source_name in (None, a.name)]
            if not selected:
                continue
            logger.info("phase_started", phase=int(phase), adapters=[a.name for a in selected])
            results.extend(await asyncio.gather(*(self._run_enrichment(a) for a in selected)))

        sweep = await self._run_stale_sweep()
        if sweep.errors:
            results.append(sweep)

        logger.info(
            "ingestion_complete",
            adapters=len(results),
            created=sum(r.created for r in results),
            updated=sum(r.updated for r in results),
            errors=sum(len(r.errors) for r in results),
            marked_stale=sweep.updated,
            duration_ms=_elapsed_ms(started),
        )
        return results

    async def _run_stale_sweep(self) -> IngestionResult:
        started = time.monotonic()
        result = IngestionResult(
            source=STALE_SWEEP_SOURCE, phase=Phase.DERIVED, timestamp=self._clock()
        )
        try:
            sweep = await mark_stale(
                self._store,
                now=self._clock(),
                stale_after_days=self._stale_after_days,
                table=self._table,
            )
        except Exception as e:
            logger.error("stale_sweep_failed", error=str(e), exc_info=True)
            result.errors.append(f"stale sweep: {e}")
            return result

        result.updated = sweep.marked
        result.errors.extend(sweep.errors)
        result.duration_ms = _elapsed_ms(started)
        return result

    # Phase 1

    async def _run_source(self, adapter: SourceAdapter) -> IngestionResult:
        started = time.monotonic()
        result = IngestionResult(source=adapter.name, phase=Phase.CORE, timestamp=self._clock())
        if not adapter.is_configured:
            logger.warning("adapter_not_configured", source=adapter.name, phase=1)
            return result

        throttle = self._throttle_factory(adapter.request_delay)
        for query in adapter.default_queries():
            await throttle.wait()
            try:
                records = await adapter.fetch(query)
            except Exception as e:
                logger.error(
                    "source_query_failed",
                    source=adapter.name,
                    query=query.describe(),
                    error=str(e),
                    exc_info=True,
                )
                result.errors.append(f"{query.describe()}: {e}")
                continue

            for record in records:
                result.total += 1
                await self._ingest_record(adapter, query, record, result)

        result.duration_ms = _elapsed_ms(started)
        logger.info("source_complete", **result.to_dict())
        return result

    async def _ingest_record(
        self,
        adapter: SourceAdapter,
        query: SourceQuery,
        record: PropertyRecord,
        result: IngestionResult,
    ) -> None:
        if not record.external_id:
            result.skipped += 1
            logger.debug("record_without_external_id", source=adapter.name, address=record.address)
            return

        try:
            record = apply_licence_status(record)
            if record.source_name is None:
                record = record.model_copy(update={"source_name": adapter.name})
            now = self._clock().isoformat()
            freshness: dict[str, Any] = {
                "last_synced": now,
                "last_seen_at": now,
                "is_stale": False,
                "stale_marked_at": None,
            }

            existing_rows = await self._store.select(
                self._table, RecordFilter().eq("external_id", record.external_id).with_stale()
            )
            content = {
                k: v for k, v in record.to_store().items() if k not in _BOOKKEEPING_FIELDS
            }

            if existing_rows:
                existing = existing_rows[0]
                if all(existing.get(k) == v for k, v in content.items()):
                    await self._store.update(
                        self._table, freshness, match_column="id", match_value=existing["id"]
                    )
                    result.skipped += 1
                    return
                await self._store.upsert(
                    self._table,
                    {"external_id": record.external_id, **content, **freshness},
                )
                result.updated += 1
            else:
                await self._store.upsert(
                    self._table,
                    {
                        "external_id": record.external_id,
                        **content,
                        **freshness,
                        "last_ingested_at": now,
                    },
                )
                result.created += 1
        except Exception as e:
            logger.error(
                "record_ingest_failed",
                source=adapter.name,
                query=query.describe(),
                external_id=record.external_id,
                error=str(e),
                exc_info=True,
            )
            result.errors.append(f"{record.external_id}: {e}")

    # Phases 2-4

    async def _run_enrichment(self, adapter: EnrichmentAdapter) -> IngestionResult:
        started = time.monotonic()
        result = IngestionResult(source=adapter.name, phase=adapter.phase, timestamp=self._clock())

        try:
            rows = await self._store.select(
                self._table, adapter.eligibility().limit(self._batch_size)
            )
        except Exception as e:
            logger.error("eligibility_query_failed", source=adapter.name, exc_info=True)
            result.errors.append(f"select: {e}")
            return result

        result.total = len(rows)
        if not adapter.is_configured:
            logger.warning("adapter_not_configured", source=adapter.name, eligible=len(rows))
            result.skipped = len(rows)
            return result

        throttle = self._throttle_factory(adapter.request_delay)
        for row in rows:
            await throttle.wait()
            await self._enrich_record(adapter, row, result)

        result.duration_ms = _elapsed_ms(started)
        logger.info("enrichment_complete", **result.to_dict())
        return result

    async def _enrich_record(
        self, adapter: EnrichmentAdapter, row: dict[str, Any], result: IngestionResult
    ) -> None:
        record_id = row["id"]
        try:
            record = PropertyRecord.model_validate(row)
            patch = await adapter.enrich(record)

            # Re-read: another adapter in this phase may have written meanwhile
            current = await self._store.select(
                self._table, RecordFilter().eq("id", record_id).with_stale()
            )
            changes = merge_patch(current[0] if current else row, patch, adapter.name)

            write: dict[str, Any] = dict(changes)
            if adapter.cursor_field is not None:
                write[adapter.cursor_field] = self._clock().isoformat()
            if write:
                await self._store.update(
                    self._table, write, match_column="id", match_value=record_id
                )

            if changes:
                result.updated += 1
                logger.debug(
                    "record_enriched",
                    source=adapter.name,
                    record_id=record_id,
                    fields=sorted(changes),
                )
            else:
                result.skipped += 1
        except ValidationError as e:
            logger.warning(
                "enrichment_invalid_data", source=adapter.name, record_id=record_id, error=str(e)
            )
            result.errors.append(f"{record_id}: invalid data: {e.error_count()} errors")
        except Exception as e:
            logger.error(
                "record_enrich_failed",
                source=adapter.name,
                record_id=record_id,
                error=str(e),
                exc_info=True,
            )
            result.errors.append(f"{record_id}: {e}")
