"""Adapter contracts for the ingestion pipeline.

Two variants sit behind one base class:

- ``SourceAdapter`` fetches complete records for Phase 1.
- ``EnrichmentAdapter`` turns an existing record into a partial patch for
  Phases 2-4.

Adapters do network I/O only. Persistence, throttling between requests and
error accounting belong to the ingestion manager.
"""

from abc import ABC, abstractmethod
from typing import Any, Final

import httpx

from hmo_hunter.db.store import RecordFilter
from hmo_hunter.errors import UpstreamError
from hmo_hunter.logging import get_logger
from hmo_hunter.models import Phase, PropertyPatch, PropertyRecord, SourceQuery

logger = get_logger(__name__)

DEFAULT_TIMEOUT: Final = 15.0


class Adapter(ABC):
    """Behaviour shared by every adapter: identity, configuration and HTTP."""

    name: str
    phase: Phase
    request_delay: float = 0.0

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        if request_delay is not None:
            self.request_delay = request_delay

    @property
    def is_configured(self) -> bool:
        """Whether the adapter has the credentials it needs."""
        return True

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any | None:
        """Issue a request and decode the JSON body.

        Returns None when the upstream has no record (404) or answers with a
        body that is not JSON. Raises UpstreamError for transport failures and
        any other non-success status.
        """
        client = self._get_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(self.name, f"{method} {url} failed: {e!r}") from e

        if resp.status_code == 404:
            logger.debug("upstream_not_found", source=self.name, url=url)
            return None
        if not resp.is_success:
            raise UpstreamError(
                self.name,
                f"HTTP {resp.status_code} from {url}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError:
            logger.warning("upstream_malformed_body", source=self.name, url=url)
            return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, phase={int(self.phase)})"


class SourceAdapter(Adapter):
    """Phase 1 adapter producing complete records."""

    phase = Phase.CORE

    @abstractmethod
    async def fetch(self, query: SourceQuery) -> list[PropertyRecord]:
        """Fetch records for one query.

        Args:
            query: Geography and listing filters. Fields the source does not
                support are ignored.

        Returns:
            Records carrying a source-qualified ``external_id``.
        """
        ...

    def default_queries(self) -> list[SourceQuery]:
        """Queries issued when the adapter runs as part of an ingestion."""
        return [SourceQuery()]


class EnrichmentAdapter(Adapter):
    """Phase 2-4 adapter producing partial patches for stored records."""

    phase = Phase.VALUATION

    # Timestamp field set on a record once this adapter has processed it
    cursor_field: str | None = None

    @abstractmethod
    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        """Compute a patch for ``record``.

        Returns an empty patch when the adapter is unconfigured, when the
        record lacks the inputs it needs, or when the upstream has no match.
        """
        ...

    def eligibility(self) -> RecordFilter:
        """Filter selecting records this adapter should process.

        Stale records are always excluded. Records that already carry this
        adapter's cursor are skipped.
        """
        record_filter = RecordFilter()
        if self.cursor_field is not None:
            record_filter = record_filter.is_null(self.cursor_field)
        return record_filter

    def _unconfigured(self) -> PropertyPatch:
        logger.debug("adapter_not_configured", source=self.name)
        return PropertyPatch()
