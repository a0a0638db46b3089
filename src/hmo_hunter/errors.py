"""Exception hierarchy for the ingestion pipeline.

Adapter and store failures are raised as subclasses of ``HmoHunterError`` so
the ingestion manager can record them against the source that produced them
instead of aborting the run.
"""


class HmoHunterError(Exception):
    """Base class for all pipeline errors."""


class UpstreamError(HmoHunterError):
    """An external API was unreachable or answered with a non-success status."""

    def __init__(self, source: str, message: str, *, status_code: int | None = None) -> None:
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}")


class MalformedDataError(HmoHunterError):
    """An upstream payload could not be interpreted."""


class StoreError(HmoHunterError):
    """The record store rejected a read or write."""
