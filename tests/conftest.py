"""Shared pytest fixtures."""

import gc
import os
import sys
import threading
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import structlog
from hypothesis import HealthCheck, settings

from hmo_hunter.config import Settings
from hmo_hunter.db.store import SqliteRecordStore
from hmo_hunter.models import ListingType, PropertyRecord, PropertyType
from hmo_hunter.utils.throttle import NoThrottle, Throttle

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


@pytest.fixture(autouse=True)
def _reset_structlog_config() -> Any:
    """Undo ``configure_logging`` so later tests don't log to a closed capture stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection. A test that
    forgets ``await store.close()`` would otherwise keep the process alive.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await store.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


@pytest.fixture
async def store() -> AsyncIterator[SqliteRecordStore]:
    """In-memory record store, closed after the test."""
    record_store = SqliteRecordStore(":memory:")
    yield record_store
    await record_store.close()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def no_throttle() -> Callable[[float], Throttle]:
    return lambda _delay: NoThrottle()


@pytest.fixture
def sample_record() -> PropertyRecord:
    """A stored register record with enough data for most enrichers."""
    return PropertyRecord(
        id="rec-1",
        external_id="propertydata-HMO/2024/001",
        title="Licensed HMO - 12 Mare Street, London",
        address="12 Mare Street, London",
        postcode="E8 3RH",
        city="London",
        latitude=51.5465,
        longitude=-0.0553,
        property_type=PropertyType.HMO,
        bedrooms=5,
    )


@pytest.fixture
def make_record() -> Callable[..., PropertyRecord]:
    """Factory for PropertyRecord instances with auto-incrementing external ids."""
    _counter = 0

    def _make(**overrides: Any) -> PropertyRecord:
        nonlocal _counter
        _counter += 1
        defaults: dict[str, Any] = {
            "external_id": f"test-{_counter}",
            "title": f"Test Property {_counter}",
            "address": f"{_counter} Mare Street, London",
            "postcode": "E8 3RH",
            "city": "London",
            "listing_type": ListingType.RENT,
            "price_pcm": 2400,
            "bedrooms": 4,
        }
        defaults.update(overrides)
        return PropertyRecord(**defaults)

    return _make
