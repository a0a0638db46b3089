"""Tests for CLI wiring in main.py."""

from pathlib import Path

import pytest

from hmo_hunter.config import Settings
from hmo_hunter.db.store import SqliteRecordStore
from hmo_hunter.main import build_manager, build_parser, main, run_ingest, run_repair
from hmo_hunter.models import Phase


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(database_path=str(tmp_path / "hmo.db"), request_delay_seconds=0)


@pytest.fixture
def db_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("HMO_HUNTER_DATABASE_PATH", str(db_path))
    return db_path


class TestParser:
    def test_ingest_with_source(self) -> None:
        args = build_parser().parse_args(["--debug", "ingest", "--source", "epc"])
        assert args.command == "ingest"
        assert args.source == "epc"
        assert args.debug is True
        assert args.json_logs is False

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_match_listing_arguments(self) -> None:
        args = build_parser().parse_args(
            ["match-listing", "12 Mare Street", "E8 3RH", "--bedrooms", "5"]
        )
        assert (args.address, args.postcode, args.bedrooms) == ("12 Mare Street", "E8 3RH", 5)

    def test_overlap_default_limit(self) -> None:
        assert build_parser().parse_args(["overlap"]).limit == 50


class TestBuildManager:
    async def test_registers_every_adapter_in_its_phase(self, test_settings: Settings) -> None:
        store = SqliteRecordStore(":memory:")
        manager = build_manager(test_settings, store)
        try:
            phases = {a.name: a.phase for a in manager.adapters}
            assert phases == {
                "propertydata-register": Phase.CORE,
                "zoopla": Phase.CORE,
                "propertydata-licensing": Phase.VALUATION,
                "postcode-geocoder": Phase.VALUATION,
                "patma": Phase.VALUATION,
                "streetdata": Phase.VALUATION,
                "land-registry": Phase.VALUATION,
                "kamma": Phase.VALUATION,
                "companies-house": Phase.OWNERSHIP,
                "land-titles": Phase.OWNERSHIP,
                "epc": Phase.OWNERSHIP,
                "planning": Phase.OWNERSHIP,
                "broadband": Phase.OWNERSHIP,
                "marketplace-listing": Phase.OWNERSHIP,
                "potential-hmo": Phase.DERIVED,
            }
            configured = {a.name for a in manager.adapters if a.is_configured}
            assert configured == {"postcode-geocoder", "land-registry", "potential-hmo"}
        finally:
            await manager.close()
            await store.close()


class TestRunCommands:
    async def test_unknown_source_rejected(
        self, test_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert await run_ingest(test_settings, "rightmove") is False
        assert "Unknown source 'rightmove'" in capsys.readouterr().out

    async def test_ingest_without_credentials_succeeds(
        self, test_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert await run_ingest(test_settings) is True
        out = capsys.readouterr().out
        assert "[phase 1] propertydata-register" in out
        assert "[phase 4] potential-hmo" in out

    async def test_repair_on_empty_store(
        self, test_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert await run_repair(test_settings) is True
        assert "Total fixed: 0" in capsys.readouterr().out


class TestMain:
    def test_unknown_source_exits_nonzero(self, db_env: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ingest", "--source", "nope"])
        assert exc_info.value.code == 1

    def test_invalid_settings_exit(
        self, db_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("HMO_HUNTER_STALE_AFTER_DAYS", "0")
        with pytest.raises(SystemExit) as exc_info:
            main(["mark-stale"])
        assert exc_info.value.code == 1
        assert "Failed to load settings" in capsys.readouterr().out

    def test_mark_stale_runs(self, db_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["mark-stale"])
        assert "Marked 0 records stale" in capsys.readouterr().out
        assert db_env.exists()
