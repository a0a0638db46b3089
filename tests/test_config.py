"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from hmo_hunter.config import Settings


class TestDefaults:
    def test_api_keys_default_to_empty(self) -> None:
        s = Settings()
        assert s.propertydata_api_key.get_secret_value() == ""
        assert s.zoopla_api_key.get_secret_value() == ""
        assert s.epc_api_key.get_secret_value() == ""

    def test_pipeline_defaults(self) -> None:
        s = Settings()
        assert s.enrichment_batch_size == 100
        assert s.stale_after_days == 7
        assert s.propertydata_delay_seconds == 1.5

    def test_data_dir(self) -> None:
        s = Settings(database_path="/tmp/hmo/records.db")
        assert s.data_dir == "/tmp/hmo"


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HMO_HUNTER_ZOOPLA_API_KEY", "zk")
        monkeypatch.setenv("HMO_HUNTER_STALE_AFTER_DAYS", "14")
        s = Settings()
        assert s.zoopla_api_key.get_secret_value() == "zk"
        assert s.stale_after_days == 14

    def test_secret_not_in_repr(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HMO_HUNTER_PATMA_API_KEY", "very-secret")
        assert "very-secret" not in repr(Settings())

    def test_rejects_zero_batch_size(self) -> None:
        with pytest.raises(ValidationError):
            Settings(enrichment_batch_size=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValidationError):
            Settings(request_delay_seconds=-1)


class TestGetRegisterPostcodes:
    def test_default_postcodes(self) -> None:
        postcodes = Settings().get_register_postcodes()
        assert "N7 6PA" in postcodes
        assert len(postcodes) == 5

    def test_custom_postcodes_are_upper_cased(self) -> None:
        s = Settings(register_postcodes=" e8 1ej , n7 6pa ")
        assert s.get_register_postcodes() == ["E8 1EJ", "N7 6PA"]

    def test_empty_string(self) -> None:
        assert Settings(register_postcodes="").get_register_postcodes() == []

    def test_trailing_comma_ignored(self) -> None:
        assert Settings(register_postcodes="E8 1EJ,").get_register_postcodes() == ["E8 1EJ"]


class TestGetZooplaSearchAreas:
    def test_default(self) -> None:
        assert Settings().get_zoopla_search_areas() == ["London"]

    def test_keeps_case(self) -> None:
        s = Settings(zoopla_search_areas="Manchester, Leeds")
        assert s.get_zoopla_search_areas() == ["Manchester", "Leeds"]
