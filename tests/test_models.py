"""Tests for Pydantic models."""

from datetime import UTC, date, datetime

import pytest
from pydantic import ValidationError

from hmo_hunter.models import (
    Director,
    EpcRating,
    IngestionResult,
    ListingType,
    MarketListing,
    Phase,
    PropertyPatch,
    PropertyRecord,
    SourceQuery,
)


class TestPropertyRecord:
    def test_postcode_normalization(self) -> None:
        record = PropertyRecord(postcode="e8  3rh")
        assert record.postcode == "E8 3RH"

    def test_postcode_none_allowed(self) -> None:
        assert PropertyRecord(postcode=None).postcode is None

    def test_epc_rating_upper_cased(self) -> None:
        assert PropertyRecord(epc_rating=" c ").epc_rating is EpcRating.C

    def test_invalid_epc_rating_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PropertyRecord(epc_rating="Z")

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PropertyRecord(price_pcm=-1)

    def test_latitude_range_enforced(self) -> None:
        with pytest.raises(ValidationError):
            PropertyRecord(latitude=91.0)

    def test_frozen(self, sample_record: PropertyRecord) -> None:
        with pytest.raises(ValidationError):
            sample_record.bedrooms = 3  # type: ignore[misc]

    def test_unknown_fields_ignored(self) -> None:
        record = PropertyRecord.model_validate({"address": "1 High St", "legacy_column": 5})
        assert record.address == "1 High St"

    def test_has_coordinates(self, sample_record: PropertyRecord) -> None:
        assert sample_record.has_coordinates
        assert not PropertyRecord(latitude=51.5).has_coordinates

    @pytest.mark.parametrize(
        ("listing_type", "price_pcm", "purchase_price", "expected"),
        [
            (ListingType.RENT, 1500, None, True),
            (ListingType.RENT, None, 250000, False),
            (ListingType.PURCHASE, None, 250000, True),
            (ListingType.PURCHASE, 1500, None, False),
            (None, None, None, True),
        ],
    )
    def test_consistent_pricing(
        self,
        listing_type: ListingType | None,
        price_pcm: int | None,
        purchase_price: int | None,
        expected: bool,
    ) -> None:
        record = PropertyRecord(
            listing_type=listing_type, price_pcm=price_pcm, purchase_price=purchase_price
        )
        assert record.has_consistent_pricing() is expected

    def test_to_store_drops_none_and_id(self, sample_record: PropertyRecord) -> None:
        stored = sample_record.to_store()
        assert "id" not in stored
        assert "owner_name" not in stored
        assert stored["postcode"] == "E8 3RH"
        assert stored["property_type"] == "HMO"
        assert stored["is_stale"] is False

    def test_reads_json_encoded_store_row(self) -> None:
        row = {
            "id": "abc",
            "external_id": "epc-1",
            "last_seen_at": "2026-03-01T09:00:00+00:00",
            "directors": [{"name": "Jane Smith", "appointed_on": "2019-05-01"}],
            "licence_end_date": "2027-02-24",
        }
        record = PropertyRecord.model_validate(row)
        assert record.last_seen_at == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        assert record.directors == [Director(name="Jane Smith", appointed_on=date(2019, 5, 1))]
        assert record.licence_end_date == date(2027, 2, 24)


class TestPropertyPatch:
    def test_empty_patch(self) -> None:
        patch = PropertyPatch()
        assert patch.is_empty()
        assert patch.changes() == {}

    def test_only_explicit_fields_are_changes(self) -> None:
        patch = PropertyPatch(epc_rating="B", epc_rating_numeric=84)
        assert patch.changes() == {"epc_rating": "B", "epc_rating_numeric": 84}

    def test_explicit_none_is_a_change(self) -> None:
        patch = PropertyPatch(owner_name=None)
        assert not patch.is_empty()
        assert patch.changes() == {"owner_name": None}

    def test_changes_are_json_encoded(self) -> None:
        patch = PropertyPatch(epc_expiry_date=date(2030, 1, 31), directors=[Director(name="A")])
        changes = patch.changes()
        assert changes["epc_expiry_date"] == "2030-01-31"
        assert changes["directors"][0]["name"] == "A"

    def test_model_validate_keeps_fields_set(self) -> None:
        patch = PropertyPatch.model_validate({"has_fiber": True})
        assert patch.model_fields_set == {"has_fiber"}


class TestMarketListing:
    def test_live_price_for_rent(self) -> None:
        listing = MarketListing(listing_id="1", price_pcm=2000, price=460)
        assert listing.live_price == 2000

    def test_live_price_for_sale(self) -> None:
        listing = MarketListing(listing_id="1", listing_type=ListingType.PURCHASE, price=350000)
        assert listing.live_price == 350000

    def test_postcode_normalized(self) -> None:
        assert MarketListing(listing_id="1", postcode="n76pa").postcode == "N7 6PA"


class TestSourceQuery:
    def test_describe_prefers_postcode(self) -> None:
        assert SourceQuery(postcode="E8 1EJ", area="London").describe() == "E8 1EJ"

    def test_describe_falls_back(self) -> None:
        assert SourceQuery(area="Leeds").describe() == "Leeds"
        assert SourceQuery().describe() == "default"

    def test_radius_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            SourceQuery(radius=0)


class TestIngestionResult:
    def test_succeeded_without_errors(self) -> None:
        assert IngestionResult(source="x", phase=Phase.CORE).succeeded

    def test_errors_with_writes_still_succeed(self) -> None:
        result = IngestionResult(source="x", phase=Phase.CORE, created=2, errors=["boom"])
        assert result.succeeded

    def test_errors_without_writes_fail(self) -> None:
        result = IngestionResult(source="x", phase=Phase.OWNERSHIP, errors=["boom"])
        assert not result.succeeded

    def test_to_dict(self) -> None:
        ts = datetime(2026, 3, 2, tzinfo=UTC)
        result = IngestionResult(source="epc", phase=Phase.OWNERSHIP, updated=3, timestamp=ts)
        data = result.to_dict()
        assert data["phase"] == 3
        assert data["updated"] == 3
        assert data["timestamp"] == "2026-03-02T00:00:00+00:00"
