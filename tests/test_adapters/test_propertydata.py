"""Tests for the PropertyData HMO register source and licence enrichment."""

import re
from collections.abc import AsyncIterator
from datetime import date

import pytest
from pytest_httpx import HTTPXMock

from hmo_hunter.adapters.propertydata import (
    PropertyDataHmoRegisterAdapter,
    PropertyDataLicenceAdapter,
    extract_register_rows,
    parse_licence_date,
    parse_licence_status,
    parse_register_entry,
)
from hmo_hunter.errors import MalformedDataError, UpstreamError
from hmo_hunter.ingestion.merge import merge_patch
from hmo_hunter.models import (
    HmoStatus,
    LicenceStatus,
    PropertyRecord,
    PropertyType,
    SourceQuery,
)

REGISTER_URL = re.compile(r"https://api\.propertydata\.co\.uk/national-hmo-register\?")

REGISTER_RESPONSE = {
    "status": "success",
    "data": {
        "hmos": [
            {
                "reference": "HMO/2024/001",
                "address": "12 Mare Street, London",
                "postcode": "e83rh",
                "council": "Hackney",
                "licence_type": "Mandatory",
                "licence_expiry": "10th February 2027",
                "occupancy": "6",
                "number_of_rooms_providing_sleeping_accommodation": 5,
                "number_of_shared_bathrooms": 2,
                "uprn": 100021234567,
            },
            {
                "reference": "HMO/2024/002",
                "address": "14 Mare Street, London",
                "postcode": "E8 3RH",
                "council": "Hackney",
                "status": "Expired",
                "licence_expiry": "24/02/2023",
            },
        ]
    },
}


@pytest.fixture
async def register() -> AsyncIterator[PropertyDataHmoRegisterAdapter]:
    adapter = PropertyDataHmoRegisterAdapter("pd-key", postcodes=["e8 3rh", "n76pa"])
    yield adapter
    await adapter.close()


@pytest.fixture
async def licensing() -> AsyncIterator[PropertyDataLicenceAdapter]:
    adapter = PropertyDataLicenceAdapter("pd-key")
    yield adapter
    await adapter.close()


class TestParsing:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("10th February 2027", date(2027, 2, 10)),
            ("1st Mar 2026", date(2026, 3, 1)),
            ("24/02/2027", date(2027, 2, 24)),
            ("2027-02-24", date(2027, 2, 24)),
            ("2027-02-24T00:00:00Z", date(2027, 2, 24)),
            ("31/02/2027", None),
            ("soon", None),
            (None, None),
            (20270224, None),
        ],
    )
    def test_parse_licence_date(self, value: object, expected: date | None) -> None:
        assert parse_licence_date(value) == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, LicenceStatus.ACTIVE),
            ("Licensed", LicenceStatus.ACTIVE),
            ("EXPIRED", LicenceStatus.EXPIRED),
            ("Application pending", LicenceStatus.PENDING),
            ("revoked", LicenceStatus.NONE),
        ],
    )
    def test_parse_licence_status(self, value: str | None, expected: LicenceStatus) -> None:
        assert parse_licence_status(value) is expected

    def test_parse_register_entry(self) -> None:
        entry = parse_register_entry(REGISTER_RESPONSE["data"]["hmos"][0])  # type: ignore[index]
        assert entry.reference == "HMO/2024/001"
        assert entry.postcode == "E8 3RH"
        assert entry.max_occupancy == 6
        assert entry.sleeping_rooms == 5
        assert entry.licence_expiry == date(2027, 2, 10)
        assert entry.uprn == "100021234567"

    def test_parse_entry_alternate_keys(self) -> None:
        entry = parse_register_entry(
            {"licence_number": 42, "property_address": "1 High St", "local_authority": "Leeds"}
        )
        assert entry.reference == "42"
        assert entry.address == "1 High St"
        assert entry.council == "Leeds"

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"hmos": [{"reference": "A"}]}},
            {"data": [{"reference": "A"}]},
            {"hmo_licences": [{"reference": "A"}]},
            {"results": [{"reference": "A"}]},
            {"result": {"reference": "A"}},
            {"data": {"reference": "A"}},
        ],
    )
    def test_extract_rows_from_every_shape(self, payload: dict[str, object]) -> None:
        assert extract_register_rows(payload) == [{"reference": "A"}]

    def test_extract_rows_unknown_shape(self) -> None:
        with pytest.raises(MalformedDataError, match="unexpected"):
            extract_register_rows({"unexpected": 1})
        with pytest.raises(MalformedDataError):
            extract_register_rows(["not", "a", "dict"])


class TestRegisterSource:
    def test_default_queries_are_normalized_postcodes(
        self, register: PropertyDataHmoRegisterAdapter
    ) -> None:
        assert [q.postcode for q in register.default_queries()] == ["E8 3RH", "N7 6PA"]

    async def test_fetch_creates_records(
        self, register: PropertyDataHmoRegisterAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json=REGISTER_RESPONSE)

        records = await register.fetch(SourceQuery(postcode="E8 3RH"))

        assert len(records) == 2
        first = records[0]
        assert first.external_id == "propertydata-HMO/2024/001"
        assert first.property_type is PropertyType.HMO
        assert first.title == "Licensed HMO - 12 Mare Street, London"
        assert first.licence_status is LicenceStatus.ACTIVE
        assert first.hmo_council == "Hackney"
        assert first.max_occupants == 6
        assert first.bedrooms == 5
        assert "Hackney" in (first.description or "")
        assert records[1].licence_status is LicenceStatus.EXPIRED

        request = httpx_mock.get_requests()[0]
        assert request.url.params["postcode"] == "E8 3RH"
        assert request.url.params["key"] == "pd-key"

    async def test_api_error_status_returns_empty(
        self, register: PropertyDataHmoRegisterAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=REGISTER_URL, json={"status": "error", "message": "Quota exceeded"}
        )
        assert await register.fetch(SourceQuery(postcode="E8 3RH")) == []

    async def test_unrecognised_payload_returns_empty(
        self, register: PropertyDataHmoRegisterAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json={"status": "success", "count": 0})
        assert await register.fetch(SourceQuery(postcode="E8 3RH")) == []

    async def test_http_error_raises(
        self, register: PropertyDataHmoRegisterAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, status_code=500)
        with pytest.raises(UpstreamError) as exc_info:
            await register.fetch(SourceQuery(postcode="E8 3RH"))
        assert exc_info.value.status_code == 500

    async def test_unconfigured_makes_no_request(self, httpx_mock: HTTPXMock) -> None:
        adapter = PropertyDataHmoRegisterAdapter("")
        assert not adapter.is_configured
        assert await adapter.fetch(SourceQuery(postcode="E8 3RH")) == []
        assert httpx_mock.get_requests() == []

    async def test_missing_postcode(self, register: PropertyDataHmoRegisterAdapter) -> None:
        assert await register.fetch(SourceQuery(area="London")) == []


class TestLicenceEnrichment:
    def test_eligibility_needs_postcode_and_address(
        self, licensing: PropertyDataLicenceAdapter
    ) -> None:
        fields = {(c.field, c.op.value) for c in licensing.eligibility().conditions}
        assert fields == {
            ("propertydata_enriched_at", "is_null"),
            ("postcode", "not_null"),
            ("address", "not_null"),
        }

    async def test_matching_record_gets_licence(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json=REGISTER_RESPONSE)
        record = PropertyRecord(address="Flat 2, 12 Mare Street", postcode="E8 3RH")

        patch = await licensing.enrich(record)

        changes = patch.changes()
        assert changes["hmo_licence_reference"] == "HMO/2024/001"
        assert changes["licensed_hmo"] is True
        assert changes["hmo_status"] == HmoStatus.LICENSED.value
        assert changes["licence_status"] == "active"
        assert changes["hmo_licence_expiry"] == "2027-02-10"
        assert changes["hmo_max_occupancy"] == 6
        assert changes["hmo_shared_bathrooms"] == 2

    async def test_expired_entry_is_not_licensed(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json=REGISTER_RESPONSE)
        record = PropertyRecord(address="14 Mare Street", postcode="E8 3RH")

        changes = (await licensing.enrich(record)).changes()

        assert changes["licence_status"] == "expired"
        assert changes["licensed_hmo"] is False
        assert changes["hmo_status"] == HmoStatus.UNLICENSED.value
        assert changes["hmo_licence_reference"] == "HMO/2024/002"

    async def test_missing_register_values_keep_stored_details(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=REGISTER_URL,
            json={"data": {"hmos": [{"address": "12 Mare Street", "council": None}]}},
        )
        stored = {
            "address": "12 Mare Street",
            "postcode": "E8 3RH",
            "hmo_licence_reference": "HMO/2024/001",
            "hmo_council": "Hackney",
        }

        patch = await licensing.enrich(PropertyRecord(address="12 Mare Street", postcode="E8 3RH"))
        changes = merge_patch(stored, patch, licensing.name)

        assert "hmo_licence_reference" not in patch.changes()
        assert "hmo_licence_reference" not in changes
        assert "hmo_council" not in changes
        assert changes["licensed_hmo"] is True

    async def test_unrecognised_payload_is_empty_patch(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json={"unexpected": []})
        record = PropertyRecord(address="12 Mare Street", postcode="E8 3RH")
        assert (await licensing.enrich(record)).is_empty()

    async def test_no_match_is_empty_patch(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json=REGISTER_RESPONSE)
        record = PropertyRecord(address="40 Mare Street", postcode="E8 3RH")
        assert (await licensing.enrich(record)).is_empty()

    async def test_register_cached_per_postcode(
        self, licensing: PropertyDataLicenceAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=REGISTER_URL, json=REGISTER_RESPONSE)
        await licensing.enrich(PropertyRecord(address="12 Mare Street", postcode="E8 3RH"))
        await licensing.enrich(PropertyRecord(address="14 Mare Street", postcode="E8 3RH"))
        assert len(httpx_mock.get_requests()) == 1

    async def test_unconfigured_is_empty_patch(self, httpx_mock: HTTPXMock) -> None:
        adapter = PropertyDataLicenceAdapter("")
        record = PropertyRecord(address="12 Mare Street", postcode="E8 3RH")
        assert (await adapter.enrich(record)).is_empty()
        assert httpx_mock.get_requests() == []
