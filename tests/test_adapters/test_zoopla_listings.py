"""Tests for the Zoopla listings source."""

import re
from collections.abc import AsyncIterator
from typing import Any

import pytest
from pytest_httpx import HTTPXMock

from hmo_hunter.adapters.zoopla import (
    ZooplaListingsAdapter,
    extract_images,
    listing_to_record,
    map_property_type,
    parse_listing,
)
from hmo_hunter.models import ListingType, PropertyType, SourceQuery

LISTINGS_URL = re.compile(r"https://api\.zoopla\.co\.uk/api/v1/property_listings\.json\?")


def _raw_listing(**overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "listing_id": 61234567,
        "listing_status": "rent",
        "details_url": "https://www.zoopla.co.uk/to-rent/details/61234567",
        "displayable_address": "Mare Street, London E8",
        "property_number": "12",
        "outcode": "E8",
        "incode": "3RH",
        "post_town": "London",
        "latitude": "51.5465",
        "longitude": -0.0553,
        "property_type": "Terraced house",
        "num_bedrooms": "5",
        "num_bathrooms": 2,
        "price": "900",
        "rental_prices": {"per_month": 3900, "per_week": 900},
        "description": "Five bedroom house share.",
        "other_image": [
            {"url": "https://lid.zoocdn.com/354/255/a.jpg"},
            {"url": "https://lid.zoocdn.com/354/255/b.jpg"},
        ],
        "floor_plan": ["https://lid.zoocdn.com/fp.jpg"],
        "floor_area": {"value": "1250", "units": "sq_feet"},
        "furnished_state": "part_furnished",
        "pets_allowed": "N",
        "agent_name": "Hackney Lettings",
        "agent_phone": "020 7000 0000",
    }
    raw.update(overrides)
    return raw


@pytest.fixture
async def zoopla() -> AsyncIterator[ZooplaListingsAdapter]:
    adapter = ZooplaListingsAdapter("zk", areas=["Hackney", "Islington"], page_size=25)
    yield adapter
    await adapter.close()


class TestParsing:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("Terraced house", PropertyType.HOUSE),
            ("flat", PropertyType.FLAT),
            ("Studio", PropertyType.STUDIO),
            ("Houseboat", None),
            (None, None),
        ],
    )
    def test_map_property_type(self, value: str | None, expected: PropertyType | None) -> None:
        assert map_property_type(value) == expected

    def test_images_upgraded_to_large_size(self) -> None:
        assert extract_images(_raw_listing()) == [
            "https://lid.zoocdn.com/645/430/a.jpg",
            "https://lid.zoocdn.com/645/430/b.jpg",
        ]

    def test_images_fallbacks(self) -> None:
        assert extract_images({"original_image": ["https://o/1.jpg", None]}) == [
            "https://o/1.jpg"
        ]
        assert extract_images({"image_url": "https://single.jpg"}) == ["https://single.jpg"]
        assert extract_images({}) == []

    def test_parse_rental_listing(self) -> None:
        listing = parse_listing(_raw_listing())
        assert listing.listing_id == "61234567"
        assert listing.address == "12 Mare Street, London E8"
        assert listing.postcode == "E8 3RH"
        assert listing.latitude == 51.5465
        assert listing.listing_type is ListingType.RENT
        assert listing.property_type is PropertyType.HOUSE
        assert listing.bedrooms == 5
        assert listing.price_pcm == 3900
        assert listing.floor_area_sqft == 1250.0
        assert listing.is_furnished is True
        assert listing.is_pet_friendly is False
        assert listing.is_student_friendly is None
        assert listing.agent is not None and listing.agent.phone == "020 7000 0000"
        assert listing.live_price == 3900

    def test_parse_sale_listing(self) -> None:
        listing = parse_listing(
            _raw_listing(listing_status="sale", price="450000", rental_prices=None)
        )
        assert listing.listing_type is ListingType.PURCHASE
        assert listing.price_pcm is None
        assert listing.live_price == 450000

    def test_rent_falls_back_to_price(self) -> None:
        listing = parse_listing(_raw_listing(rental_prices={}, price="2100"))
        assert listing.price_pcm == 2100

    def test_listing_to_record(self) -> None:
        record = listing_to_record(parse_listing(_raw_listing()))
        assert record.external_id == "zoopla-61234567"
        assert record.price_pcm == 3900
        assert record.purchase_price is None
        assert record.primary_image == "https://lid.zoocdn.com/645/430/a.jpg"
        assert record.source_url == record.live_listing_url
        assert record.listing_agent is not None
        assert record.has_consistent_pricing()

    def test_sale_record_has_purchase_price(self) -> None:
        raw = _raw_listing(listing_status="sale", price="450000", other_image=[])
        record = listing_to_record(parse_listing(raw))
        assert record.purchase_price == 450000
        assert record.price_pcm is None
        assert record.images is None


class TestZooplaAdapter:
    def test_default_queries_per_area(self, zoopla: ZooplaListingsAdapter) -> None:
        queries = zoopla.default_queries()
        assert [q.area for q in queries] == ["Hackney", "Islington"]
        assert all(q.page_size == 25 for q in queries)

    async def test_fetch_by_area(
        self, zoopla: ZooplaListingsAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=LISTINGS_URL,
            json={"listing": [_raw_listing(), {"no_id": True}, "junk"]},
        )

        records = await zoopla.fetch(SourceQuery(area="Hackney", page_size=25))

        assert [r.external_id for r in records] == ["zoopla-61234567"]
        params = httpx_mock.get_requests()[0].url.params
        assert params["area"] == "Hackney"
        assert params["listing_status"] == "rent"
        assert params["page_size"] == "25"
        assert "postcode" not in params

    async def test_search_by_postcode(
        self, zoopla: ZooplaListingsAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=LISTINGS_URL, json={"listing": [_raw_listing()]})

        listings = await zoopla.search_listings(postcode="e83rh", radius=0.25, page_size=50)

        assert len(listings) == 1
        params = httpx_mock.get_requests()[0].url.params
        assert params["postcode"] == "E8 3RH"
        assert params["radius"] == "0.25"
        assert "area" not in params

    async def test_missing_listing_key(
        self, zoopla: ZooplaListingsAdapter, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=LISTINGS_URL, json={"result_count": 0})
        assert await zoopla.search_listings(postcode="E8 3RH") == []

    async def test_unconfigured(self, httpx_mock: HTTPXMock) -> None:
        adapter = ZooplaListingsAdapter("")
        assert not adapter.is_configured
        assert await adapter.search_listings(postcode="E8 3RH") == []
        assert httpx_mock.get_requests() == []

    def test_search_url(self, zoopla: ZooplaListingsAdapter) -> None:
        url = zoopla.search_url("e83rh", "12 Mare Street")
        assert url.startswith("https://www.zoopla.co.uk/to-rent/property/?q=E8+3RH")
