"""Tests for planning constraint enrichment."""

import json
from collections.abc import AsyncIterator

import pytest
from pytest_httpx import HTTPXMock

from hmo_hunter.adapters.planning import (
    ARTICLE_4,
    LISTED_BUILDING,
    PlanningAdapter,
    build_constraints,
    detect_article_4,
    detect_conservation_area,
    parse_listed_grade,
)
from hmo_hunter.models import ListedBuildingGrade, PropertyRecord

PLANNING_URL = "https://api.searchland.co.uk/v1/planning"


@pytest.fixture
async def planning() -> AsyncIterator[PlanningAdapter]:
    adapter = PlanningAdapter("sl-key")
    yield adapter
    await adapter.close()


class TestDetection:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("I", ListedBuildingGrade.GRADE_I),
            ("2", ListedBuildingGrade.GRADE_II),
            ("grade ii*", ListedBuildingGrade.GRADE_II_STAR),
            ("III", None),
            (None, None),
        ],
    )
    def test_parse_listed_grade(
        self, value: str | None, expected: ListedBuildingGrade | None
    ) -> None:
        assert parse_listed_grade(value) == expected

    def test_article_4_from_flag(self) -> None:
        assert detect_article_4({"article_4_direction": True})
        assert not detect_article_4({"article_4": "yes"})

    def test_article_4_from_constraint_text(self) -> None:
        planning = {"constraints": [{"type": "Other", "description": "Within Article 4 area"}]}
        assert detect_article_4(planning)

    def test_conservation_area(self) -> None:
        assert detect_conservation_area({"conservation_area": True})
        assert detect_conservation_area({"constraints": [{"type": "Conservation Area"}]})
        assert not detect_conservation_area({"constraints": "none"})

    def test_constraints_deduplicated(self) -> None:
        planning = {
            "article_4_reference": "A4/HMO/2019",
            "constraints": [
                {"type": "Article 4 Direction", "description": "HMO direction"},
                {"type": "Tree Preservation Order", "name": "TPO 12", "reference": "T12"},
                {"type": "Listed building curtilage"},
            ],
        }
        constraints = build_constraints(
            planning, article_4=True, conservation=False, grade=ListedBuildingGrade.GRADE_II
        )
        assert [c.type for c in constraints] == [
            ARTICLE_4,
            LISTED_BUILDING,
            "Tree Preservation Order",
        ]
        assert constraints[0].reference == "A4/HMO/2019"
        assert constraints[2].description == "TPO 12"


class TestPlanningAdapter:
    async def test_enriches_constraints(
        self, planning: PlanningAdapter, sample_record: PropertyRecord, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=PLANNING_URL,
            method="POST",
            json={
                "planning": {
                    "article_4": True,
                    "listed_building_grade": "II",
                    "constraints": [{"type": "Flood Zone 2", "description": "Medium risk"}],
                }
            },
        )

        changes = (await planning.enrich(sample_record)).changes()

        assert changes["article_4_area"] is True
        assert changes["conservation_area"] is False
        assert changes["listed_building_grade"] == "II"
        assert [c["type"] for c in changes["planning_constraints"]] == [
            ARTICLE_4,
            LISTED_BUILDING,
            "Flood Zone 2",
        ]
        request = httpx_mock.get_requests()[0]
        assert json.loads(request.content)["postcode"] == "E8 3RH"
        assert request.headers["Authorization"] == "Bearer sl-key"

    async def test_unrestricted_location(
        self, planning: PlanningAdapter, sample_record: PropertyRecord, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=PLANNING_URL, method="POST", json={"planning": {}})
        changes = (await planning.enrich(sample_record)).changes()
        assert changes == {"article_4_area": False, "conservation_area": False}

    async def test_missing_payload(
        self, planning: PlanningAdapter, sample_record: PropertyRecord, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=PLANNING_URL, method="POST", json={"error": "no data"})
        assert (await planning.enrich(sample_record)).is_empty()

    async def test_needs_location(self, planning: PlanningAdapter, httpx_mock: HTTPXMock) -> None:
        assert (await planning.enrich(PropertyRecord(address="12 Mare Street"))).is_empty()
        assert httpx_mock.get_requests() == []
