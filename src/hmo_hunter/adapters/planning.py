"""Planning constraints: Article 4 directions, conservation areas, listed buildings.

Article 4 is what matters most here: within a direction area, converting a
family house to a small HMO needs full planning permission.
"""

from typing import Any, Final

import httpx
from pydantic import SecretStr

from hmo_hunter.adapters.base import DEFAULT_TIMEOUT, EnrichmentAdapter
from hmo_hunter.logging import get_logger
from hmo_hunter.models import (
    ListedBuildingGrade,
    Phase,
    PlanningConstraint,
    PropertyPatch,
    PropertyRecord,
)

logger = get_logger(__name__)

DEFAULT_BASE_URL: Final = "https://api.searchland.co.uk/v1"

ARTICLE_4: Final = "Article 4"
CONSERVATION_AREA: Final = "Conservation Area"
LISTED_BUILDING: Final = "Listed Building"

_GRADES: Final = {
    "I": ListedBuildingGrade.GRADE_I,
    "1": ListedBuildingGrade.GRADE_I,
    "GRADE I": ListedBuildingGrade.GRADE_I,
    "II*": ListedBuildingGrade.GRADE_II_STAR,
    "2*": ListedBuildingGrade.GRADE_II_STAR,
    "GRADE II*": ListedBuildingGrade.GRADE_II_STAR,
    "II": ListedBuildingGrade.GRADE_II,
    "2": ListedBuildingGrade.GRADE_II,
    "GRADE II": ListedBuildingGrade.GRADE_II,
}


def parse_listed_grade(value: Any) -> ListedBuildingGrade | None:
    if not value:
        return None
    return _GRADES.get(str(value).strip().upper())


def _constraints(planning: dict[str, Any]) -> list[dict[str, Any]]:
    raw = planning.get("constraints")
    if not isinstance(raw, list):
        return []
    return [c for c in raw if isinstance(c, dict)]


def _text(value: Any) -> str:
    return str(value).lower() if value else ""


def detect_article_4(planning: dict[str, Any]) -> bool:
    flags = ("article_4", "article_4_direction", "article_4_area")
    if any(planning.get(flag) is True for flag in flags):
        return True
    return any(
        "article 4" in _text(c.get("type")) or "article 4" in _text(c.get("description"))
        for c in _constraints(planning)
    )


def detect_conservation_area(planning: dict[str, Any]) -> bool:
    if planning.get("conservation_area") is True:
        return True
    return any("conservation" in _text(c.get("type")) for c in _constraints(planning))


def _is_duplicate(constraint_type: str, existing: list[PlanningConstraint]) -> bool:
    lowered = constraint_type.lower()
    for item in existing:
        if item.type.lower() == lowered:
            return True
        if "article 4" in lowered and item.type == ARTICLE_4:
            return True
        if "conservation" in lowered and item.type == CONSERVATION_AREA:
            return True
        if "listed" in lowered and item.type == LISTED_BUILDING:
            return True
    return False


def build_constraints(
    planning: dict[str, Any],
    *,
    article_4: bool,
    conservation: bool,
    grade: ListedBuildingGrade | None,
) -> list[PlanningConstraint]:
    """Headline constraints first, then any others the API listed."""
    constraints: list[PlanningConstraint] = []
    if article_4:
        constraints.append(
            PlanningConstraint(
                type=ARTICLE_4,
                description="Article 4 Direction - planning permission required for HMO conversion",
                reference=planning.get("article_4_reference"),
            )
        )
    if conservation:
        constraints.append(
            PlanningConstraint(
                type=CONSERVATION_AREA,
                description="Property is within a designated conservation area",
                reference=planning.get("conservation_area_name"),
            )
        )
    if grade is not None:
        constraints.append(
            PlanningConstraint(
                type=LISTED_BUILDING,
                description=f"Grade {grade.value} listed building - strict planning controls apply",
                reference=planning.get("listed_building_reference"),
            )
        )

    for raw in _constraints(planning):
        constraint_type = str(raw.get("type") or "Other")
        if _is_duplicate(constraint_type, constraints):
            continue
        constraints.append(
            PlanningConstraint(
                type=constraint_type,
                description=raw.get("description") or raw.get("name"),
                reference=raw.get("reference"),
            )
        )
    return constraints


class PlanningAdapter(EnrichmentAdapter):
    """Planning restrictions for a record's location."""

    name = "planning"
    phase = Phase.OWNERSHIP
    cursor_field = "planning_enriched_at"

    def __init__(
        self,
        api_key: SecretStr | str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float | None = 0.5,
    ) -> None:
        super().__init__(client=client, timeout=timeout, request_delay=request_delay)
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key.get_secret_value())

    async def enrich(self, record: PropertyRecord) -> PropertyPatch:
        if not self.is_configured:
            return self._unconfigured()
        if not record.postcode and not record.has_coordinates:
            return PropertyPatch()

        data = await self.request_json(
            "POST",
            f"{self._base_url}/planning",
            json={
                "address": record.address,
                "postcode": record.postcode,
                "latitude": record.latitude,
                "longitude": record.longitude,
                "uprn": record.uprn,
            },
            headers={"Authorization": f"Bearer {self._api_key.get_secret_value()}"},
        )
        planning = data.get("planning") if isinstance(data, dict) else None
        if not isinstance(planning, dict):
            return PropertyPatch()

        article_4 = detect_article_4(planning)
        conservation = detect_conservation_area(planning)
        grade = parse_listed_grade(planning.get("listed_building_grade"))
        constraints = build_constraints(
            planning, article_4=article_4, conservation=conservation, grade=grade
        )

        if article_4:
            logger.info("article_4_detected", address=record.address, postcode=record.postcode)

        updates: dict[str, Any] = {
            "article_4_area": article_4,
            "conservation_area": conservation,
        }
        if grade is not None:
            updates["listed_building_grade"] = grade
        if constraints:
            updates["planning_constraints"] = constraints
        return PropertyPatch.model_validate(updates)
