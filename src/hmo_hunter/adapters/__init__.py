"""Source and enrichment adapters for the ingestion pipeline."""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hmo_hunter.adapters.base import (  # noqa: F401
        Adapter,
        EnrichmentAdapter,
        SourceAdapter,
    )
    from hmo_hunter.adapters.broadband import BroadbandAdapter  # noqa: F401
    from hmo_hunter.adapters.companies_house import CompaniesHouseAdapter  # noqa: F401
    from hmo_hunter.adapters.epc import EpcAdapter  # noqa: F401
    from hmo_hunter.adapters.geocoder import PostcodeGeocoderAdapter  # noqa: F401
    from hmo_hunter.adapters.kamma import KammaLicensingAdapter  # noqa: F401
    from hmo_hunter.adapters.land_registry import LandRegistrySoldPricesAdapter  # noqa: F401
    from hmo_hunter.adapters.marketplace import MarketplaceListingAdapter  # noqa: F401
    from hmo_hunter.adapters.planning import PlanningAdapter  # noqa: F401
    from hmo_hunter.adapters.potential_hmo import PotentialHmoAnalyzer  # noqa: F401
    from hmo_hunter.adapters.propertydata import (  # noqa: F401
        PropertyDataHmoRegisterAdapter,
        PropertyDataLicenceAdapter,
    )
    from hmo_hunter.adapters.title import LandTitleAdapter  # noqa: F401
    from hmo_hunter.adapters.valuation import (  # noqa: F401
        PatmaValuationAdapter,
        StreetDataValuationAdapter,
    )
    from hmo_hunter.adapters.zoopla import ZooplaListingsAdapter  # noqa: F401

__all__ = [
    "Adapter",
    "BroadbandAdapter",
    "CompaniesHouseAdapter",
    "EnrichmentAdapter",
    "EpcAdapter",
    "KammaLicensingAdapter",
    "LandRegistrySoldPricesAdapter",
    "LandTitleAdapter",
    "MarketplaceListingAdapter",
    "PatmaValuationAdapter",
    "PlanningAdapter",
    "PostcodeGeocoderAdapter",
    "PotentialHmoAnalyzer",
    "PropertyDataHmoRegisterAdapter",
    "PropertyDataLicenceAdapter",
    "SourceAdapter",
    "StreetDataValuationAdapter",
    "ZooplaListingsAdapter",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Adapter": (".base", "Adapter"),
    "BroadbandAdapter": (".broadband", "BroadbandAdapter"),
    "CompaniesHouseAdapter": (".companies_house", "CompaniesHouseAdapter"),
    "EnrichmentAdapter": (".base", "EnrichmentAdapter"),
    "EpcAdapter": (".epc", "EpcAdapter"),
    "KammaLicensingAdapter": (".kamma", "KammaLicensingAdapter"),
    "LandRegistrySoldPricesAdapter": (".land_registry", "LandRegistrySoldPricesAdapter"),
    "LandTitleAdapter": (".title", "LandTitleAdapter"),
    "MarketplaceListingAdapter": (".marketplace", "MarketplaceListingAdapter"),
    "PatmaValuationAdapter": (".valuation", "PatmaValuationAdapter"),
    "PlanningAdapter": (".planning", "PlanningAdapter"),
    "PostcodeGeocoderAdapter": (".geocoder", "PostcodeGeocoderAdapter"),
    "PotentialHmoAnalyzer": (".potential_hmo", "PotentialHmoAnalyzer"),
    "PropertyDataHmoRegisterAdapter": (".propertydata", "PropertyDataHmoRegisterAdapter"),
    "PropertyDataLicenceAdapter": (".propertydata", "PropertyDataLicenceAdapter"),
    "SourceAdapter": (".base", "SourceAdapter"),
    "StreetDataValuationAdapter": (".valuation", "StreetDataValuationAdapter"),
    "ZooplaListingsAdapter": (".zoopla", "ZooplaListingsAdapter"),
}


def __getattr__(name: str) -> type:
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        mod = importlib.import_module(module_path, __name__)
        val = getattr(mod, attr)
        globals()[name] = val
        return val  # type: ignore[no-any-return]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
