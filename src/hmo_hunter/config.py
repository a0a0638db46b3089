"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables.

    Every API key defaults to empty. An adapter whose key is empty is treated
    as unconfigured and skipped rather than failed.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HMO_HUNTER_",
        extra="ignore",
    )

    # PropertyData (national HMO register)
    propertydata_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="PropertyData API key for the national HMO register",
    )
    propertydata_base_url: str = Field(default="https://api.propertydata.co.uk")
    propertydata_delay_seconds: float = Field(
        default=1.5,
        ge=0,
        description="Delay between PropertyData requests (their quota is strict)",
    )
    register_postcodes: str = Field(
        default="N7 6PA,E2 9PL,SE5 8TR,NW5 2HB,E8 1EJ",
        description="Comma-separated postcodes to pull from the HMO register",
    )

    # Zoopla (live listings)
    zoopla_api_key: SecretStr = Field(default=SecretStr(""))
    zoopla_base_url: str = Field(default="https://api.zoopla.co.uk/api/v1")
    zoopla_search_areas: str = Field(
        default="London",
        description="Comma-separated areas for Phase 1 listing ingestion",
    )
    zoopla_page_size: int = Field(default=50, ge=1, le=100)

    # Valuation
    patma_api_key: SecretStr = Field(default=SecretStr(""))
    patma_base_url: str = Field(default="https://app.patma.co.uk/api")
    streetdata_api_key: SecretStr = Field(default=SecretStr(""))
    streetdata_base_url: str = Field(default="https://api.street.co.uk")
    land_registry_base_url: str = Field(
        default="https://landregistry.data.gov.uk",
        description="Price Paid Data SPARQL host; free, no key needed",
    )
    sold_prices_cache_ttl_seconds: float = Field(default=1800, gt=0)

    # Kamma (licensing compliance)
    kamma_api_key: SecretStr = Field(default=SecretStr(""))
    kamma_group_id: str = Field(default="", description="Sent as the X-SSO-Service-Key header")
    kamma_base_url: str = Field(default="https://kamma.api.kammadata.com")

    # Ownership
    companies_house_api_key: SecretStr = Field(default=SecretStr(""))
    companies_house_base_url: str = Field(
        default="https://api.company-information.service.gov.uk"
    )
    searchland_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Searchland key, used for title and planning lookups",
    )
    searchland_base_url: str = Field(default="https://api.searchland.co.uk/v1")
    title_delay_seconds: float = Field(default=0.2, ge=0)

    # EPC register (opendatacommunities)
    epc_email: str = Field(default="")
    epc_api_key: SecretStr = Field(default=SecretStr(""))
    epc_base_url: str = Field(default="https://epc.opendatacommunities.org/api/v1")

    # Ofcom broadband coverage
    ofcom_api_key: SecretStr = Field(default=SecretStr(""))
    ofcom_base_url: str = Field(
        default="https://api-proxy.ofcom.org.uk/broadband/coverage"
    )

    # Static map fallback for property images
    google_maps_api_key: SecretStr = Field(default=SecretStr(""))

    # Pipeline behaviour
    request_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Default delay between requests to the same upstream",
    )
    enrichment_batch_size: int = Field(default=100, ge=1, le=1000)
    stale_after_days: int = Field(default=7, ge=1)
    listing_cache_ttl_seconds: float = Field(default=1800, gt=0)
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    # Database
    database_path: str = Field(default="data/hmo_hunter.db")

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database."""
        return str(Path(self.database_path).parent)

    def get_register_postcodes(self) -> list[str]:
        """Parse register_postcodes into a list of postcodes."""
        return [p.strip().upper() for p in self.register_postcodes.split(",") if p.strip()]

    def get_zoopla_search_areas(self) -> list[str]:
        """Parse zoopla_search_areas into a list of area names."""
        return [a.strip() for a in self.zoopla_search_areas.split(",") if a.strip()]
