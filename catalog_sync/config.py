"""Application configuration using Pydantic settings."""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class CatalogConfig:
    """Connection details for the product catalog.

    Passed explicitly into the reconciler so nothing below the orchestrator
    reads credentials from the environment.
    """

    catalog_endpoint: str
    service_credential: str = ""


class Settings(BaseSettings):
    """Application settings."""

    # Catalog database
    catalog_endpoint: str = "postgresql+asyncpg://catalog@localhost:5432/catalog"
    service_credential: str = ""

    # Redis (run-level lock)
    redis_url: str = "redis://localhost:6379/0"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    app_host: str = "0.0.0.0"
    app_port: int = 8001
    cors_allow_origins: list[str] = ["*"]

    # ==========================================================================
    # Source site
    # ==========================================================================
    site_base_url: str = "https://www.marktplaats.nl"
    listing_path_prefix: str = "/v/"
    image_cdn_host: str = "marktplaats.com"
    accept_language: str = "nl-NL,nl;q=0.9,en-US;q=0.8,en;q=0.7"

    # ==========================================================================
    # Fetching
    # ==========================================================================
    fetch_timeout_seconds: float = 20.0
    max_redirects: int = 5
    fetch_concurrency: int = 1  # 1 keeps the strictly sequential behaviour
    politeness_delay_seconds: float = 0.3  # Per worker, between listing fetches
    run_deadline_seconds: float = 600.0

    # ==========================================================================
    # Catalog import
    # ==========================================================================
    fallback_category_slug: str = "overig"
    default_description: str = "Geïmporteerd van Marktplaats"

    # ==========================================================================
    # Scheduled sync
    # ==========================================================================
    sync_profile_url: str = ""
    sync_schedule_enabled: bool = False
    sync_interval_minutes: int = 60
    sync_lock_ttl_seconds: int = 1800
    sync_lock_heartbeat_interval_seconds: int = 30
    sync_lock_wait_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def catalog_config(self) -> CatalogConfig:
        """Build the explicit catalog config handed to the reconciler."""
        return CatalogConfig(
            catalog_endpoint=self.catalog_endpoint,
            service_credential=self.service_credential,
        )


settings = Settings()
