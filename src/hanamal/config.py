"""Configuration management using pydantic-settings.

Key patterns:
1. Multiple env files (.env, .env.local) - local overrides shared
2. Airtable credentials are optional at import time, with a startup warning
3. validation_alias for explicit env var names
4. Singleton instance for easy import

Usage:
    from hanamal.config import settings
    print(settings.images_dir)
"""

import logging
from pathlib import Path
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hanamal.images.fields import IMAGE_FIELD_ALIASES

logger = logging.getLogger(__name__)

# Logical dataset -> Airtable table name or id
DEFAULT_TABLES: dict[str, str] = {
    "events": "Events",
    "menus": "Menus",
    "packages": "tbl9C40JxeIkue5So",
    "dishes": "tblbi9b9lUjRRrAhW",
    "about": "tblvhDaSZbzlYP9bh",
    "hero": "tblOe7ONKtB6A9Q6L",
    "gallery": "tblpfVJY9nEb5JDlQ",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Airtable keeps the names the site has always used (AIRTABLE_TOKEN,
    AIRTABLE_BASE). Everything local to the build uses a SITE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        extra="ignore",
    )

    @model_validator(mode="after")
    def warn_missing_optional_keys(self) -> Self:
        """Warn at startup if the Airtable credentials are missing.

        Commands that only touch local files (stats, prune, dedupe) work
        without them.
        """
        missing = []
        if not self.airtable_token:
            missing.append("AIRTABLE_TOKEN")
        if not self.airtable_base:
            missing.append("AIRTABLE_BASE")

        if missing:
            logger.warning(
                "Missing Airtable settings (sync will not run): %s", ", ".join(missing)
            )
        return self

    @property
    def has_airtable_credentials(self) -> bool:
        return bool(self.airtable_token and self.airtable_base)

    # ==========================================================================
    # AIRTABLE
    # ==========================================================================

    airtable_token: str | None = Field(
        default=None,
        validation_alias="AIRTABLE_TOKEN",
        description="Airtable personal access token",
    )

    airtable_base: str | None = Field(
        default=None,
        validation_alias="AIRTABLE_BASE",
        description="Airtable base id (appXXXXXXXX)",
    )

    airtable_api_url: str = Field(
        default="https://api.airtable.com/v0",
        validation_alias="AIRTABLE_API_URL",
        description="Records API root",
    )

    airtable_view: str = Field(
        default="Grid view",
        validation_alias="AIRTABLE_VIEW",
        description="View used when listing records",
    )

    airtable_tables: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_TABLES),
        validation_alias="AIRTABLE_TABLES",
        description="JSON mapping of dataset name to table name or id",
    )

    airtable_min_interval: float = Field(
        default=0.2,
        validation_alias="SITE_AIRTABLE_MIN_INTERVAL",
        description="Minimum seconds between records API requests",
    )

    # ==========================================================================
    # PATHS
    # ==========================================================================

    data_dir: Path = Field(
        default=Path("./data"),
        validation_alias="SITE_DATA_DIR",
        description="Directory for the synced <dataset>.json files",
    )

    images_dir: Path = Field(
        default=Path("./public/images"),
        validation_alias="SITE_IMAGES_DIR",
        description="Directory holding downloaded images",
    )

    images_url_prefix: str = Field(
        default="/images",
        validation_alias="SITE_IMAGES_URL_PREFIX",
        description="Public URL prefix the renderer serves images_dir under",
    )

    registry_path: Path = Field(
        default=Path("./data/image-registry.json"),
        validation_alias="SITE_REGISTRY_PATH",
        description="Image registry document",
    )

    # ==========================================================================
    # IMAGE PIPELINE
    # ==========================================================================

    image_fields: list[str] = Field(
        default_factory=lambda: list(IMAGE_FIELD_ALIASES),
        validation_alias="SITE_IMAGE_FIELDS",
        description="Record fields probed for images, in order (JSON list)",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="SITE_HTTP_TIMEOUT_SECONDS",
        description="Timeout for each HTTP request",
    )

    max_redirects: int = Field(
        default=5,
        ge=0,
        validation_alias="SITE_MAX_REDIRECTS",
        description="Redirect hops followed per image",
    )

    max_concurrent_downloads: int = Field(
        default=4,
        ge=1,
        validation_alias="SITE_MAX_CONCURRENT_DOWNLOADS",
        description="Max simultaneous image downloads",
    )

    download_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="SITE_DOWNLOAD_ATTEMPTS",
        description="Attempts per image on transient network errors",
    )

    max_image_bytes: int | None = Field(
        default=25 * 1024 * 1024,
        validation_alias="SITE_MAX_IMAGE_BYTES",
        description="Reject images larger than this (None = unlimited)",
    )


# Singleton instance
settings = Settings.model_validate({})
