"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Post-processing settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Site
    base_url: str = "http://localhost:8000"  # Used to absolutize root-relative image src

    # Images
    auto_link_threshold_width: int = 50  # Lightbox only images wider than this (px)
    allow_remote_crawl: bool = True  # Probe images that are not local uploads
    max_render_dimension: int = 690  # Clamp for resolved dimensions, 0 disables

    # Uploads
    object_store_base_url: str = ""  # e.g. "//bucket.s3.amazonaws.com", empty disables
    upload_site: str = "default"

    # Remote fetching
    probe_timeout_seconds: float = 10.0
    probe_max_bytes: int = 256 * 1024

    # Oneboxes
    onebox_cache_ttl_seconds: int = 3600

    # Database
    database_url: str = "sqlite+aiosqlite:///./postbake.db"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Debug mode
    debug: bool = False

    @field_validator("base_url", "object_store_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def base_host(self) -> str:
        """Return the host (and port) part of the base URL."""
        return urlsplit(self.base_url).netloc.lower()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
