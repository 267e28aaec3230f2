"""Application configuration using Pydantic settings."""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)

    epc_api_base_url: str = Field(default="https://epc.opendatacommunities.org/api/v1")
    epc_api_email: Optional[str] = Field(default=None)
    epc_api_key: Optional[str] = Field(default=None)

    land_app_base_url: str = Field(default="https://integration-api.thelandapp.com")
    land_app_api_key: Optional[str] = Field(default=None)
    nature_reporting_api_key: Optional[str] = Field(default=None)

    os_links_base_url: str = Field(default="https://api.os.uk/search/links/v1")
    os_links_api_key: Optional[str] = Field(default=None)

    http_timeout: float = Field(default=30.0)
    http_retries: int = Field(default=2, ge=0)
    http_backoff: float = Field(default=0.5, ge=0)

    epc_batch_size: int = Field(default=10, ge=1)
    epc_batch_delay: float = Field(default=1.0, ge=0)
    os_batch_size: int = Field(default=5, ge=1)
    fuzzy_match_threshold: float = Field(default=0.85, gt=0, le=1)

    epc_cache_ttl: int = Field(default=24 * 60 * 60)
    os_cache_ttl: int = Field(default=24 * 60 * 60)
    plans_cache_ttl: int = Field(default=10 * 60)
    nature_cache_ttl: int = Field(default=30 * 60)
    plan_detail_cache_ttl: int = Field(default=15 * 60)

    log_level: str = Field(default="INFO")

    @property
    def epc_configured(self) -> bool:
        return bool(self.epc_api_email and self.epc_api_key)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
