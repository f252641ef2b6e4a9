from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "alumni-network-api"
    environment: str = "dev"
    store_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    default_member_role: Literal["guest", "student", "alumni"] = "student"
    bulk_max_targets: int = 200
    moderation_log_max_page_size: int = 100
    listing_cache_ttl_seconds: float = 30.0
    published_media_default_title: str = "Untitled Memory"
    published_media_default_category: str = "user_upload"
    notifier_webhook_url: str | None = None
    notifier_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "alumni-network-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="AN_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
