from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "tierlist-api"
    app_version: str = "0.1.0"
    environment: str = "dev"
    log_level: str = "INFO"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    storage_root: str = "./userfiles"
    public_base_url: str = "http://localhost:8000/userfile"
    image_aspect_tolerance: float = 0.1
    image_save_retry_count: int = 3
    id_create_retry_count: int = 3
    auth_url: str | None = None
    auth_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "tierlist-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="TL_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
