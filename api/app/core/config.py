from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

OrphanPolicy = Literal["keep", "zero", "delete"]


class Settings(BaseSettings):
    app_name: str = "jobboard-api"
    environment: str = "dev"
    admin_api_key: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    frontend_base_url: str = "http://localhost:5174"
    mail_api_base_url: str = "https://api.resend.com"
    mail_api_key: str | None = None
    mail_from: str = "alerts@example.com"
    mail_timeout_seconds: float = 10.0
    reconcile_orphan_policy: OrphanPolicy = "keep"
    notification_shutdown_grace_seconds: float = 0.0
    otel_enabled: bool = True
    otel_service_name: str = "jobboard-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="JB_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
