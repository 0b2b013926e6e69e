from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "policy-engine"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    decision_cache_ttl_seconds: float | None = 300.0
    snapshot_cache_ttl_seconds: float | None = None
    risk_medium_threshold: int = 2
    risk_high_threshold: int = 4
    risk_critical_threshold: int = 6
    grant_table_path: str | None = None
    database_url: str | None = None
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_exporter: bool = False
    decision_log_enabled: bool = True

    model_config = SettingsConfigDict(
        env_prefix="POLICY_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
