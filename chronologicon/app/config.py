from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    """Runtime configuration for the Chronologicon API."""

    app_name: str = "Chronologicon Engine"
    app_version: str = "0.1.0"

    database_url: str = Field(default="sqlite:///storage/chronologicon.db")
    database_echo: bool = Field(default=False)

    ingestion_field_delimiter: str = Field(default="|")
    ingestion_null_parent_token: str = Field(default="NULL")
    ingestion_max_workers: int = Field(default=4)
    ingestion_upload_dir: Path = Field(default=Path("storage/uploads"))

    search_default_limit: int = Field(default=10)
    search_max_limit: int = Field(default=100)
    timeline_max_depth: int = Field(default=100, ge=1)

    cors_origins: Optional[str] = Field(default=None)
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
    rate_limit_default: str = Field(default="100/minute")

    telemetry_enabled: bool = Field(default=False)
    telemetry_service_name: str = Field(default="chronologicon-backend")
    telemetry_environment: str = Field(default="local")
    telemetry_otlp_endpoint: str | None = Field(default=None)
    telemetry_otlp_insecure: bool = Field(default=True)
    telemetry_metrics_interval: float = Field(default=30.0)
    telemetry_console_fallback: bool = Field(default=False)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    def prepare_directories(self) -> None:
        self.ingestion_upload_dir.mkdir(parents=True, exist_ok=True)
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()  # type: ignore[arg-type]
    settings.prepare_directories()
    return settings


def reset_settings_cache() -> None:
    get_settings.cache_clear()
