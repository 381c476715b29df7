"""Application settings loaded from environment variables."""

import os
from pathlib import Path

import httpx
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """callme configuration. All values come from environment variables."""

    # HTTP API
    listen_ip: str = Field(default="0.0.0.0")
    listen_port: int = Field(default=6777)

    # Database (local SQLite file)
    database_path: Path = Field(default=Path("data/callme.db"))

    # Turso (hosted libSQL); when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Outbound callbacks (milliseconds)
    connect_timeout_ms: int = Field(default=1000, ge=1)
    client_timeout_ms: int = Field(default=3000, ge=1)

    # Scheduler
    tick_interval_seconds: int = Field(default=60, ge=1)
    catchup_interval_minutes: int = Field(default=5, ge=0)
    catchup_page_size: int = Field(default=100, ge=1)
    status_page_size: int = Field(default=100, ge=1)

    # Dispatch worker pool
    dispatch_workers: int = Field(default=16, ge=1)
    dispatch_queue_size: int = Field(default=1000, ge=1)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0)

    # Logging
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=_env_file(), env_file_encoding="utf-8", extra="forbid"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def effective_log_level(self) -> str:
        """Return the log level name, forced to DEBUG when ``debug`` is set."""
        if self.debug:
            return "DEBUG"
        return self.log_level.upper()

    def http_timeout(self) -> httpx.Timeout:
        """Build the timeout used by the callback HTTP client."""
        return httpx.Timeout(
            self.client_timeout_ms / 1000,
            connect=self.connect_timeout_ms / 1000,
        )


settings = Settings()
