"""autorelay settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./autorelay.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8020
    log_level: str = "INFO"
    show_logs: bool = True
    tick_interval_seconds: float = 60.0
    tick_concurrency: int = 1
    result_store_url: str = "redis://localhost:6379/0"
    result_ttl_seconds: int = 10
    result_poll_attempts: int = 5
    result_poll_delay_seconds: float = 0.2
    dedup_ttl_seconds: int = 1800
    scripts_dir: str = "."
    http_timeout_seconds: float = 30.0
    script_timeout_seconds: float = 600.0
    webhook_timeout_seconds: float = 15.0
    encryption_key: str = "change-me-autorelay-secret"
    notification_timezone: str = "UTC"

    class Config:
        env_file = ".env"
        env_prefix = "AUTORELAY_"
        extra = "ignore"

    @property
    def scripts_dir_path(self) -> Path:
        return Path(self.scripts_dir).expanduser().resolve()


settings = Settings()
