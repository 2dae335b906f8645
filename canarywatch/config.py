"""Application configuration via pydantic-settings."""

from __future__ import annotations

import os
import socket
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    """Generate a unique worker ID from hostname + PID."""
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Deployment environment: selects compiled-in rollout defaults
    environment: str = "production"

    # Data directory
    data_dir: Path = Path("./data")
    config_file_name: str = "canary-config.json"

    # Remote config overlay (optional)
    remote_config_url: str = ""
    remote_config_timeout: float = 10.0

    # Shared assignment storage (optional; in-memory when empty)
    redis_url: str = ""

    # Analytics source (optional)
    posthog_api_key: str = ""
    posthog_project_id: str = ""
    posthog_host: str = "https://app.posthog.com"

    # Evaluation settings
    evaluation_interval_minutes: int = 60
    lookback_hours: int = 48
    reset_metrics_after_evaluation: bool = True
    # Keep ingested events in the SQLite DB so the API and task worker share one window
    shared_event_log: bool = True
    adjust_resets_status: bool = False
    max_retries: int = 3

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Huey settings
    huey_workers: int = 1
    huey_immediate: bool = False

    # Worker identity
    worker_id: str = Field(default_factory=_default_worker_id)

    @property
    def config_path(self) -> Path:
        return self.data_dir / self.config_file_name

    @property
    def db_path(self) -> Path:
        return self.data_dir / "canarywatch.db"

    @property
    def huey_db_path(self) -> Path:
        return self.data_dir / "huey_queue.db"

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
