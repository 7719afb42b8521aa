"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Scheduler configuration. All values come from environment variables."""

    # Database (tasks and tracked items share one SQLite file)
    database_path: Path = Field(default=Path("data/media_scheduler.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")

    # Execution deadline for a single task action, 0 disables it
    execution_timeout_seconds: float = Field(default=1800.0, ge=0)

    # Backoff for tasks that keep failing, base 0 disables it
    backoff_base_seconds: float = Field(default=3600.0, ge=0)
    backoff_max_seconds: float = Field(default=7 * 24 * 3600.0, ge=0)
    backoff_failure_threshold: int = Field(default=2, ge=1)

    # Periodic association validation, 0 disables it
    validation_interval_seconds: float = Field(default=0.0, ge=0)

    # Health check
    missed_run_grace_seconds: float = Field(default=300.0, ge=0)

    # Task action endpoint
    action_endpoint_url: str = Field(default="http://localhost:3000/api/execute-scheduled-task")
    action_request_timeout_seconds: float = Field(default=600.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

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

    def get_execution_timeout(self) -> float | None:
        """Return the execution deadline in seconds, or None when disabled."""
        if self.execution_timeout_seconds <= 0:
            return None
        return self.execution_timeout_seconds


settings = Settings()
