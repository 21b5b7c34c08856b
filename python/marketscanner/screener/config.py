"""Load screener configuration files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from marketscanner.utils.path import get_python_root_path

from . import constants


def get_screener_config_dir() -> Path:
    """Return the directory containing screener configs."""
    override = os.getenv(constants.CONFIG_DIR_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path(get_python_root_path()) / "configs" / "screener"


def load_screener_config(name: str) -> dict[str, Any]:
    """Load a screener configuration YAML file by name."""
    config_path = get_screener_config_dir() / f"{name}.yaml"
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as file:
        return yaml.safe_load(file) or {}


class SchedulerSettings(BaseModel):
    interval_seconds: float = Field(
        default=constants.SCHEDULER_INTERVAL_S, description="Seconds between ticks"
    )
    max_workers: Optional[int] = Field(
        default=None, description="Rule evaluation threads (defaults to CPU count)"
    )
    slow_tick_seconds: float = Field(
        default=constants.SCHEDULER_SLOW_TICK_S,
        description="Tick duration that triggers a watchdog warning",
    )
    enabled: bool = Field(default=True, description="Start the scheduler with the app")


class DispatchSettings(BaseModel):
    max_attempts: int = Field(
        default=constants.DISPATCH_MAX_ATTEMPTS, description="Delivery attempts"
    )
    backoff_seconds: float = Field(
        default=constants.DISPATCH_BACKOFF_S, description="Initial retry backoff"
    )
    webhook_url: Optional[str] = Field(
        default=None, description="Webhook endpoint; dry-run logging when unset"
    )
    timeout_seconds: float = Field(
        default=constants.DISPATCH_TIMEOUT_S, description="Webhook request timeout"
    )


class ExportSettings(BaseModel):
    max_rows: int = Field(
        default=constants.EXPORT_MAX_ROWS, description="Maximum exported rows"
    )
    precision: int = Field(
        default=constants.EXPORT_PRECISION, description="Decimal places in CSV"
    )


class EvaluationSettings(BaseModel):
    inclusive_between: bool = Field(
        default=False, description="Treat BETWEEN bounds as inclusive"
    )


class SourceSettings(BaseModel):
    url: Optional[str] = Field(
        default=None, description="Snapshot feed URL; in-memory feed when unset"
    )
    timeout_seconds: float = Field(
        default=constants.SOURCE_TIMEOUT_S, description="Feed request timeout"
    )
    max_retries: int = Field(
        default=constants.SOURCE_MAX_RETRIES, description="Feed fetch attempts"
    )


class ScreenerSettings(BaseModel):
    """Runtime settings loaded from ``settings.yaml``."""

    log_level: str = Field(default="INFO", description="Log level")
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)


def load_settings() -> ScreenerSettings:
    """Load settings.yaml, with the log level overridable from the environment."""
    settings = ScreenerSettings.model_validate(load_screener_config("settings"))
    env_level = os.getenv(constants.LOG_LEVEL_ENV_VAR, "").strip()
    if env_level:
        settings = settings.model_copy(update={"log_level": env_level.upper()})
    return settings
