"""Environment helpers for locating the local data directory."""

from __future__ import annotations

import os
from pathlib import Path

HOME_ENV_VAR: str = "MARKETSCANNER_HOME"
DEFAULT_HOME_DIR_NAME: str = ".marketscanner"


def get_system_env_dir() -> Path:
    """Return the data directory, honouring ``MARKETSCANNER_HOME``."""
    override = os.getenv(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_HOME_DIR_NAME


def ensure_system_env_dir() -> Path:
    """Return the data directory, creating it if needed."""
    base_dir = get_system_env_dir()
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir
