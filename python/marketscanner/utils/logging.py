"""Loguru sink configuration."""

from __future__ import annotations

import sys

from loguru import logger

from .env import ensure_system_env_dir


def setup_logging(level: str = "INFO", log_to_file: bool = True):
    """
    Configure logging:
    - stdout for container logs
    - <data dir>/logs/marketscanner.log with rotation (10MB, 7 backups)
    """
    logger.remove()
    logger.add(sys.stdout, level=level, backtrace=False, diagnose=False)

    if log_to_file:
        log_dir = ensure_system_env_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "marketscanner.log"
        logger.add(
            str(log_file),
            level=level,
            rotation="10 MB",
            retention=7,
            compression="gz",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )
        logger.info("Logging configured: console + file ({path})", path=log_file)
    else:
        logger.info("Logging configured: console only")
    return logger
