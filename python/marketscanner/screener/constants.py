"""Constants for the market screener and alert engine."""

DEFAULT_LIMIT: int = 50
MIN_LIMIT: int = 1
MAX_LIMIT: int = 1000

EXPORT_PRECISION: int = 4
EXPORT_MAX_ROWS: int = 10_000

SCHEDULER_INTERVAL_S: float = 60.0
SCHEDULER_SLOW_TICK_S: float = 30.0

DISPATCH_MAX_ATTEMPTS: int = 3
DISPATCH_BACKOFF_S: float = 0.5
DISPATCH_TIMEOUT_S: float = 10.0

SOURCE_TIMEOUT_S: float = 30.0
SOURCE_MAX_RETRIES: int = 3
SOURCE_RETRY_BACKOFF_S: float = 1.5

TRIGGER_HISTORY_SIZE: int = 100

DATA_DIR_NAME: str = "data"
ALERT_RULES_FILE_NAME: str = "alert_rules.json"
CONFIG_DIR_ENV_VAR: str = "MARKETSCANNER_CONFIG_DIR"
LOG_LEVEL_ENV_VAR: str = "MARKETSCANNER_LOG_LEVEL"
