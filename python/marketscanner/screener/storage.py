"""Alert rule definitions and per-rule match state."""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from marketscanner.utils.env import ensure_system_env_dir

from .constants import ALERT_RULES_FILE_NAME, DATA_DIR_NAME, TRIGGER_HISTORY_SIZE
from .schemas import AlertRule, TriggerEvent


def get_rules_path() -> Path:
    """Return the default JSON file for persisted alert rules."""
    data_dir = ensure_system_env_dir() / DATA_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / ALERT_RULES_FILE_NAME


class AlertRuleStore:
    """Thread-safe rule registry, optionally persisted as JSON.

    Rules are replaced, never mutated in place, so readers holding a rule
    object always see a consistent definition.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._rules: dict[str, AlertRule] = {}
        if path is not None:
            self._load()

    def get(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def list(self) -> list[AlertRule]:
        with self._lock:
            rules = list(self._rules.values())
        return sorted(rules, key=lambda rule: rule.created_at, reverse=True)

    def active(self) -> list[AlertRule]:
        with self._lock:
            return [rule for rule in self._rules.values() if rule.is_active]

    def put(self, rule: AlertRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule
            self._write()

    def delete(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            rule = self._rules.pop(rule_id, None)
            if rule is not None:
                self._write()
            return rule

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def _write(self) -> None:
        if self.path is None:
            return
        payload = [rule.model_dump(mode="json") for rule in self._rules.values()]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        tmp_path.replace(self.path)

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to read alert rules from {path}: {error}",
                path=self.path,
                error=exc,
            )
            return
        for item in data if isinstance(data, list) else []:
            try:
                rule = AlertRule.model_validate(item)
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid stored alert rule {rule_id}: {error}",
                    rule_id=item.get("id") if isinstance(item, dict) else None,
                    error=exc,
                )
                continue
            self._rules[rule.id] = rule
        logger.info(
            "Loaded {count} alert rules from {path}",
            count=len(self._rules),
            path=self.path,
        )


class RuleStatus(str, Enum):
    IDLE = "IDLE"
    EVALUATING = "EVALUATING"


@dataclass
class AlertRuleState:
    """Match state for one rule; only the alert manager mutates it."""

    rule_id: str
    status: RuleStatus = RuleStatus.IDLE
    current_matches: set[str] = field(default_factory=set)
    match_count_today: int = 0
    count_date: Optional[date] = None
    last_triggered_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None
    last_error: Optional[str] = None
    history: deque = field(
        default_factory=lambda: deque(maxlen=TRIGGER_HISTORY_SIZE)
    )

    def roll_day(self, today: date) -> None:
        """Reset the daily counter when ``today`` crosses the day boundary."""
        if self.count_date != today:
            self.match_count_today = 0
            self.count_date = today

    def record_trigger(self, event: TriggerEvent) -> None:
        self.roll_day(event.triggered_at.date())
        self.match_count_today += len(event.symbols)
        self.last_triggered_at = event.triggered_at
        self.history.append(event)


class AlertStateStore:
    """``rule_id -> AlertRuleState`` map guarded for concurrent insert/delete."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._states: dict[str, AlertRuleState] = {}

    def ensure(self, rule_id: str) -> AlertRuleState:
        with self.lock:
            state = self._states.get(rule_id)
            if state is None:
                state = AlertRuleState(rule_id=rule_id)
                self._states[rule_id] = state
            return state

    def get(self, rule_id: str) -> Optional[AlertRuleState]:
        with self.lock:
            return self._states.get(rule_id)

    def clear_matches(self, rule_id: str) -> AlertRuleState:
        with self.lock:
            state = self.ensure(rule_id)
            state.current_matches = set()
            return state

    def delete(self, rule_id: str) -> None:
        with self.lock:
            self._states.pop(rule_id, None)
