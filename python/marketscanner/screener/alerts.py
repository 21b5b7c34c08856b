"""
Alert Manager - evaluates alert rules on a fixed schedule.

Each tick pulls one immutable universe, evaluates every active rule on a
bounded thread pool, diffs the new match set against the previous one and
dispatches newly triggered symbols without waiting for delivery.
"""

from __future__ import annotations

import asyncio
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from loguru import logger

from marketscanner.utils.uuid import generate_uuid

from .constants import (
    DISPATCH_BACKOFF_S,
    DISPATCH_MAX_ATTEMPTS,
    SCHEDULER_INTERVAL_S,
    SCHEDULER_SLOW_TICK_S,
)
from .criteria import validate_criteria
from .dispatch import LoggingDispatcher, NotificationDispatcher, dispatch_with_retry
from .errors import AlertRuleNotFound, EvaluationPanic
from .scanner import Scanner
from .schemas import (
    AlertPriority,
    AlertRule,
    AlertRuleView,
    CriteriaSet,
    InstrumentSnapshot,
    TriggerEvent,
)
from .storage import AlertRuleState, AlertRuleStore, AlertStateStore, RuleStatus
from .universe import InstrumentSnapshotSource


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule against one universe."""

    rule: AlertRule
    matches: Optional[frozenset[str]] = None
    error: Optional[EvaluationPanic] = None


@dataclass
class TickReport:
    started_at: datetime
    ended_at: Optional[datetime] = None
    universe_size: int = 0
    evaluated: list[str] = field(default_factory=list)
    triggered: dict[str, list[str]] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)


def diff_matches(previous: set[str], current: set[str]) -> set[str]:
    """Symbols matching now that did not match on the previous tick."""
    return set(current) - set(previous)


class AlertManager:
    """Owns alert rules, their match state and the evaluation schedule."""

    def __init__(
        self,
        source: InstrumentSnapshotSource,
        scanner: Optional[Scanner] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        rule_store: Optional[AlertRuleStore] = None,
        state_store: Optional[AlertStateStore] = None,
        interval_s: float = SCHEDULER_INTERVAL_S,
        max_workers: Optional[int] = None,
        slow_tick_s: float = SCHEDULER_SLOW_TICK_S,
        dispatch_max_attempts: int = DISPATCH_MAX_ATTEMPTS,
        dispatch_backoff_s: float = DISPATCH_BACKOFF_S,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.source = source
        self.scanner = scanner if scanner is not None else Scanner()
        self.dispatcher = dispatcher if dispatcher is not None else LoggingDispatcher()
        self.rules = rule_store if rule_store is not None else AlertRuleStore()
        self.states = state_store if state_store is not None else AlertStateStore()
        self.interval_s = interval_s
        self.slow_tick_s = slow_tick_s
        self.dispatch_max_attempts = dispatch_max_attempts
        self.dispatch_backoff_s = dispatch_backoff_s
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or os.cpu_count() or 1,
            thread_name_prefix="alert-eval",
        )
        self._pending: set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self.running = False
        self.is_ticking = False
        self.last_tick_at: Optional[datetime] = None

        for rule in self.rules.list():
            self.states.ensure(rule.id)

    # ------------------------------------------------------------------
    # Rule lifecycle
    # ------------------------------------------------------------------

    def create_rule(
        self,
        name: str,
        criteria: CriteriaSet,
        priority: AlertPriority = AlertPriority.MEDIUM,
        is_active: bool = True,
    ) -> AlertRule:
        validate_criteria(criteria)
        now = self._clock()
        rule = AlertRule(
            id=generate_uuid("rule"),
            name=name,
            criteria=criteria,
            is_active=is_active,
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        with self.states.lock:
            self.rules.put(rule)
            self.states.ensure(rule.id)
        logger.info(
            "Created alert rule {rule_id} ({name})", rule_id=rule.id, name=name
        )
        return rule

    def update_rule(
        self,
        rule_id: str,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
        criteria: Optional[CriteriaSet] = None,
        priority: Optional[AlertPriority] = None,
    ) -> AlertRule:
        """Apply a partial update.

        Deactivation keeps the match state so reactivating does not re-trigger
        symbols that were already matching. A criteria change clears the
        match set, since the old matches answer a different question.
        """
        if criteria is not None:
            validate_criteria(criteria)
        with self.states.lock:
            existing = self.rules.get(rule_id)
            if existing is None:
                raise AlertRuleNotFound(rule_id)
            changes: dict = {"updated_at": self._clock()}
            if name is not None:
                changes["name"] = name
            if is_active is not None:
                changes["is_active"] = is_active
            if priority is not None:
                changes["priority"] = priority
            criteria_changed = criteria is not None and criteria != existing.criteria
            if criteria_changed:
                changes["criteria"] = criteria
            updated = existing.model_copy(update=changes)
            self.rules.put(updated)
            if criteria_changed:
                self.states.clear_matches(rule_id)
            else:
                self.states.ensure(rule_id)
        logger.info(
            "Updated alert rule {rule_id} (active={active}, criteria_changed={changed})",
            rule_id=rule_id,
            active=updated.is_active,
            changed=criteria_changed,
        )
        return updated

    def delete_rule(self, rule_id: str) -> AlertRule:
        with self.states.lock:
            rule = self.rules.delete(rule_id)
            if rule is None:
                raise AlertRuleNotFound(rule_id)
            self.states.delete(rule_id)
        logger.info("Deleted alert rule {rule_id}", rule_id=rule_id)
        return rule

    def get_rule(self, rule_id: str) -> AlertRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise AlertRuleNotFound(rule_id)
        return rule

    def list_rules(self) -> list[AlertRuleView]:
        today = self._clock().date()
        views: list[AlertRuleView] = []
        for rule in self.rules.list():
            with self.states.lock:
                state = self.states.ensure(rule.id)
                match_count = (
                    state.match_count_today if state.count_date == today else 0
                )
                views.append(
                    AlertRuleView(
                        id=rule.id,
                        name=rule.name,
                        criteria=rule.criteria,
                        priority=rule.priority,
                        is_active=rule.is_active,
                        created_at=rule.created_at,
                        match_count=match_count,
                        last_triggered=state.last_triggered_at,
                        current_matches=sorted(state.current_matches),
                        status=state.status.value,
                        last_error=state.last_error,
                    )
                )
        return views

    def history(self, rule_id: str) -> list[TriggerEvent]:
        self.get_rule(rule_id)
        with self.states.lock:
            state = self.states.ensure(rule_id)
            return list(reversed(state.history))

    def get_state(self, rule_id: str) -> Optional[AlertRuleState]:
        return self.states.get(rule_id)

    def active_count(self) -> int:
        return len(self.rules.active())

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_rule(
        self, rule: AlertRule, universe: Sequence[InstrumentSnapshot]
    ) -> RuleOutcome:
        """Evaluate one rule; never raises, failures come back as EvaluationPanic."""
        try:
            matches = self.scanner.matching_symbols(rule.criteria, universe)
        except Exception as exc:
            return RuleOutcome(rule=rule, error=EvaluationPanic(rule.id, exc))
        return RuleOutcome(rule=rule, matches=frozenset(matches))

    def apply_outcome(
        self, outcome: RuleOutcome, now: datetime
    ) -> Optional[TriggerEvent]:
        """Write one evaluation back to its rule state; return the trigger, if any."""
        _, event = self.write_back(outcome, now)
        return event

    def write_back(
        self, outcome: RuleOutcome, now: datetime
    ) -> tuple[bool, Optional[TriggerEvent]]:
        """Return ``(applied, event)`` for one evaluation.

        The still-active check happens here, at write time: a rule deleted,
        deactivated or re-specified while its evaluation was in flight keeps
        its state untouched and ``applied`` is False.
        """
        rule_id = outcome.rule.id
        with self.states.lock:
            state = self.states.get(rule_id)
            current = self.rules.get(rule_id)
            if (
                state is None
                or current is None
                or not current.is_active
                or current.criteria != outcome.rule.criteria
            ):
                if state is not None:
                    state.status = RuleStatus.IDLE
                logger.debug(
                    "Discarding stale evaluation for rule {rule_id}", rule_id=rule_id
                )
                return False, None

            state.status = RuleStatus.IDLE
            state.last_evaluated_at = now
            if outcome.error is not None:
                state.last_error = str(outcome.error)
                logger.error(
                    "Alert rule {rule_id} evaluation failed: {error}",
                    rule_id=rule_id,
                    error=outcome.error,
                )
                return True, None

            new_matches = set(outcome.matches or ())
            triggered = diff_matches(state.current_matches, new_matches)
            state.current_matches = new_matches
            state.last_error = None
            state.roll_day(now.date())
            if not triggered:
                return True, None
            event = TriggerEvent(
                rule_id=rule_id,
                triggered_at=now,
                symbols=sorted(triggered),
                priority=current.priority,
            )
            state.record_trigger(event)
        logger.info(
            "Alert triggered: {name} - {count} new matches ({symbols})",
            name=current.name,
            count=len(event.symbols),
            symbols=", ".join(event.symbols),
        )
        return True, event

    async def run_tick(self) -> TickReport:
        """Evaluate all active rules once against the current universe."""
        report = TickReport(started_at=self._clock())
        started = time.monotonic()
        self.is_ticking = True
        try:
            rules = self.rules.active()
            if not rules:
                logger.debug("No active alert rules; skipping tick")
                return report
            universe = tuple(await asyncio.to_thread(self.source.current))
            report.universe_size = len(universe)
            with self.states.lock:
                for rule in rules:
                    self.states.ensure(rule.id).status = RuleStatus.EVALUATING

            loop = asyncio.get_running_loop()
            outcomes = await asyncio.gather(
                *(
                    loop.run_in_executor(
                        self._executor, self.evaluate_rule, rule, universe
                    )
                    for rule in rules
                )
            )
            now = self._clock()
            for outcome in outcomes:
                rule_id = outcome.rule.id
                applied, event = self.write_back(outcome, now)
                if not applied:
                    report.discarded.append(rule_id)
                elif outcome.error is not None:
                    report.failed.append(rule_id)
                else:
                    report.evaluated.append(rule_id)
                if event is not None:
                    report.triggered[rule_id] = event.symbols
                    self._schedule_dispatch(event)
        finally:
            self.is_ticking = False
            report.ended_at = self._clock()
            self.last_tick_at = report.ended_at

        elapsed = time.monotonic() - started
        if elapsed > self.slow_tick_s:
            logger.warning(
                "Alert tick took {elapsed:.2f}s (expected < {limit:.2f}s) for {count} rules",
                elapsed=elapsed,
                limit=self.slow_tick_s,
                count=len(rules),
            )
        logger.debug(
            "Alert tick finished: {evaluated} evaluated, {triggered} triggered, {failed} failed, {discarded} discarded",
            evaluated=len(report.evaluated),
            triggered=len(report.triggered),
            failed=len(report.failed),
            discarded=len(report.discarded),
        )
        return report

    def _schedule_dispatch(self, event: TriggerEvent) -> None:
        task = asyncio.create_task(
            dispatch_with_retry(
                self.dispatcher,
                event.rule_id,
                event.priority,
                list(event.symbols),
                max_attempts=self.dispatch_max_attempts,
                backoff_s=self.dispatch_backoff_s,
            ),
            name=f"dispatch-{event.rule_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain_dispatches(self) -> None:
        """Wait for in-flight notifications to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Fixed-period loop; a failed tick is logged and the loop continues."""
        self.running = True
        self._stop_event = asyncio.Event()
        logger.info(
            "Alert manager started (interval {interval}s)", interval=self.interval_s
        )
        while self.running:
            started = time.monotonic()
            try:
                await self.run_tick()
            except Exception as exc:
                logger.exception("Error in alert manager tick: {error}", error=exc)
            delay = max(0.0, self.interval_s - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop the loop, cancel pending notifications and release workers."""
        logger.info("Stopping alert manager...")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._executor.shutdown(wait=False, cancel_futures=True)
