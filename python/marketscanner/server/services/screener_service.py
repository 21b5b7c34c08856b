"""Service layer for the screener and alert rule API."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from marketscanner.screener.alerts import AlertManager
from marketscanner.screener.config import ScreenerSettings, load_settings
from marketscanner.screener.dispatch import build_dispatcher
from marketscanner.screener.expression import ExpressionEvaluator
from marketscanner.screener.predicates import PredicateEvaluator
from marketscanner.screener.presets import StaticPresetCatalog, load_preset_catalog
from marketscanner.screener.scanner import Scanner
from marketscanner.screener.schemas import (
    AlertPriority,
    AlertRule,
    AlertRuleView,
    CriteriaSet,
    ScanResult,
    ScreenerTemplate,
    TriggerEvent,
)
from marketscanner.screener.storage import AlertRuleStore, get_rules_path
from marketscanner.screener.universe import (
    HttpSnapshotSource,
    InMemorySnapshotSource,
    InstrumentSnapshotSource,
)


class ScreenerService:
    """Screener orchestration and alert rule access."""

    def __init__(
        self,
        source: InstrumentSnapshotSource,
        catalog: StaticPresetCatalog,
        scanner: Optional[Scanner] = None,
        alerts: Optional[AlertManager] = None,
    ) -> None:
        self.source = source
        self.catalog = catalog
        self.scanner = scanner if scanner is not None else Scanner()
        if alerts is None:
            alerts = AlertManager(source=source, scanner=self.scanner)
        self.alerts = alerts
        self._scan_lock = threading.Lock()
        self._scans_in_flight = 0
        self.last_scan_time: Optional[datetime] = None

    @classmethod
    def from_settings(
        cls,
        settings: ScreenerSettings,
        source: Optional[InstrumentSnapshotSource] = None,
        persist_rules: bool = True,
    ) -> "ScreenerService":
        if source is None:
            if settings.source.url:
                source = HttpSnapshotSource(
                    settings.source.url,
                    timeout_s=settings.source.timeout_seconds,
                    max_retries=settings.source.max_retries,
                )
            else:
                logger.info("No snapshot feed configured; using in-memory source")
                source = InMemorySnapshotSource()
        scanner = Scanner(
            evaluator=ExpressionEvaluator(
                PredicateEvaluator(
                    inclusive_between=settings.evaluation.inclusive_between
                )
            ),
            export_max_rows=settings.export.max_rows,
            export_precision=settings.export.precision,
        )
        alerts = AlertManager(
            source=source,
            scanner=scanner,
            dispatcher=build_dispatcher(
                settings.dispatch.webhook_url, settings.dispatch.timeout_seconds
            ),
            rule_store=AlertRuleStore(get_rules_path() if persist_rules else None),
            interval_s=settings.scheduler.interval_seconds,
            max_workers=settings.scheduler.max_workers,
            slow_tick_s=settings.scheduler.slow_tick_seconds,
            dispatch_max_attempts=settings.dispatch.max_attempts,
            dispatch_backoff_s=settings.dispatch.backoff_seconds,
        )
        return cls(
            source=source,
            catalog=load_preset_catalog(),
            scanner=scanner,
            alerts=alerts,
        )

    # Scans run off the event loop; they share the immutable universe
    # snapshot with any in-flight scheduler tick.

    async def scan(self, criteria: CriteriaSet, offset: int = 0) -> ScanResult:
        return await self._run_scan(self._scan_sync, criteria, offset)

    async def scan_with_preset(
        self, template_id: str, offset: int = 0
    ) -> tuple[ScanResult, ScreenerTemplate]:
        return await self._run_scan(self._scan_preset_sync, template_id, offset)

    async def export_csv(self, criteria: CriteriaSet) -> str:
        return await self._run_scan(self._export_sync, criteria)

    def list_templates(self, category: Optional[str] = None) -> list[ScreenerTemplate]:
        return self.catalog.list(category)

    def get_template(self, template_id: str) -> Optional[ScreenerTemplate]:
        return self.catalog.get(template_id)

    def status(self) -> dict:
        with self._scan_lock:
            scanning = self._scans_in_flight > 0
        last_tick = self.alerts.last_tick_at
        last_scan = self.last_scan_time
        if last_tick is not None and (last_scan is None or last_tick > last_scan):
            last_scan = last_tick
        return {
            "is_scanning": scanning or self.alerts.is_ticking,
            "last_scan_time": last_scan,
            "last_tick_time": last_tick,
            "active_alerts": self.alerts.active_count(),
            "available_templates": len(self.catalog.list()),
            "scheduler_running": self.alerts.running,
        }

    def create_alert_rule(
        self, name: str, criteria: CriteriaSet, priority: AlertPriority, is_active: bool = True
    ) -> AlertRule:
        return self.alerts.create_rule(name, criteria, priority, is_active=is_active)

    def update_alert_rule(self, rule_id: str, **changes) -> AlertRule:
        return self.alerts.update_rule(rule_id, **changes)

    def delete_alert_rule(self, rule_id: str) -> AlertRule:
        return self.alerts.delete_rule(rule_id)

    def list_alert_rules(self) -> list[AlertRuleView]:
        return self.alerts.list_rules()

    def get_alert_history(self, rule_id: str) -> list[TriggerEvent]:
        return self.alerts.history(rule_id)

    async def _run_scan(self, func, *args):
        with self._scan_lock:
            self._scans_in_flight += 1
        try:
            return await asyncio.to_thread(func, *args)
        finally:
            with self._scan_lock:
                self._scans_in_flight -= 1

    def _scan_sync(self, criteria: CriteriaSet, offset: int) -> ScanResult:
        logger.info(
            "Starting market scan with {count} filters", count=len(criteria.filters)
        )
        result = self.scanner.scan(criteria, self.source.current(), offset=offset)
        self.last_scan_time = datetime.now(timezone.utc)
        return result

    def _scan_preset_sync(
        self, template_id: str, offset: int
    ) -> tuple[ScanResult, ScreenerTemplate]:
        result = self.scanner.scan_with_preset(
            template_id, self.source.current(), self.catalog, offset=offset
        )
        self.last_scan_time = datetime.now(timezone.utc)
        return result

    def _export_sync(self, criteria: CriteriaSet) -> str:
        content = self.scanner.export(criteria, self.source.current())
        self.last_scan_time = datetime.now(timezone.utc)
        return content


_service_instance: Optional[ScreenerService] = None


def get_screener_service() -> ScreenerService:
    """Get the global service instance, built from settings on first use."""
    global _service_instance
    if _service_instance is None:
        _service_instance = ScreenerService.from_settings(load_settings())
    return _service_instance


def set_screener_service(service: Optional[ScreenerService]) -> None:
    global _service_instance
    _service_instance = service
