"""Notification dispatch boundary for triggered alert rules."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx
from loguru import logger

from .constants import DISPATCH_BACKOFF_S, DISPATCH_MAX_ATTEMPTS, DISPATCH_TIMEOUT_S
from .errors import DispatchFailure
from .schemas import AlertPriority


class NotificationDispatcher(Protocol):
    async def notify(
        self, rule_id: str, priority: AlertPriority, symbols: list[str]
    ) -> None: ...


class LoggingDispatcher:
    """Dry-run dispatcher: logs the notification instead of sending it."""

    async def notify(
        self, rule_id: str, priority: AlertPriority, symbols: list[str]
    ) -> None:
        logger.info(
            "[dry-run] rule {rule_id} ({priority}) -> {symbols}",
            rule_id=rule_id,
            priority=priority.value,
            symbols=", ".join(symbols),
        )


class WebhookDispatcher:
    """POST a JSON notification to a webhook endpoint."""

    def __init__(
        self,
        url: str,
        timeout_s: float = DISPATCH_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._client = client

    async def notify(
        self, rule_id: str, priority: AlertPriority, symbols: list[str]
    ) -> None:
        payload = {
            "rule_id": rule_id,
            "priority": priority.value,
            "symbols": symbols,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json=payload, timeout=self.timeout_s
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DispatchFailure(rule_id, str(exc) or type(exc).__name__) from exc


async def dispatch_with_retry(
    dispatcher: NotificationDispatcher,
    rule_id: str,
    priority: AlertPriority,
    symbols: list[str],
    max_attempts: int = DISPATCH_MAX_ATTEMPTS,
    backoff_s: float = DISPATCH_BACKOFF_S,
) -> bool:
    """Deliver one notification with bounded exponential backoff.

    Returns False once attempts are exhausted; the notification is dropped.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            await dispatcher.notify(rule_id, priority, symbols)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Dispatch for rule {rule_id} failed on attempt {attempt}/{max_attempts}: {error}",
                rule_id=rule_id,
                attempt=attempt,
                max_attempts=max_attempts,
                error=exc,
            )
            if attempt < max_attempts:
                await asyncio.sleep(backoff_s * (2 ** (attempt - 1)))
    logger.error(
        "Dropping notification for rule {rule_id} after {max_attempts} attempts ({count} symbols)",
        rule_id=rule_id,
        max_attempts=max_attempts,
        count=len(symbols),
    )
    return False


def build_dispatcher(
    webhook_url: Optional[str], timeout_s: float = DISPATCH_TIMEOUT_S
) -> NotificationDispatcher:
    if webhook_url:
        return WebhookDispatcher(webhook_url, timeout_s=timeout_s)
    logger.info("No webhook configured; alert notifications will be logged only")
    return LoggingDispatcher()
