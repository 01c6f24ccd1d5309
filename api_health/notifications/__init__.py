"""Notifications — Slack and Telegram webhooks driven by checker state events.

Fires notifications on:
- A checker failing terminally (FAILED)
- A checker that keeps failing, at most every N minutes (STILL_FAILING)
- A failing checker passing again (RECOVERED)

Webhook calls never raise into the check path; delivery errors are logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from enum import Enum
from typing import Any

import httpx

from ..config import settings
from ..storage.state import EventKind, StateEvent, StateStore

logger = logging.getLogger(__name__)


class NotifyLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"


_EMOJI = {
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
    NotifyLevel.RECOVERY: "✅",
}


class NotificationManager:
    """Central dispatcher for Slack / Telegram notifications."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
    ) -> None:
        self.slack_webhook = slack_webhook or settings.slack_webhook_url
        self.telegram_token = telegram_token or settings.telegram_bot_token
        self.telegram_chat_id = telegram_chat_id or settings.telegram_chat_id
        self._enabled = bool(self.slack_webhook or (self.telegram_token and self.telegram_chat_id))

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "slack_configured": bool(self.slack_webhook),
            "telegram_configured": bool(self.telegram_token and self.telegram_chat_id),
        }

    # -- High-level notification methods ------------------------------------

    async def notify_failed(self, checker_id: str, message: str) -> None:
        level = NotifyLevel.CRITICAL
        await self._send(f"{_EMOJI[level]} *Checker failed*: `{checker_id}`\nDetail: {message}\n", level)

    async def notify_still_failing(self, checker_id: str, message: str, failures: int) -> None:
        level = NotifyLevel.WARNING
        text = (
            f"{_EMOJI[level]} *Checker still failing*: `{checker_id}`\n"
            f"Failures: {failures}\n"
            f"Detail: {message}\n"
        )
        await self._send(text, level)

    async def notify_recovered(self, checker_id: str) -> None:
        level = NotifyLevel.RECOVERY
        await self._send(f"{_EMOJI[level]} *Checker recovered*: `{checker_id}`\n", level)

    # -- Low-level dispatch -------------------------------------------------

    async def _send(self, text: str, level: NotifyLevel) -> None:
        """Dispatch to all configured channels."""
        if not self._enabled:
            return
        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram_token and self.telegram_chat_id:
            tasks.append(self._send_telegram(text))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(self.slack_webhook, json={"text": text, "mrkdwn": True})
                if resp.status_code != 200:
                    logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
        except httpx.HTTPError as exc:
            logger.warning("Slack notification failed: %s", exc)

    async def _send_telegram(self, text: str) -> None:
        """POST to Telegram Bot API."""
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    url,
                    json={"chat_id": self.telegram_chat_id, "text": text, "parse_mode": "Markdown"},
                )
                if resp.status_code != 200:
                    logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
        except httpx.HTTPError as exc:
            logger.warning("Telegram notification failed: %s", exc)


class NotificationListener:
    """Turns state events into notifications.

    Pass an instance as ``StateStore(on_event=...)``. STILL_FAILING events
    only notify when the last notification is older than
    ``resend_every_minutes``.
    """

    def __init__(
        self,
        store: StateStore,
        notifier: NotificationManager | None = None,
        resend_every_minutes: int | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier or get_notifier()
        self.resend_every_minutes = (
            settings.resend_failed_notifications_every_minutes
            if resend_every_minutes is None else resend_every_minutes
        )
        self._pending: set[asyncio.Task[None]] = set()

    def __call__(self, event: StateEvent) -> None:
        if not self.notifier.is_enabled:
            return

        state = self.store.state_for(event.checker_id)
        message = event.failure.message if event.failure else ""

        if event.kind == EventKind.FAILED:
            self._dispatch(self.notifier.notify_failed(event.checker_id, message))
            state.mark_notified()
        elif event.kind == EventKind.STILL_FAILING:
            if state.should_resend_failed_notification(self.resend_every_minutes):
                self._dispatch(self.notifier.notify_still_failing(
                    event.checker_id, message, len(event.record.failed_at),
                ))
                state.mark_notified()
        elif event.kind == EventKind.RECOVERED:
            self._dispatch(self.notifier.notify_recovered(event.checker_id))

    def _dispatch(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


# -- Singleton -----------------------------------------------------------------

_notifier: NotificationManager | None = None


def get_notifier() -> NotificationManager:
    """Return the process-level notification manager."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationManager()
    return _notifier
