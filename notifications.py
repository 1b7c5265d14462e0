"""
notifications.py — Delivery of usage/cost alerts.

The usage monitor only decides *when* to alert; an AlertSink decides *where*.
  LogAlertSink       — WARNING log line (default)
  TelegramAlertSink  — Telegram message to every configured chat id, and a log line

Usage:
    sink = notifications.build_sink()     # called once in services.py
    await sink.send(alert)                # called by UsageMonitor
Failures are logged, never raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from telegram import Bot

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    provider: str
    kind: str           # "daily" | "monthly" | "cost"
    current: float
    limit: float

    @property
    def percentage(self) -> float:
        return self.current / self.limit * 100 if self.limit else 0.0

    def format(self) -> str:
        if self.kind == "cost":
            return (
                f"💰 {self.provider} cost at {self.percentage:.1f}% "
                f"(${self.current:.2f}/${self.limit:.2f})"
            )
        return (
            f"⚠️ {self.provider} {self.kind} usage at {self.percentage:.1f}% "
            f"({int(self.current)}/{int(self.limit)} calls)"
        )


class AlertSink:
    """Base sink: subclasses override send()."""

    async def send(self, alert: Alert) -> None:
        raise NotImplementedError


class LogAlertSink(AlertSink):

    async def send(self, alert: Alert) -> None:
        logger.warning("USAGE ALERT: %s", alert.format())


class TelegramAlertSink(AlertSink):

    def __init__(self, token: str, chat_ids: Iterable[int]) -> None:
        self._token = token
        self._chat_ids = sorted(set(chat_ids))
        self._log = LogAlertSink()

    async def send(self, alert: Alert) -> None:
        await self._log.send(alert)
        try:
            async with Bot(self._token) as bot:
                for chat_id in self._chat_ids:
                    try:
                        await bot.send_message(
                            chat_id=chat_id,
                            text=alert.format(),
                            disable_web_page_preview=True,
                        )
                    except Exception as exc:
                        logger.warning("Failed to notify chat %d: %s", chat_id, exc)
        except Exception as exc:
            logger.warning("Telegram alert delivery failed: %s", exc)


def build_sink(token: Optional[str] = None, chat_ids: Optional[Iterable[int]] = None) -> AlertSink:
    """Telegram when a bot token and at least one chat id are configured, else log only."""
    token = token if token is not None else config.TELEGRAM_BOT_TOKEN
    chat_ids = set(chat_ids if chat_ids is not None else config.ALERT_CHAT_IDS)
    if token and chat_ids:
        logger.info("Usage alerts → Telegram (%d chats)", len(chat_ids))
        return TelegramAlertSink(token, chat_ids)
    return LogAlertSink()
