"""
usage_monitor.py — per-provider call accounting, cost estimates and threshold alerts.

Every provider invocation made by a stage is recorded here, cache hits
included (cached=True, cost 0). Stats are computed on demand from the
in-memory log for the current UTC day or month.

The log lives only as long as the process; nothing is persisted across
restarts. With max_records=0 it grows without bound; a positive value keeps
only the most recent records (older ones drop out of the aggregates too).

Alerts: after every record, the provider's AlertConfig (if any) is checked
against *non-cached* call counts (daily, monthly) and monthly cost. Each
(provider, kind, UTC day) fires at most once.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from notifications import Alert, AlertSink, LogAlertSink

logger = logging.getLogger(__name__)

# Estimated USD per non-cached call.
DEFAULT_COSTS: dict[str, float] = {
    "google-cloud-vision": 0.0015,
    "aws-rekognition":     0.001,
    "gemini-vision":       0.0,
    "claude-vision":       0.0,
    "shopsavvy":           0.01,
    "amazon-product":      0.0,
    "google-shopping":     0.005,
    "ebay":                0.0,
    "gemini-llm":          0.0,
    "openai-llm":          0.002,
}


@dataclass(frozen=True)
class AlertConfig:
    provider: str
    daily_limit: int
    monthly_limit: int
    cost_limit: float
    alert_threshold_percent: float = 80

    def reached(self, value: float, limit: float) -> bool:
        return limit > 0 and value >= limit * (self.alert_threshold_percent / 100)


DEFAULT_ALERTS: tuple[AlertConfig, ...] = (
    AlertConfig("google-cloud-vision", daily_limit=33,   monthly_limit=1000,  cost_limit=0),
    AlertConfig("aws-rekognition",     daily_limit=166,  monthly_limit=5000,  cost_limit=0),
    AlertConfig("shopsavvy",           daily_limit=33,   monthly_limit=1000,  cost_limit=10),
    AlertConfig("gemini-llm",          daily_limit=1500, monthly_limit=45000, cost_limit=0),
)


@dataclass
class UsageRecord:
    provider: str
    endpoint: str
    timestamp: datetime
    cached: bool
    cost: float


@dataclass
class UsageStats:
    provider: str
    total_calls: int
    cached_calls: int
    api_calls: int
    total_cost: float
    cache_hit_rate: float       # percent

    def to_dict(self) -> dict:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageMonitor:

    def __init__(
        self,
        sink: Optional[AlertSink] = None,
        alerts: tuple[AlertConfig, ...] = DEFAULT_ALERTS,
        costs: Optional[dict[str, float]] = None,
        max_records: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sink = sink or LogAlertSink()
        self._alerts = {a.provider: a for a in alerts}
        self._costs = dict(DEFAULT_COSTS if costs is None else costs)
        self._records: deque[UsageRecord] = deque(maxlen=max_records or None)
        self._alerts_sent: set[str] = set()
        self._clock = clock

    @property
    def alert_configs(self) -> list[AlertConfig]:
        return list(self._alerts.values())

    def cost_for(self, provider: str) -> float:
        return self._costs.get(provider, 0.0)

    async def record(self, provider: str, endpoint: str, cached: bool = False) -> UsageRecord:
        rec = UsageRecord(
            provider=provider,
            endpoint=endpoint,
            timestamp=self._clock(),
            cached=cached,
            cost=0.0 if cached else self.cost_for(provider),
        )
        self._records.append(rec)
        logger.info(
            "Usage recorded: %s.%s (cached: %s, cost: $%.4f)",
            provider, endpoint, cached, rec.cost,
        )
        await self._check_limits(provider)
        return rec

    def get_stats(self, provider: Optional[str] = None, period: str = "day") -> list[UsageStats]:
        if period not in ("day", "month"):
            raise ValueError(f"period must be 'day' or 'month', got {period!r}")

        now = self._clock()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if period == "month":
            start = start.replace(day=1)

        grouped: dict[str, list[UsageRecord]] = {}
        for rec in self._records:
            if not (start <= rec.timestamp <= now):
                continue
            if provider and rec.provider != provider:
                continue
            grouped.setdefault(rec.provider, []).append(rec)

        stats = []
        for name, recs in grouped.items():
            total = len(recs)
            cached = sum(1 for r in recs if r.cached)
            stats.append(UsageStats(
                provider=name,
                total_calls=total,
                cached_calls=cached,
                api_calls=total - cached,
                total_cost=sum(r.cost for r in recs),
                cache_hit_rate=cached / total * 100 if total else 0.0,
            ))
        return stats

    def get_report(self) -> dict:
        return {
            "daily":   [s.to_dict() for s in self.get_stats(period="day")],
            "monthly": [s.to_dict() for s in self.get_stats(period="month")],
            "alerts":  [asdict(a) for a in self.alert_configs],
        }

    def reset(self) -> None:
        self._records.clear()
        self._alerts_sent.clear()

    def __len__(self) -> int:
        return len(self._records)

    # ── Alerts ────────────────────────────────────────────────────────────────

    async def _check_limits(self, provider: str) -> None:
        cfg = self._alerts.get(provider)
        if cfg is None:
            return

        daily = self.get_stats(provider, "day")
        monthly = self.get_stats(provider, "month")

        if daily and cfg.reached(daily[0].api_calls, cfg.daily_limit):
            await self._fire(Alert(provider, "daily", daily[0].api_calls, cfg.daily_limit))
        if monthly and cfg.reached(monthly[0].api_calls, cfg.monthly_limit):
            await self._fire(Alert(provider, "monthly", monthly[0].api_calls, cfg.monthly_limit))
        if monthly and cfg.reached(monthly[0].total_cost, cfg.cost_limit):
            await self._fire(Alert(provider, "cost", monthly[0].total_cost, cfg.cost_limit))

    async def _fire(self, alert: Alert) -> None:
        key = f"{alert.provider}-{alert.kind}-{self._clock().strftime('%Y-%m-%d')}"
        if key in self._alerts_sent:
            return
        self._alerts_sent.add(key)
        try:
            await self._sink.send(alert)
        except Exception as exc:
            logger.error("Alert sink failed for %s: %s", key, exc)
