"""
scheduler.py — periodic usage summary.

Every USAGE_SUMMARY_INTERVAL_SECS the current day's per-provider stats are
written to the log. Runs as a background asyncio Task started from main.py.
"""
from __future__ import annotations

import asyncio
import logging

import config
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)

_running = False


def format_summary(monitor: UsageMonitor) -> str:
    stats = monitor.get_stats(period="day")
    if not stats:
        return "Daily usage summary: no provider calls yet"
    lines = ["Daily usage summary:"]
    for s in sorted(stats, key=lambda s: s.provider):
        lines.append(
            f"  {s.provider}: {s.total_calls} calls "
            f"({s.cached_calls} cached, {s.cache_hit_rate:.0f}% hit rate), ${s.total_cost:.4f}"
        )
    return "\n".join(lines)


async def _scheduler_loop(monitor: UsageMonitor, interval: float) -> None:
    logger.info("📅 Usage summary every %ds", int(interval))
    while _running:
        try:
            await asyncio.sleep(interval)
            logger.info(format_summary(monitor))
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Scheduler loop error: %s", exc)


def start(monitor: UsageMonitor, interval: float | None = None) -> asyncio.Task:
    """Start the summary loop as a background asyncio Task."""
    global _running
    _running = True
    return asyncio.create_task(
        _scheduler_loop(monitor, interval or config.USAGE_SUMMARY_INTERVAL_SECS)
    )


def stop() -> None:
    global _running
    _running = False
