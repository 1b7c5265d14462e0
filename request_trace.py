"""
request_trace.py — per-request log capture for the pipeline endpoints.

    with request_trace.capture() as entries:
        result = await pipeline.process_image(url)
    # entries: [{"timestamp", "level", "step", "message"}, ...]

One PipelineTrace handler sits on the pipeline loggers for the process
lifetime; it only keeps records emitted while a capture is active in the
current context. The active capture is a contextvars value, so concurrent
requests each see only their own entries.

Unconfigured pipeline loggers are set to INFO so the trace sees progress
messages; LOG_LEVEL is applied to the stdout and file handlers in main.py, so
those messages do not reach the console unless asked for.
"""
from __future__ import annotations

import contextlib
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

_current: ContextVar[Optional[str]] = ContextVar("pipeline_trace_id", default=None)

_STEP_BY_LOGGER = {
    "identification": "STEP1",
    "enrichment":     "STEP2",
    "synthesis":      "STEP3",
    "pipeline":       "PIPELINE",
    "grouping":       "GROUPING",
    "cache":          "CACHE",
    "usage_monitor":  "USAGE",
    "providers":      "PROVIDER",
    "pricing_backends": "PROVIDER",
}

TRACED_LOGGERS = tuple(_STEP_BY_LOGGER)


def step_for(logger_name: str) -> str:
    return _STEP_BY_LOGGER.get(logger_name.split(".")[0], logger_name.upper())


class PipelineTrace(logging.Handler):

    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self._buffers: dict[str, list[dict]] = {}

    def acquire_buffer(self) -> tuple[str, list[dict]]:
        trace_id = uuid.uuid4().hex
        buffer: list[dict] = []
        self._buffers[trace_id] = buffer
        return trace_id, buffer

    def release_buffer(self, trace_id: str) -> None:
        self._buffers.pop(trace_id, None)

    def emit(self, record: logging.LogRecord) -> None:
        trace_id = _current.get()
        if trace_id is None:
            return
        buffer = self._buffers.get(trace_id)
        if buffer is None:
            return
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        buffer.append({
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level":     record.levelname.lower(),
            "step":      step_for(record.name),
            "message":   message,
        })


_handler: Optional[PipelineTrace] = None


def install() -> PipelineTrace:
    """Attach the shared handler to the pipeline loggers (idempotent)."""
    global _handler
    if _handler is None:
        _handler = PipelineTrace()
        for name in TRACED_LOGGERS:
            lg = logging.getLogger(name)
            lg.addHandler(_handler)
            # explicitly configured levels are left alone
            if lg.level == logging.NOTSET:
                lg.setLevel(logging.INFO)
    return _handler


@contextlib.contextmanager
def capture() -> Iterator[list[dict]]:
    handler = install()
    trace_id, buffer = handler.acquire_buffer()
    token = _current.set(trace_id)
    try:
        yield buffer
    finally:
        _current.reset(token)
        handler.release_buffer(trace_id)
