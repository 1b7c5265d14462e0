"""
server.py — HTTP interface over the pipeline, usage monitor and cache.

Runs as an aiohttp web server in the main asyncio event loop.

Endpoints:
  POST /pipeline/analyze        {image_url, options?}        → PipelineResult + logs
  POST /pipeline/analyze-batch  {image_urls[1..100], options?} → BatchResult + logs
  POST /pipeline/group          {image_urls[1..100], category?} → MultiImageAnalysis
  GET  /pipeline/health         → enabled flag per registered provider
  GET  /usage/stats?provider&period=day|month
  GET  /usage/report
  GET  /usage/cache/stats
  POST /usage/cache/clear       {prefix}

options keys may be camelCase (skipStep1, skipPricing, llmModel, …) or snake_case.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

import config
import request_trace
from errors import AllProvidersFailed
from models import PipelineOptions
from providers.base import STATUS_ERROR
from services import Services

logger = logging.getLogger(__name__)

SERVICES = web.AppKey("services", Services)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _error(status: int, message: str, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be valid JSON"}),
            content_type="application/json",
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be a JSON object"}),
            content_type="application/json",
        )
    return body


def _image_urls(body: dict) -> list[str]:
    urls = body.get("image_urls")
    if not isinstance(urls, list) or not urls:
        raise ValueError("image_urls must be a non-empty array")
    if len(urls) > config.MAX_BATCH_IMAGES:
        raise ValueError(f"Maximum {config.MAX_BATCH_IMAGES} images per batch")
    if not all(isinstance(u, str) and u.strip() for u in urls):
        raise ValueError("image_urls must contain only non-empty strings")
    return [u.strip() for u in urls]


# ── Pipeline handlers ──────────────────────────────────────────────────────────

async def handle_analyze(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    body = await _json_body(request)

    image_url = body.get("image_url")
    if not isinstance(image_url, str) or not image_url.strip():
        return _error(400, "image_url is required")
    try:
        options = PipelineOptions.from_dict(body.get("options"))
    except ValueError as exc:
        return _error(400, str(exc))

    with request_trace.capture() as logs:
        try:
            result = await services.pipeline.process_image(image_url.strip(), options)
        except Exception as exc:
            logger.exception("Unexpected pipeline error")
            return _error(500, str(exc), logs=list(logs))

    payload = {**result.to_dict(), "logs": list(logs)}
    status = 500 if result.status == STATUS_ERROR else 200
    return web.json_response(payload, status=status)


async def handle_analyze_batch(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    body = await _json_body(request)
    try:
        urls = _image_urls(body)
        options = PipelineOptions.from_dict(body.get("options"))
    except ValueError as exc:
        return _error(400, str(exc))

    with request_trace.capture() as logs:
        try:
            result = await services.pipeline.process_batch(urls, options)
        except Exception as exc:
            logger.exception("Unexpected batch error")
            return _error(500, str(exc), logs=list(logs))

    return web.json_response({**result.to_dict(), "logs": list(logs)})


async def handle_group(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    body = await _json_body(request)
    try:
        urls = _image_urls(body)
    except ValueError as exc:
        return _error(400, str(exc))

    category = body.get("category") or body.get("manualCategory")
    try:
        analysis = await services.grouping.analyze(urls, category if isinstance(category, str) else None)
    except AllProvidersFailed as exc:
        return _error(503, str(exc))
    except Exception as exc:
        logger.error("Multi-image analysis failed: %s", exc)
        return _error(502, f"Failed to analyze multiple images: {exc}")
    return web.json_response(analysis.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    return web.json_response({
        "status":   "ok",
        "version":  config.PIPELINE_VERSION,
        "services": services.health(),
        "cache":    services.cache.is_enabled(),
    })


# ── Usage / cache handlers ─────────────────────────────────────────────────────

async def handle_usage_stats(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    provider = request.query.get("provider") or None
    period = request.query.get("period", "day")
    try:
        stats = services.usage.get_stats(provider, period)
    except ValueError as exc:
        return _error(400, str(exc))
    return web.json_response({
        "period": period,
        "stats":  [s.to_dict() for s in stats],
    })


async def handle_usage_report(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    report = services.usage.get_report()
    report["cache"] = await services.cache.get_stats()
    return web.json_response(report)


async def handle_cache_stats(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    return web.json_response(await services.cache.get_stats())


async def handle_cache_clear(request: web.Request) -> web.Response:
    services = request.app[SERVICES]
    body = await _json_body(request)
    prefix = body.get("prefix")
    if not isinstance(prefix, str) or not prefix.strip():
        return _error(400, "prefix is required")
    removed = await services.cache.clear_prefix(prefix.strip())
    return web.json_response({"success": True, "prefix": prefix.strip(), "removed": removed})


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app(services: Services) -> web.Application:
    app = web.Application(client_max_size=4 * 1024 * 1024)
    app[SERVICES] = services
    app.router.add_post("/pipeline/analyze",       handle_analyze)
    app.router.add_post("/pipeline/analyze-batch", handle_analyze_batch)
    app.router.add_post("/pipeline/group",         handle_group)
    app.router.add_get("/pipeline/health",         handle_health)
    app.router.add_get("/usage/stats",             handle_usage_stats)
    app.router.add_get("/usage/report",            handle_usage_report)
    app.router.add_get("/usage/cache/stats",       handle_cache_stats)
    app.router.add_post("/usage/cache/clear",      handle_cache_clear)
    return app


async def start_server(services: Services) -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app(services)
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT)
    await site.start()
    logger.info("🌐 Listing pipeline API on %s:%d", config.SERVER_HOST, config.SERVER_PORT)
    return runner
