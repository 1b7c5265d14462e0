"""
Tests for server.py — the HTTP API, driven through aiohttp's test client.

Services are built by services.build_services() with stub providers and a
temporary cache, so the whole stack (cache decorators included) is exercised.

Covers:
  - /pipeline/analyze: success with logs, validation errors, pipeline error → 500
  - /pipeline/analyze-batch: limits and partial results
  - /pipeline/group: happy path, not configured → 503, backend failure → 502
  - /pipeline/health, /usage/stats, /usage/report
  - /usage/cache/stats and /usage/cache/clear
"""
from __future__ import annotations

import json

import pytest
import pytest_asyncio
from aiohttp import test_utils

from cache import CacheStore
from notifications import LogAlertSink
from pricing_backends.base import PricingResult
from providers.base import STATUS_SUCCESS
from server import build_web_app
from services import build_services
from stubs import LISTING_JSON, StubPricing, StubText, StubVision, headphones_vision


class GroupingBackend:
    name = "gemini-vision"

    def __init__(self, enabled=True, reply=None, exc=None):
        self._enabled = enabled
        self._reply = reply
        self._exc = exc

    def is_enabled(self):
        return self._enabled

    async def generate_from_images(self, prompt, image_urls, max_tokens=2048):
        if self._exc is not None:
            raise self._exc
        return self._reply


def make_services(tmp_path, vision=None, grouping=None):
    return build_services(
        vision_providers=[vision or StubVision("google-cloud-vision", result=headphones_vision())],
        pricing_backends=[StubPricing(
            "shopsavvy", result=PricingResult(status=STATUS_SUCCESS, retail_price=375.0),
        )],
        text_providers=[StubText("openai-llm", text=LISTING_JSON)],
        grouping_backend=grouping or GroupingBackend(reply=json.dumps({
            "scenario": "same_product",
            "products": [{"imageIndices": [0, 1], "title": "Sony WH-1000XM4", "confidence": 92}],
        })),
        cache=CacheStore(tmp_path / "server-cache.db"),
        sink=LogAlertSink(),
    )


async def open_client(services) -> test_utils.TestClient:
    await services.start()
    client = test_utils.TestClient(test_utils.TestServer(build_web_app(services)))
    await client.start_server()
    return client


@pytest_asyncio.fixture
async def client(tmp_path):
    client = await open_client(make_services(tmp_path))
    yield client
    await client.close()


# ── /pipeline/analyze ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyze:
    async def test_success(self, client):
        resp = await client.post("/pipeline/analyze", json={"image_url": "https://x/headphones.jpg"})
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "success"
        assert data["final_product"]["category"] == "Electronics"
        assert data["step1"]["cached"] is False
        assert any(entry["step"] == "STEP1" for entry in data["logs"])

    async def test_second_call_is_cached(self, client):
        await client.post("/pipeline/analyze", json={"image_url": "https://x/headphones.jpg"})
        resp = await client.post("/pipeline/analyze", json={"image_url": "https://x/headphones.jpg"})
        data = await resp.json()
        assert data["step1"]["cached"] is True

    async def test_camel_case_options(self, client):
        resp = await client.post("/pipeline/analyze", json={
            "image_url": "https://x/headphones.jpg",
            "options": {"skipStep3": True},
        })
        data = await resp.json()
        assert "step3" not in data
        assert "final_product" not in data

    async def test_missing_image_url(self, client):
        resp = await client.post("/pipeline/analyze", json={})
        assert resp.status == 400
        assert "image_url" in (await resp.json())["error"]

    async def test_invalid_json(self, client):
        resp = await client.post("/pipeline/analyze", data="not json",
                                 headers={"Content-Type": "application/json"})
        assert resp.status == 400

    async def test_bad_options(self, client):
        resp = await client.post("/pipeline/analyze", json={"image_url": "https://x/a.jpg", "options": [1]})
        assert resp.status == 400

    async def test_string_false_flag_runs_pipeline(self, client):
        resp = await client.post("/pipeline/analyze", json={
            "image_url": "https://x/headphones.jpg",
            "options": {"skipStep1": "false"},
        })
        data = await resp.json()
        assert data["final_product"]["category"] == "Electronics"

    async def test_unparseable_flag(self, client):
        resp = await client.post("/pipeline/analyze", json={
            "image_url": "https://x/a.jpg", "options": {"skipStep1": "maybe"},
        })
        assert resp.status == 400

    async def test_pipeline_error(self, tmp_path):
        client = await open_client(make_services(tmp_path, vision=StubVision("google-cloud-vision")))
        try:
            resp = await client.post("/pipeline/analyze", json={"image_url": "https://x/a.jpg"})
            assert resp.status == 500
            data = await resp.json()
            assert data["status"] == "error"
            assert "vision" in data["error"]
        finally:
            await client.close()


# ── /pipeline/analyze-batch ───────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyzeBatch:
    async def test_batch(self, client):
        resp = await client.post("/pipeline/analyze-batch", json={
            "image_urls": ["https://x/1.jpg", "https://x/2.jpg"],
        })
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "success"
        assert data["total_images"] == 2
        assert len(data["results"]) == 2

    async def test_empty_list(self, client):
        resp = await client.post("/pipeline/analyze-batch", json={"image_urls": []})
        assert resp.status == 400

    async def test_too_many_images(self, client):
        resp = await client.post("/pipeline/analyze-batch", json={
            "image_urls": [f"https://x/{i}.jpg" for i in range(101)],
        })
        assert resp.status == 400
        assert "100" in (await resp.json())["error"]


# ── /pipeline/group ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGroup:
    async def test_group(self, client):
        resp = await client.post("/pipeline/group", json={"image_urls": ["https://x/1.jpg", "https://x/2.jpg"]})
        assert resp.status == 200
        data = await resp.json()
        assert data["scenario"] == "same_product"
        assert data["products"][0]["image_indices"] == [0, 1]

    async def test_not_configured(self, tmp_path):
        client = await open_client(make_services(tmp_path, grouping=GroupingBackend(enabled=False)))
        try:
            resp = await client.post("/pipeline/group", json={"image_urls": ["https://x/1.jpg"]})
            assert resp.status == 503
        finally:
            await client.close()

    async def test_backend_failure(self, tmp_path):
        client = await open_client(make_services(tmp_path, grouping=GroupingBackend(exc=RuntimeError("boom"))))
        try:
            resp = await client.post("/pipeline/group", json={"image_urls": ["https://x/1.jpg"]})
            assert resp.status == 502
            assert "boom" in (await resp.json())["error"]
        finally:
            await client.close()


# ── Health / usage / cache ────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestOperational:
    async def test_health(self, client):
        resp = await client.get("/pipeline/health")
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["services"] == {"google-cloud-vision": True, "shopsavvy": True, "openai-llm": True}
        assert data["cache"] is True

    async def test_usage_stats(self, client):
        await client.post("/pipeline/analyze", json={"image_url": "https://x/headphones.jpg"})
        resp = await client.get("/usage/stats", params={"provider": "shopsavvy", "period": "month"})
        data = await resp.json()
        assert data["period"] == "month"
        assert data["stats"][0]["provider"] == "shopsavvy"
        assert data["stats"][0]["total_calls"] == 1

    async def test_usage_stats_bad_period(self, client):
        resp = await client.get("/usage/stats", params={"period": "year"})
        assert resp.status == 400

    async def test_usage_report(self, client):
        data = await (await client.get("/usage/report")).json()
        assert {"daily", "monthly", "alerts", "cache"} <= set(data)

    async def test_cache_stats_and_clear(self, client):
        await client.post("/pipeline/analyze", json={"image_url": "https://x/headphones.jpg"})

        stats = await (await client.get("/usage/cache/stats")).json()
        assert stats["by_prefix"] == {"pricing": 1, "vision": 1}

        resp = await client.post("/usage/cache/clear", json={"prefix": "vision"})
        assert await resp.json() == {"success": True, "prefix": "vision", "removed": 1}

        stats = await (await client.get("/usage/cache/stats")).json()
        assert stats["by_prefix"] == {"pricing": 1}

    async def test_cache_clear_requires_prefix(self, client):
        resp = await client.post("/usage/cache/clear", json={})
        assert resp.status == 400
