"""
Tests for synthesis.py — Stage 3.

Covers:
  - parse_generated: fenced JSON, missing fields, defaults, percent confidence
  - generate_fallback determinism
  - SynthesisStep: model-owning backend first, fallback through failures,
    template when everything fails, forced category
"""
from __future__ import annotations

import pytest

from errors import ResponseParseFailed
from models import Step1Result, Step2Result, UnifiedDetection, UnifiedPricing
from providers.registry import ProviderRegistry
from stubs import LISTING_JSON, StubText
from synthesis import (
    FALLBACK_CONFIDENCE, FALLBACK_MODEL, SynthesisStep, build_prompt, generate_fallback,
    parse_generated, slugify,
)


def make_steps(retail=349.99, used=210.0) -> tuple[Step1Result, Step2Result]:
    step1 = Step1Result(
        timestamp="t", duration_ms=1, provider="v", cached=False, sources={},
        unified=UnifiedDetection(
            primary_object="Sony WH-1000XM4",
            category="Electronics",
            detected_text=["SONY", "WH-1000XM4"],
            visual_tags=["Headphones", "Audio equipment", "Black"],
            confidence=0.9,
        ),
    )
    step2 = Step2Result(
        timestamp="t", duration_ms=1, sources={},
        unified=UnifiedPricing(retail_price=retail, used_price_estimate=used, price_confidence=1.0,
                               product_identifiers={"amazon-product": "B0863TXGM3"},
                               product_title="Sony WH-1000XM4 Headphones", source="amazon-product"),
    )
    return step1, step2


def registry_of(*backends) -> ProviderRegistry:
    registry = ProviderRegistry("text")
    for b in backends:
        registry.register(b)
    return registry


# ── Parsing ───────────────────────────────────────────────────────────────────

class TestParseGenerated:
    def test_fenced_json(self):
        generated = parse_generated(LISTING_JSON, "Other")
        assert generated.title.startswith("Sony WH-1000XM4")
        assert generated.category == "Electronics"
        assert generated.condition_assessment == "good"
        assert generated.seo.slug == "sony-wh-1000xm4"
        assert generated.confidence == pytest.approx(0.9)

    def test_prose_around_json(self):
        raw = 'Sure! {"title": "Lamp", "description": "A lamp."} Hope that helps.'
        assert parse_generated(raw, "Other").title == "Lamp"

    def test_missing_title_raises(self):
        with pytest.raises(ResponseParseFailed):
            parse_generated('{"description": "x"}', "Other")

    def test_no_json_raises(self):
        with pytest.raises(ResponseParseFailed):
            parse_generated("I cannot help with that", "Other")

    def test_broken_json_raises(self):
        with pytest.raises(ResponseParseFailed):
            parse_generated('{"title": "x", "description": }', "Other")

    def test_defaults_for_optional_fields(self):
        generated = parse_generated('{"title": "Oak Chair", "description": "Solid oak chair."}', "Furniture")
        assert generated.short_description == "Solid oak chair."
        assert generated.seo.meta_title == "Oak Chair"
        assert generated.seo.slug == "oak-chair"
        assert generated.category == "Furniture"
        assert generated.condition_assessment == "unknown"
        assert generated.confidence == pytest.approx(0.7)
        assert generated.bullet_points == []

    def test_percent_confidence_and_bad_condition(self):
        raw = '{"title": "t", "description": "d", "confidence": 85, "condition_assessment": "mint"}'
        generated = parse_generated(raw, "Other")
        assert generated.confidence == pytest.approx(0.85)
        assert generated.condition_assessment == "unknown"

    def test_slugify(self):
        assert slugify("  Sony WH-1000XM4 (Black)!") == "sony-wh-1000xm4-black"


class TestPromptAndFallback:
    def test_prompt_contains_inputs(self):
        step1, step2 = make_steps()
        prompt = build_prompt(step1, step2)
        assert "Sony WH-1000XM4" in prompt
        assert "$349.99" in prompt
        assert "B0863TXGM3" in prompt
        assert "PRODUCT DATA (amazon-product)" in prompt

    def test_prompt_unknown_prices(self):
        step1, step2 = make_steps(retail=None, used=None)
        assert "Retail Price: Unknown" in build_prompt(step1, step2)

    def test_fallback_is_deterministic(self):
        step1, step2 = make_steps()
        assert generate_fallback(step1, step2) == generate_fallback(step1, step2)

    def test_fallback_fields(self):
        step1, step2 = make_steps()
        generated = generate_fallback(step1, step2)
        assert generated.title == "Sony WH-1000XM4"
        assert generated.category == "Electronics"
        assert "$349.99" in generated.description
        assert generated.seo.meta_title == "Sony WH-1000XM4 | Buy Now"
        assert generated.seo.slug == "sony-wh-1000xm4"
        assert generated.confidence == FALLBACK_CONFIDENCE
        assert generated.tags == ["Headphones", "Audio equipment", "Black"]


# ── Step ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSynthesisStep:
    async def test_uses_first_backend(self, usage):
        openai = StubText("openai-llm", text=LISTING_JSON, priority=1)
        gemini = StubText("gemini-llm", text=LISTING_JSON, priority=2)
        step = SynthesisStep(registry_of(openai, gemini), usage)

        result = await step.execute(*make_steps())

        assert result.degraded is False
        assert result.llm.model == "openai-llm-model"
        assert result.llm.tokens_used == 42
        assert gemini.calls == []
        assert len(usage) == 1

    async def test_requested_model_backend_goes_first(self, usage):
        openai = StubText("openai-llm", text=LISTING_JSON, priority=1, prefix="gpt-")
        gemini = StubText("gemini-llm", text=LISTING_JSON, priority=2, prefix="gemini")
        step = SynthesisStep(registry_of(openai, gemini), usage)

        await step.execute(*make_steps(), llm_model="gemini-1.5-pro")

        assert gemini.calls == ["gemini-1.5-pro"]
        assert openai.calls == []

    async def test_unparseable_reply_falls_through(self, usage):
        bad = StubText("openai-llm", text="no json here", priority=1)
        raising = StubText("other", exc=RuntimeError("down"), priority=2)
        good = StubText("gemini-llm", text=LISTING_JSON, priority=3)
        step = SynthesisStep(registry_of(bad, raising, good), usage)

        result = await step.execute(*make_steps())

        assert result.llm.model == "gemini-llm-model"
        assert [a["status"] for a in result.attempts] == ["error", "error", "success"]

    async def test_template_when_all_fail(self, usage):
        step = SynthesisStep(registry_of(StubText("openai-llm"), StubText("gemini-llm", priority=2)), usage)

        result = await step.execute(*make_steps())

        assert result.degraded is True
        assert result.llm.model == FALLBACK_MODEL
        assert result.llm.status == "error"
        assert result.generated.title == "Sony WH-1000XM4"
        assert result.generated.confidence == FALLBACK_CONFIDENCE

    async def test_template_when_nothing_configured(self, usage):
        step = SynthesisStep(registry_of(StubText("openai-llm", enabled=False)), usage)
        result = await step.execute(*make_steps())
        assert result.degraded is True
        assert "No text generation backend" in result.llm.error

    async def test_forced_category(self, usage):
        step = SynthesisStep(registry_of(StubText("openai-llm", text=LISTING_JSON)), usage)
        result = await step.execute(*make_steps(), category_override="home & garden")
        assert result.generated.category == "Home & Garden"
