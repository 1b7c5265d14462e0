"""
synthesis.py — Stage 3: listing copy generation.

One prompt (detection summary + pricing summary + provider product data) is
sent to the enabled text backends in turn: backends that own the requested
model first, then the rest in priority order. Each reply goes through a
two-phase parse (outermost brace span → JSON → required title/description);
any failure moves on to the next backend. When every backend is unavailable
or fails, a deterministic template fills every field. This stage never
raises for backend problems.
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

from errors import ResponseParseFailed
from models import (
    CATEGORIES, CONDITIONS, GeneratedContent, LLMInfo, SEO,
    Step1Result, Step2Result, Step3Result, canonical_category, utc_timestamp,
)
from providers.base import STATUS_ERROR, STATUS_SUCCESS, TextProvider, extract_json_object
from providers.registry import ProviderRegistry
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)

FALLBACK_MODEL = "fallback-template"
FALLBACK_CONFIDENCE = 0.3
DEFAULT_LLM_CONFIDENCE = 0.7

SYSTEM_PROMPT = (
    "You are a product listing expert. Generate comprehensive, accurate "
    "product metadata in JSON format."
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", (text or "").lower()).strip("-")


def _money(value: Optional[float]) -> str:
    return f"${value:.2f}" if value else "Unknown"


def build_prompt(step1: Step1Result, step2: Step2Result) -> str:
    detection = step1.unified
    pricing = step2.unified

    product_data = []
    if pricing.product_title:
        product_data.append(f"- Product Title: {pricing.product_title}")
    if pricing.product_description:
        product_data.append(f"- Product Description: {pricing.product_description[:300]}")
    if pricing.product_specifications:
        specs = json.dumps(pricing.product_specifications, default=str)[:200]
        product_data.append(f"- Specifications: {specs}")
    extra = ""
    if product_data:
        extra = f"\n\n**PRODUCT DATA ({pricing.source}):**\n" + "\n".join(product_data)

    identifiers = json.dumps(pricing.product_identifiers) if pricing.product_identifiers else "None"

    return f"""Generate comprehensive, SEO-optimized product metadata based on the following analysis:

**VISUAL ANALYSIS:**
- Primary Object: {detection.primary_object}
- Category: {detection.category}
- Detected Text: {', '.join(detection.detected_text) or 'None'}
- Visual Tags: {', '.join(detection.visual_tags[:15])}
- Confidence: {detection.confidence * 100:.1f}%

**PRICING DATA:**
- Retail Price: {_money(pricing.retail_price)}
- Used Price Estimate: {_money(pricing.used_price_estimate)}
- Product Identifiers: {identifiers}{extra}

**TASK:**
Generate a complete product listing with the following JSON structure:

{{
  "title": "A clear, descriptive product title (50-80 characters)",
  "description": "A detailed 3-4 paragraph product description highlighting features, benefits, and condition",
  "short_description": "A 1-2 sentence summary (100-150 characters)",
  "bullet_points": ["Key feature 1", "Key feature 2", "Key feature 3", "Key feature 4", "Key feature 5"],
  "seo": {{
    "meta_title": "SEO-optimized title (50-60 characters)",
    "meta_description": "SEO-optimized description (150-160 characters)",
    "keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"],
    "slug": "url-friendly-product-slug"
  }},
  "category": "Exact category from: {', '.join(CATEGORIES)}",
  "tags": ["tag1", "tag2", "tag3", "tag4", "tag5"],
  "condition_assessment": "One of: {', '.join(CONDITIONS)}",
  "confidence": 0.0-1.0 (your confidence in this analysis)
}}

**GUIDELINES:**
- Use all available data (visual, pricing, product data) to create accurate descriptions
- Prefer product titles and descriptions from the product data when present
- Incorporate detected text and visual tags naturally
- Meta title 50-60 characters, meta description 150-160 characters
- 5-10 keywords: brand, product type, key features, category, common search terms
- The slug should be lowercase with hyphens
- Assess condition based on visual cues and available data

Return ONLY the JSON object, no additional text."""


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _confidence(value: Any) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return DEFAULT_LLM_CONFIDENCE
    if conf <= 0:
        return DEFAULT_LLM_CONFIDENCE
    if conf > 1:
        conf = conf / 100      # some models answer in percent
    return min(conf, 1.0)


def parse_generated(raw: Optional[str], fallback_category: str) -> GeneratedContent:
    """
    Parse and validate a model reply. Raises ResponseParseFailed when there is
    no JSON object, it doesn't parse, or title/description are missing.
    """
    span = extract_json_object(raw)
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        raise ResponseParseFailed(f"JSON parse error: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseParseFailed("expected a JSON object")

    title = str(data.get("title") or "").strip()
    description = str(data.get("description") or "").strip()
    if not title or not description:
        raise ResponseParseFailed("Missing required fields: title or description")

    short = str(data.get("short_description") or "").strip() or description[:150]
    seo_raw = data.get("seo") if isinstance(data.get("seo"), dict) else {}
    condition = str(data.get("condition_assessment") or "unknown").strip().lower()

    return GeneratedContent(
        title=title,
        description=description,
        short_description=short,
        bullet_points=_str_list(data.get("bullet_points")),
        seo=SEO(
            meta_title=str(seo_raw.get("meta_title") or title),
            meta_description=str(seo_raw.get("meta_description") or short or description[:160]),
            keywords=_str_list(seo_raw.get("keywords")),
            slug=slugify(str(seo_raw.get("slug") or title)),
        ),
        category=canonical_category(data.get("category")) or fallback_category,
        tags=_str_list(data.get("tags")),
        condition_assessment=condition if condition in CONDITIONS else "unknown",
        confidence=_confidence(data.get("confidence")),
    )


def generate_fallback(step1: Step1Result, step2: Step2Result) -> GeneratedContent:
    """Deterministic template: same inputs always give identical output."""
    detection = step1.unified
    pricing = step2.unified

    title = detection.primary_object
    category = detection.category
    price = pricing.retail_price or pricing.used_price_estimate

    description = f"{title} in {category} category. "
    if detection.detected_text:
        description += f"Features: {', '.join(detection.detected_text[:3])}. "
    if price:
        description += f"Estimated retail value: ${price:.2f}. "
    description += "This item is available for sale. Please contact for more details."

    short = f"{title} - {category}"
    return GeneratedContent(
        title=title,
        description=description,
        short_description=short,
        bullet_points=detection.visual_tags[:5],
        seo=SEO(
            meta_title=f"{title} | Buy Now",
            meta_description=short,
            keywords=[title, category, *detection.visual_tags[:3]],
            slug=slugify(title),
        ),
        category=category,
        tags=detection.visual_tags[:5],
        condition_assessment="unknown",
        confidence=FALLBACK_CONFIDENCE,
    )


class SynthesisStep:

    def __init__(self, registry: ProviderRegistry[TextProvider], usage: UsageMonitor) -> None:
        self.registry = registry
        self.usage = usage

    def _backends(self, llm_model: Optional[str]) -> list[TextProvider]:
        enabled = self.registry.get_enabled_providers()
        preferred = [p for p in enabled if p.supports_model(llm_model)]
        return preferred + [p for p in enabled if p not in preferred]

    async def execute(
        self,
        step1: Step1Result,
        step2: Step2Result,
        llm_model: Optional[str] = None,
        category_override: Optional[str] = None,
    ) -> Step3Result:
        logger.info("▶ Step 3 (synthesis) started")
        t0 = time.monotonic()

        forced_category = canonical_category(category_override)
        prompt = build_prompt(step1, step2)
        attempts: list[dict] = []
        generated: Optional[GeneratedContent] = None
        llm: Optional[LLMInfo] = None

        for backend in self._backends(llm_model):
            logger.info("Generating listing copy with %s", backend.name)
            try:
                result = await backend.generate(prompt, system_prompt=SYSTEM_PROMPT, model=llm_model)
            except Exception as exc:
                logger.error("Text backend %s raised: %s", backend.name, exc)
                attempts.append({"provider": backend.name, "status": STATUS_ERROR, "error": str(exc)})
                continue

            await self.usage.record(backend.name, "generate")
            if not result.ok:
                logger.warning("Text backend %s failed: %s", backend.name, result.error)
                attempts.append({"provider": backend.name, "status": STATUS_ERROR, "error": result.error})
                continue

            try:
                generated = parse_generated(result.text, step1.unified.category)
            except ResponseParseFailed as exc:
                logger.warning("Text backend %s returned unusable output: %s", backend.name, exc)
                attempts.append({"provider": backend.name, "status": STATUS_ERROR, "error": str(exc)})
                continue

            attempts.append({"provider": backend.name, "status": STATUS_SUCCESS})
            llm = LLMInfo(model=result.model or backend.model_id, status=STATUS_SUCCESS,
                          tokens_used=result.tokens_used)
            break

        degraded = generated is None
        if degraded:
            logger.warning("All text backends unavailable or failed, using template")
            generated = generate_fallback(step1, step2)
            last_error = attempts[-1]["error"] if attempts else "No text generation backend configured"
            llm = LLMInfo(model=FALLBACK_MODEL, status=STATUS_ERROR, error=last_error)

        if forced_category:
            generated.category = forced_category

        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.info("✔ Step 3 finished in %dms (%s)", duration_ms, llm.model)
        return Step3Result(
            timestamp=utc_timestamp(),
            duration_ms=duration_ms,
            llm=llm,
            generated=generated,
            degraded=degraded,
            attempts=attempts,
        )
