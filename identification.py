"""
identification.py — Stage 1: visual identification.

Vision providers are tried one at a time in registry order; the first success
wins and later providers are not queried. If none succeeds (or none is
enabled) the stage raises AllProvidersFailed: there is no fallback for raw
visual identification.

The winning provider's output is unified into one UnifiedDetection:
  primary object   web entity > localised object > label > "Unknown Product"
  visual tags      labels + object names, case-insensitively deduplicated at
                   their best confidence, sorted by confidence
  detected text    split into lines, deduplicated, short fragments dropped
  category         first keyword-table hit over primary object + tags
  confidence       mean provider confidence, clamped to [0, 1]
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from errors import AllProvidersFailed, ProviderCallFailed
from models import (
    CATEGORIES, OTHER_CATEGORY, Step1Result, UnifiedDetection,
    canonical_category, utc_timestamp,
)
from providers.base import VisionProvider, VisionResult, mean
from providers.registry import ProviderRegistry
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown Product"
MIN_TEXT_LENGTH = 3
MAX_WEB_ENTITIES = 10

# Ordered: the first category with any keyword in the text wins.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Electronics",       ("phone", "computer", "laptop", "tablet", "camera", "headphone",
                           "speaker", "tv", "monitor", "electronic")),
    ("Furniture",         ("chair", "table", "desk", "sofa", "bed", "furniture", "cabinet", "shelf")),
    ("Clothing",          ("shirt", "pants", "dress", "shoe", "jacket", "clothing", "apparel", "fashion")),
    ("Home & Garden",     ("kitchen", "garden", "home", "decor", "appliance", "tool")),
    ("Sports & Outdoors", ("sport", "fitness", "outdoor", "bike", "exercise", "athletic",
                           "trainer", "running")),
    ("Books & Media",     ("book", "magazine", "media", "dvd", "cd", "vinyl")),
    ("Toys & Games",      ("toy", "game", "puzzle", "doll", "action figure", "lego")),
    ("Automotive",        ("car", "auto", "vehicle", "tire", "automotive")),
)


def determine_category(primary_object: str, tags: list[str]) -> str:
    text = " ".join([primary_object, *tags]).lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return OTHER_CATEGORY


def _visual_tags(result: VisionResult) -> list[str]:
    best: dict[str, tuple[str, float]] = {}     # lower-cased → (display name, confidence)
    for det in [*result.labels, *result.objects]:
        name = (det.name or "").strip()
        if not name:
            continue
        key = name.lower()
        if key not in best or det.confidence > best[key][1]:
            best[key] = (best[key][0] if key in best else name, det.confidence)
    ranked = sorted(best.values(), key=lambda item: item[1], reverse=True)
    return [name for name, _ in ranked]


def _detected_text(result: VisionResult) -> list[str]:
    seen: set[str] = set()
    lines: list[str] = []
    for item in result.text:
        for line in (item.detected_text or "").splitlines():
            line = line.strip()
            if len(line) < MIN_TEXT_LENGTH or line in seen:
                continue
            seen.add(line)
            lines.append(line)
    return lines


def _primary_object(result: VisionResult, tags: list[str]) -> str:
    entities = [e for e in result.web_entities if (e.description or "").strip()]
    if entities:
        return max(entities, key=lambda e: e.score).description.strip()
    objects = [o for o in result.objects if (o.name or "").strip()]
    if objects:
        return max(objects, key=lambda o: o.confidence).name.strip()
    if tags:
        return tags[0]
    return UNKNOWN_PRODUCT


def _provider_confidence(result: VisionResult) -> float:
    if result.confidence is not None:
        return result.confidence
    scores = (
        [d.confidence for d in result.labels]
        + [d.confidence for d in result.objects]
        + [e.score for e in result.web_entities]
    )
    return mean(scores)


def unify_results(results: list[VisionResult], category_override: Optional[str] = None) -> UnifiedDetection:
    """Merge successful provider results into one detection record."""
    ok = [r for r in results if r.ok]
    if not ok:
        raise AllProvidersFailed("All vision providers failed")

    merged = VisionResult(status=ok[0].status)
    for r in ok:
        merged.objects.extend(r.objects)
        merged.labels.extend(r.labels)
        merged.text.extend(r.text)
        merged.web_entities.extend(r.web_entities)

    tags = _visual_tags(merged)
    primary = _primary_object(merged, tags)
    category = canonical_category(category_override) or determine_category(primary, tags)
    confidence = max(0.0, min(1.0, mean([_provider_confidence(r) for r in ok])))

    unified = UnifiedDetection(
        primary_object=primary,
        category=category,
        detected_text=_detected_text(merged),
        visual_tags=tags,
        confidence=confidence,
        web_entities=merged.web_entities[:MAX_WEB_ENTITIES],
    )
    logger.info(
        "Unified detection: %r → %s (%d tags, %d text lines, confidence %.2f)",
        unified.primary_object, unified.category,
        len(unified.visual_tags), len(unified.detected_text), unified.confidence,
    )
    return unified


class IdentificationStep:

    def __init__(self, registry: ProviderRegistry[VisionProvider], usage: UsageMonitor) -> None:
        self.registry = registry
        self.usage = usage

    async def execute(self, image_url: str, category_override: Optional[str] = None) -> Step1Result:
        logger.info("▶ Step 1 (identification) started: %s", image_url)
        t0 = time.monotonic()

        if category_override and canonical_category(category_override) is None:
            logger.warning(
                "Ignoring unknown category override %r (expected one of: %s)",
                category_override, ", ".join(CATEGORIES),
            )

        providers = self.registry.get_enabled_providers()
        if not providers:
            logger.error("✖ Step 1 failed: no vision providers available")
            raise AllProvidersFailed("No vision providers available")
        logger.info("Available vision providers: %s", ", ".join(p.name for p in providers))

        sources: dict[str, dict] = {}
        failures: list[ProviderCallFailed] = []
        winner: Optional[VisionResult] = None
        winner_name = ""
        for provider in providers:
            logger.info("Trying vision provider: %s", provider.name)
            try:
                result = await provider.analyze_image(image_url)
            except Exception as exc:
                logger.error("Vision provider %s raised: %s", provider.name, exc)
                sources[provider.name] = VisionResult.failure(str(exc)).to_dict()
                failures.append(ProviderCallFailed(provider.name, str(exc)))
                continue

            await self.usage.record(provider.name, "analyze_image", cached=result.cached)
            sources[provider.name] = result.to_dict()
            if result.ok:
                logger.info("Vision provider %s succeeded%s", provider.name, " (cached)" if result.cached else "")
                winner, winner_name = result, provider.name
                break
            logger.warning("Vision provider %s failed: %s", provider.name, result.error)
            failures.append(ProviderCallFailed(provider.name, result.error or "unknown error"))

        if winner is None:
            logger.error("✖ Step 1 failed after %dms: all vision providers failed", _ms_since(t0))
            raise AllProvidersFailed("All vision providers failed", failures) from failures[-1]

        unified = unify_results([winner], category_override)
        duration_ms = _ms_since(t0)
        logger.info("✔ Step 1 finished in %dms", duration_ms)
        return Step1Result(
            timestamp=utc_timestamp(),
            duration_ms=duration_ms,
            provider=winner_name,
            cached=winner.cached,
            sources=sources,
            unified=unified,
        )


def _ms_since(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)
