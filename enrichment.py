"""
enrichment.py — Stage 2: price enrichment.

Pricing backends are tried in registry order until one succeeds. Unlike
Stage 1, total failure is not fatal: a category → USD range table yields
  retail = midpoint, used = 60 % of retail, confidence 0.2.

Confidence for a provider answer:
  +0.5 retail present, +0.3 used present,
  +0.1 when the missing one is derived (used = retail × 0.6, retail = used × 1.5),
  +0.2 when both were supplied; clamped to [0, 1].
Skipping pricing returns an empty record with confidence 0.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from errors import AllProvidersFailed, ProviderCallFailed
from models import OTHER_CATEGORY, Step2Result, UnifiedDetection, UnifiedPricing, utc_timestamp
from pricing_backends.base import PricingBackend, PricingResult
from providers.registry import ProviderRegistry
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)

USED_FRACTION   = 0.6
RETAIL_MARKUP   = 1.5
HEURISTIC_CONFIDENCE = 0.2
HEURISTIC_SOURCE = "heuristic"

# (min, max) USD
CATEGORY_PRICE_RANGES: dict[str, tuple[float, float]] = {
    "Electronics":       (50, 500),
    "Furniture":         (100, 800),
    "Clothing":          (20, 150),
    "Home & Garden":     (30, 200),
    "Sports & Outdoors": (40, 300),
    "Books & Media":     (10, 50),
    "Toys & Games":      (15, 100),
    "Automotive":        (50, 500),
    "Other":             (25, 150),
}


def estimate_price(category: str) -> tuple[float, float]:
    """(retail, used) from the category range table."""
    low, high = CATEGORY_PRICE_RANGES.get(category, CATEGORY_PRICE_RANGES[OTHER_CATEGORY])
    retail = (low + high) / 2
    return retail, retail * USED_FRACTION


def heuristic_pricing(category: str) -> UnifiedPricing:
    retail, used = estimate_price(category)
    logger.info("Heuristic price for %s: retail $%.2f, used $%.2f", category, retail, used)
    return UnifiedPricing(
        retail_price=retail,
        used_price_estimate=used,
        price_confidence=HEURISTIC_CONFIDENCE,
        source=HEURISTIC_SOURCE,
    )


def unify_pricing(results: list[tuple[str, PricingResult]], category: str) -> UnifiedPricing:
    """
    Merge (provider, result) pairs. Falls back to the heuristic table when no
    successful result carries a price at all.
    """
    retail: Optional[float] = None
    used: Optional[float] = None
    confidence = 0.0
    identifiers: dict[str, str] = {}
    description = None
    specifications = None
    title = None
    source = None

    for provider, result in results:
        if not result.ok:
            continue
        source = source or provider
        if retail is None and result.retail_price:
            retail = result.retail_price
            confidence += 0.5
        if used is None and result.used_price:
            used = result.used_price
            confidence += 0.3
        if result.product_id:
            identifiers[provider] = result.product_id
        description = description or result.product_description
        specifications = specifications or result.specifications
        title = title or result.product_title

    if retail is None and used is None:
        logger.warning("No pricing data found, using category estimate")
        fallback = heuristic_pricing(category)
        fallback.product_identifiers = identifiers
        fallback.product_description = description
        fallback.product_specifications = specifications
        fallback.product_title = title
        return fallback

    if used is None:
        used = retail * USED_FRACTION
        confidence += 0.1
    elif retail is None:
        retail = used * RETAIL_MARKUP
        confidence += 0.1
    else:
        confidence += 0.2

    unified = UnifiedPricing(
        retail_price=retail,
        used_price_estimate=used,
        price_confidence=min(max(confidence, 0.0), 1.0),
        product_identifiers=identifiers,
        product_description=description,
        product_specifications=specifications,
        product_title=title,
        source=source,
    )
    logger.info(
        "Pricing unified: retail $%.2f, used $%.2f, confidence %.2f",
        unified.retail_price, unified.used_price_estimate, unified.price_confidence,
    )
    return unified


class EnrichmentStep:

    def __init__(self, registry: ProviderRegistry[PricingBackend], usage: UsageMonitor) -> None:
        self.registry = registry
        self.usage = usage

    async def execute(self, detection: UnifiedDetection, skip_pricing: bool = False) -> Step2Result:
        logger.info("▶ Step 2 (enrichment) started: %r", detection.primary_object)
        t0 = time.monotonic()

        if skip_pricing:
            logger.info("Pricing lookup skipped")
            return Step2Result(
                timestamp=utc_timestamp(),
                duration_ms=_ms_since(t0),
                sources={},
                unified=UnifiedPricing(price_confidence=0.0),
                skipped=True,
            )

        providers = self.registry.get_enabled_providers()
        results: list[tuple[str, PricingResult]] = []
        sources: dict[str, dict] = {}
        failures: list[ProviderCallFailed] = []

        if not providers:
            logger.warning("No pricing providers available, using category estimate")
        else:
            logger.info("Available pricing providers: %s", ", ".join(p.name for p in providers))

        for provider in providers:
            logger.info("Trying pricing provider: %s", provider.name)
            try:
                result = await provider.search_product(detection.primary_object, detection.category)
            except Exception as exc:
                logger.error("Pricing provider %s raised: %s", provider.name, exc)
                sources[provider.name] = PricingResult.failure(str(exc)).to_dict()
                failures.append(ProviderCallFailed(provider.name, str(exc)))
                continue

            await self.usage.record(provider.name, "search_product", cached=result.cached)
            sources[provider.name] = result.to_dict()
            results.append((provider.name, result))
            if result.ok:
                logger.info("Pricing provider %s succeeded%s", provider.name, " (cached)" if result.cached else "")
                break
            logger.warning("Pricing provider %s failed: %s", provider.name, result.error)
            failures.append(ProviderCallFailed(provider.name, result.error or "unknown error"))
        else:
            if failures:
                # recovered below by the category table
                logger.warning("%s", AllProvidersFailed("All pricing providers failed", failures))

        unified = unify_pricing(results, detection.category)
        duration_ms = _ms_since(t0)
        logger.info("✔ Step 2 finished in %dms", duration_ms)
        return Step2Result(
            timestamp=utc_timestamp(),
            duration_ms=duration_ms,
            sources=sources,
            unified=unified,
            degraded=unified.source == HEURISTIC_SOURCE,
        )


def _ms_since(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)
