"""
Caching decorators for vision and pricing providers.

A cached wrapper exposes exactly the wrapped provider's interface (same name,
priority and enablement), so registries and stages cannot tell the
difference. On a hit the wrapped provider is not called at all and the
returned result has cached=True. Only successful results are written, so a
failed call is retried on the very next request.

Pricing successes that carry a product identifier also get a second, longer
lived entry under "pricing-sku", readable via get_product_by_sku().
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from cache import CacheStore
from pricing_backends.base import PricingBackend, PricingResult
from providers.base import VisionProvider, VisionResult

logger = logging.getLogger(__name__)

VISION_PREFIX      = "vision"
PRICING_PREFIX     = "pricing"
PRICING_SKU_PREFIX = "pricing-sku"

_WS_RE = re.compile(r"\s+")


def normalize_product_name(name: str) -> str:
    return _WS_RE.sub(" ", name or "").strip().lower()


class CachedVisionProvider(VisionProvider):

    def __init__(self, inner: VisionProvider, store: CacheStore, ttl_seconds: int) -> None:
        self.inner = inner
        self.name = inner.name
        self._store = store
        self._ttl = ttl_seconds

    def get_priority(self) -> int:
        return self.inner.get_priority()

    def is_enabled(self) -> bool:
        return self.inner.is_enabled()

    async def analyze_image(self, image_url: str) -> VisionResult:
        payload = {"provider": self.name, "image_url": (image_url or "").strip()}

        hit = await self._store.get(VISION_PREFIX, payload)
        if hit is not None:
            result = VisionResult.from_dict(hit)
            result.cached = True
            logger.info("[%s] vision result served from cache", self.name)
            return result

        result = await self.inner.analyze_image(image_url)
        if result.ok:
            await self._store.set(VISION_PREFIX, payload, result.to_dict(), self._ttl)
        return result


class CachedPricingProvider(PricingBackend):

    def __init__(
        self,
        inner: PricingBackend,
        store: CacheStore,
        ttl_seconds: int,
        sku_ttl_multiplier: int = 7,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self._store = store
        self._ttl = ttl_seconds
        self._sku_ttl = ttl_seconds * sku_ttl_multiplier

    def get_priority(self) -> int:
        return self.inner.get_priority()

    def is_enabled(self) -> bool:
        return self.inner.is_enabled()

    async def search_product(self, product_name: str, category: Optional[str] = None) -> PricingResult:
        payload = {
            "provider":     self.name,
            "product_name": normalize_product_name(product_name),
            "category":     category,
        }

        hit = await self._store.get(PRICING_PREFIX, payload)
        if hit is not None:
            result = PricingResult.from_dict(hit)
            result.cached = True
            logger.info("[%s] pricing result served from cache", self.name)
            return result

        result = await self.inner.search_product(product_name, category)
        if result.ok:
            await self._store.set(PRICING_PREFIX, payload, result.to_dict(), self._ttl)
            if result.product_id:
                await self._store.set(
                    PRICING_SKU_PREFIX,
                    {"provider": self.name, "product_id": result.product_id},
                    result.to_dict(),
                    self._sku_ttl,
                )
        return result

    async def get_product_by_sku(self, product_id: str) -> Optional[PricingResult]:
        """Direct lookup by external product identifier; None when not cached."""
        hit = await self._store.get(PRICING_SKU_PREFIX, {"provider": self.name, "product_id": product_id})
        if hit is None:
            return None
        result = PricingResult.from_dict(hit)
        result.cached = True
        return result
