"""
ShopSavvy product data API — primary pricing backend.

One GET per lookup: /v1/products?ids=<product name>, Bearer auth.
  retail = mean of positive current offer prices (falls back to MSRP)
  used   = 60 % of the mean historical price, when a price history exists
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from pricing_backends.base import (
    PricingBackend, PricingResult, parse_price, price_summary,
)
from providers.base import STATUS_SUCCESS
import config

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.shopsavvy.com/v1"
_USED_FRACTION = 0.6


class ShopSavvyBackend(PricingBackend):

    name = "shopsavvy"

    def __init__(self, api_key: Optional[str], priority: int = 1) -> None:
        self._api_key = api_key
        self.priority = priority

    def is_enabled(self) -> bool:
        return bool(self._api_key)

    async def search_product(self, product_name: str, category: Optional[str] = None) -> PricingResult:
        if not self.is_enabled():
            return PricingResult.failure("ShopSavvy API not configured")

        logger.info("ShopSavvy: searching for '%s'", product_name)
        try:
            data = await self._call(product_name)
        except Exception as exc:
            logger.error("ShopSavvy search failed: %s", exc)
            return PricingResult.failure(str(exc))

        products = data.get("data") or []
        if not data.get("success") or not products:
            return PricingResult.failure("No product found")
        return self._parse_product(products[0])

    async def _call(self, product_name: str) -> dict:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"{_BASE_URL}/products",
                params={"ids": product_name},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RuntimeError(f"ShopSavvy HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)

    def _parse_product(self, product: dict) -> PricingResult:
        retail_price: Optional[float] = None
        used_price: Optional[float] = None
        price_range = None

        prices = [p for p in (parse_price(o.get("price")) for o in product.get("pricing") or []) if p]
        if prices:
            retail_price, price_range = price_summary(prices)
            history = [
                p for p in (parse_price(h.get("price")) for h in product.get("price_history") or []) if p
            ]
            if history:
                used_price = sum(history) / len(history) * _USED_FRACTION

        if retail_price is None:
            retail_price = parse_price(product.get("msrp"))

        logger.info(
            "ShopSavvy found product: %s (retail=%s, range=%s)",
            product.get("title"),
            f"{retail_price:.2f}" if retail_price else "N/A",
            f"{price_range.min:.2f}-{price_range.max:.2f}" if price_range else "N/A",
        )

        product_id = product.get("id") or product.get("asin") or product.get("upc")
        return PricingResult(
            status=STATUS_SUCCESS,
            retail_price=retail_price,
            used_price=used_price,
            price_range=price_range,
            product_id=str(product_id) if product_id else None,
            product_title=product.get("title"),
            product_description=product.get("description"),
            product_url=product.get("url"),
            image_url=product.get("image_url"),
            specifications=product.get("specifications"),
            availability=product.get("availability"),
        )
