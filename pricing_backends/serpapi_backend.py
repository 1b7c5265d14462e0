"""
Google Shopping prices via SerpAPI (engine=google_shopping).

Retail price is the mean of every parseable offer price on the first results
page; the spread becomes price_range. No product identifier is returned, so
lookups through this backend never populate the SKU cache.
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

import config
from pricing_backends.base import PricingBackend, PricingResult, parse_price, price_summary
from providers.base import STATUS_SUCCESS

logger = logging.getLogger(__name__)

_SERPAPI_URL = "https://serpapi.com/search"
_MAX_OFFERS  = 5


class SerpApiShoppingBackend(PricingBackend):

    name = "google-shopping"

    def __init__(self, api_key: Optional[str], priority: int = 3) -> None:
        self._api_key = api_key
        self.priority = priority

    def is_enabled(self) -> bool:
        return bool(self._api_key)

    async def search_product(self, product_name: str, category: Optional[str] = None) -> PricingResult:
        if not self.is_enabled():
            return PricingResult.failure("Google Shopping API not configured")

        logger.info("Google Shopping: searching for '%s'", product_name)
        params = {
            "engine":  "google_shopping",
            "q":       product_name,
            "api_key": self._api_key,
            "num":     10,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    _SERPAPI_URL,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise RuntimeError(f"SerpAPI HTTP {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except Exception as exc:
            logger.error("Google Shopping search failed: %s", exc)
            return PricingResult.failure(str(exc))

        results = data.get("shopping_results") or []
        if not results:
            logger.warning("Google Shopping: no products found")
            return PricingResult.failure("No products found")

        offers = []
        for item in results:
            price = parse_price(item.get("extracted_price") or item.get("price"))
            if price is None:
                continue
            offers.append({
                "merchant": item.get("source") or "Unknown",
                "price":    price,
                "url":      item.get("link") or item.get("product_link") or "",
            })

        if not offers:
            logger.warning("Google Shopping: no valid prices found")
            return PricingResult.failure("No valid prices found")

        avg, price_range = price_summary([o["price"] for o in offers])
        logger.info(
            "Google Shopping: %d offers, $%.2f - $%.2f (avg $%.2f)",
            len(offers), price_range.min, price_range.max, avg,
        )
        return PricingResult(
            status=STATUS_SUCCESS,
            retail_price=avg,
            price_range=price_range,
            product_title=results[0].get("title"),
            product_url=offers[0]["url"] or None,
            image_url=results[0].get("thumbnail"),
            extra={"merchant_count": len(offers), "offers": offers[:_MAX_OFFERS]},
        )
