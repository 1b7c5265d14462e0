"""
eBay Finding API — sold, used listings as a used-price signal.

findCompletedItems filtered to SoldItemsOnly + Condition=Used; the mean sold
price is the used-price estimate. Retail is left empty and derived by Stage 2.
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

import config
from pricing_backends.base import PricingBackend, PricingResult, parse_price, price_summary
from providers.base import STATUS_SUCCESS

logger = logging.getLogger(__name__)

_FINDING_URL = "https://svcs.ebay.com/services/search/FindingService/v1"
_MAX_LISTINGS = 5


def _first(value, default=None):
    """eBay's JSON wraps every scalar in a one-element list."""
    if isinstance(value, list):
        return value[0] if value else default
    return value if value is not None else default


class EbayBackend(PricingBackend):

    name = "ebay"

    def __init__(self, app_id: Optional[str], priority: int = 4) -> None:
        self._app_id = app_id
        self.priority = priority

    def is_enabled(self) -> bool:
        return bool(self._app_id)

    async def search_product(self, product_name: str, category: Optional[str] = None) -> PricingResult:
        if not self.is_enabled():
            return PricingResult.failure("eBay API not configured")

        logger.info("eBay: searching sold listings for '%s'", product_name)
        params = {
            "OPERATION-NAME":                 "findCompletedItems",
            "SERVICE-VERSION":                "1.0.0",
            "SECURITY-APPNAME":               self._app_id,
            "RESPONSE-DATA-FORMAT":           "JSON",
            "REST-PAYLOAD":                   "",
            "keywords":                       product_name,
            "itemFilter(0).name":             "SoldItemsOnly",
            "itemFilter(0).value":            "true",
            "itemFilter(1).name":             "Condition",
            "itemFilter(1).value":            "Used",
            "sortOrder":                      "EndTimeSoonest",
            "paginationInput.entriesPerPage": "20",
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    _FINDING_URL,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise RuntimeError(f"eBay HTTP {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except Exception as exc:
            logger.error("eBay search failed: %s", exc)
            return PricingResult.failure(str(exc))

        response = _first(data.get("findCompletedItemsResponse"), {})
        search   = _first(response.get("searchResult"), {})
        items    = search.get("item") or []
        if not items:
            logger.warning("eBay: no sold items found")
            return PricingResult.failure("No sold items found")

        listings = []
        for item in items:
            selling = _first(item.get("sellingStatus"), {})
            price   = parse_price(_first(selling.get("currentPrice"), {}).get("__value__"))
            if price is None:
                continue
            condition = _first(item.get("condition"), {})
            listings.append({
                "title":     _first(item.get("title"), "Unknown"),
                "price":     price,
                "condition": _first(condition.get("conditionDisplayName"), "Used"),
                "url":       _first(item.get("viewItemURL"), ""),
            })

        if not listings:
            logger.warning("eBay: no valid prices found")
            return PricingResult.failure("No valid prices found")

        avg, price_range = price_summary([l["price"] for l in listings])
        logger.info(
            "eBay: %d sold, $%.2f - $%.2f (avg $%.2f)",
            len(listings), price_range.min, price_range.max, avg,
        )
        return PricingResult(
            status=STATUS_SUCCESS,
            used_price=avg,
            price_range=price_range,
            product_title=listings[0]["title"],
            extra={"sold_count": len(listings), "listings": listings[:_MAX_LISTINGS]},
        )
