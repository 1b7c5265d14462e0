"""
Amazon Product Advertising API 5.0 backend.

Requirements:
  • Amazon Associates account (free to join)
  • PA-API access key + secret + associate (partner) tag

One SearchItems call per lookup, ItemCount=1: the best match's ASIN becomes
the product identifier (and so the key of the long-lived SKU cache entry),
its first offer listing supplies the retail price, and the feature bullets are
passed through as specifications for the synthesis prompt.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

import aiohttp

import aws_sigv4
import config
from pricing_backends.base import PricingBackend, PricingResult, parse_price
from providers.base import STATUS_SUCCESS

logger = logging.getLogger(__name__)

_SERVICE      = "ProductAdvertisingAPI"
_PATH         = "/paapi5/searchitems"
_AMZ_TARGET   = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.SearchItems"
_CONTENT_TYPE = "application/json; charset=utf-8"

_SEARCH_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "ItemInfo.Features",
    "ItemInfo.ProductInfo",
    "Offers.Listings.Price",
    "Offers.Listings.Availability.Message",
]


class PaapiBackend(PricingBackend):

    name = "amazon-product"

    def __init__(
        self,
        access_key: Optional[str],
        secret_key: Optional[str],
        associate_tag: Optional[str],
        marketplace: str = "www.amazon.com",
        priority: int = 2,
    ) -> None:
        self._access_key    = access_key
        self._secret_key    = secret_key
        self._associate_tag = associate_tag
        self._marketplace   = marketplace
        self._host   = "webservices.amazon.com"
        self._region = "us-east-1"
        self.priority = priority

    def is_enabled(self) -> bool:
        return bool(self._access_key and self._secret_key and self._associate_tag)

    async def search_product(self, product_name: str, category: Optional[str] = None) -> PricingResult:
        if not self.is_enabled():
            return PricingResult.failure("Amazon Product API not configured")

        logger.info("PA-API: searching for '%s'", product_name)
        try:
            data = await self._call(product_name)
        except Exception as exc:
            logger.error("PA-API search failed: %s", exc)
            return PricingResult.failure(str(exc))

        items = data.get("SearchResult", {}).get("Items", [])
        if not items:
            logger.warning("PA-API: no products found for '%s'", product_name)
            return PricingResult.failure("No products found")

        parsed = self._parse_item(items[0])
        if parsed is None:
            return PricingResult.failure("Unparseable PA-API item")
        return parsed

    # ── PA-API HTTP call with AWS SigV4 ───────────────────────────────────────

    async def _call(self, keyword: str) -> dict:
        payload = {
            "Keywords":    keyword,
            "SearchIndex": "All",
            "PartnerTag":  self._associate_tag,
            "PartnerType": "Associates",
            "Marketplace": self._marketplace,
            "ItemCount":   1,
            "Resources":   _SEARCH_RESOURCES,
        }
        body    = json.dumps(payload).encode()
        headers = aws_sigv4.signed_headers(
            access_key=self._access_key,
            secret_key=self._secret_key,
            region=self._region,
            service=_SERVICE,
            host=self._host,
            path=_PATH,
            amz_target=_AMZ_TARGET,
            body=body,
            content_type=_CONTENT_TYPE,
            extra_headers={"content-encoding": "amz-1.0"},
        )

        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"https://{self._host}{_PATH}", data=body, headers=headers,
                timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
            ) as resp:
                data = await resp.json(content_type=None)
                if resp.status != 200:
                    err = (data.get("Errors") or [{}])[0].get("Message", str(data))
                    raise RuntimeError(f"PA-API {resp.status}: {err}")
                return data

    # ── Item parser ────────────────────────────────────────────────────────────

    def _parse_item(self, raw: dict) -> Optional[PricingResult]:
        try:
            asin = raw["ASIN"]
        except (KeyError, TypeError):
            logger.warning("PA-API item without ASIN: %s", str(raw)[:200])
            return None

        info  = raw.get("ItemInfo") or {}
        title = (info.get("Title") or {}).get("DisplayValue", "Unknown")

        try:
            image_url = raw["Images"]["Primary"]["Large"]["URL"]
        except (KeyError, TypeError):
            image_url = None

        retail_price: Optional[float] = None
        currency = "USD"
        availability = "unknown"
        try:
            listing      = raw["Offers"]["Listings"][0]
            retail_price = parse_price(listing.get("Price", {}).get("Amount"))
            currency     = listing.get("Price", {}).get("Currency", "USD")
            availability = listing.get("Availability", {}).get("Message", "unknown").lower()
        except (KeyError, IndexError, TypeError):
            pass

        features = (info.get("Features") or {}).get("DisplayValues") or []
        specifications = {f"feature_{i}": feature for i, feature in enumerate(features, start=1)}

        logger.info("PA-API found %s: %s (price=%s)", asin, title[:50], retail_price)
        return PricingResult(
            status=STATUS_SUCCESS,
            retail_price=retail_price,
            currency=currency,
            product_id=asin,
            product_title=title,
            product_url=raw.get("DetailPageURL"),
            image_url=image_url,
            specifications=specifications or None,
            availability=availability,
        )
