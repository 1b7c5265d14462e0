"""
Tests for pricing_backends/.

Covers:
  - parse_price / price_summary helpers
  - ShopSavvy: offer mean as retail, history-derived used price, MSRP fallback
  - PA-API: _parse_item happy path + missing optional fields + no ASIN,
    signed request headers
  - SerpAPI Google Shopping: offer averaging over mocked aiohttp
  - eBay: list-wrapped JSON unwrapping, used price from sold listings
  - every backend: disabled → failure, HTTP error → failure (never raises)
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pricing_backends.base import PriceRange, PricingResult, parse_price, price_summary
from pricing_backends.ebay_backend import EbayBackend
from pricing_backends.paapi_backend import PaapiBackend
from pricing_backends.serpapi_backend import SerpApiShoppingBackend
from pricing_backends.shopsavvy_backend import ShopSavvyBackend


def fake_session(payload, status=200, method="get"):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=payload)
    mock_resp.text = AsyncMock(return_value="error text")
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    setattr(mock_session, method, MagicMock(return_value=mock_resp))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


# ── Helpers ───────────────────────────────────────────────────────────────────

class TestParsePrice:
    @pytest.mark.parametrize("raw,expected", [
        ("$1,234.56", 1234.56),
        ("349.99", 349.99),
        (42, 42.0),
        ("USD 10", 10.0),
        (0, None),
        ("free", None),
        (None, None),
        (-5, None),
    ])
    def test_values(self, raw, expected):
        assert parse_price(raw) == expected

    def test_price_summary(self):
        avg, rng = price_summary([100.0, 200.0, 300.0])
        assert avg == 200.0
        assert rng == PriceRange(min=100.0, max=300.0)

    def test_result_round_trip_restores_range(self):
        result = PricingResult(status="success", retail_price=10.0, price_range=PriceRange(5.0, 15.0))
        restored = PricingResult.from_dict(result.to_dict())
        assert restored == result
        assert isinstance(restored.price_range, PriceRange)


# ── ShopSavvy ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestShopSavvy:
    async def test_disabled(self):
        result = await ShopSavvyBackend(None).search_product("x")
        assert not result.ok
        assert "not configured" in result.error

    async def test_offer_mean_and_history(self):
        backend = ShopSavvyBackend("key")
        data = {"success": True, "data": [{
            "id": "SS-1", "title": "Sony WH-1000XM4",
            "pricing": [{"price": 300}, {"price": "$400.00"}, {"price": None}],
            "price_history": [{"price": 250}, {"price": 350}],
        }]}
        with patch.object(backend, "_call", new_callable=AsyncMock, return_value=data):
            result = await backend.search_product("Sony WH-1000XM4")

        assert result.ok
        assert result.retail_price == pytest.approx(350.0)
        assert result.used_price == pytest.approx(180.0)
        assert result.price_range == PriceRange(min=300.0, max=400.0)
        assert result.product_id == "SS-1"

    async def test_msrp_fallback(self):
        backend = ShopSavvyBackend("key")
        data = {"success": True, "data": [{"title": "Thing", "msrp": "$99.00"}]}
        with patch.object(backend, "_call", new_callable=AsyncMock, return_value=data):
            result = await backend.search_product("Thing")
        assert result.retail_price == 99.0
        assert result.used_price is None
        assert result.product_id is None

    async def test_no_product(self):
        backend = ShopSavvyBackend("key")
        with patch.object(backend, "_call", new_callable=AsyncMock, return_value={"success": True, "data": []}):
            result = await backend.search_product("Thing")
        assert result.error == "No product found"

    async def test_http_error(self):
        backend = ShopSavvyBackend("key")
        with patch("pricing_backends.shopsavvy_backend.aiohttp.ClientSession",
                   return_value=fake_session({}, status=429)):
            result = await backend.search_product("Thing")
        assert not result.ok
        assert "429" in result.error


# ── PA-API ────────────────────────────────────────────────────────────────────

@pytest.fixture
def paapi():
    return PaapiBackend(
        access_key="AKIATEST",
        secret_key="wJalrXUtnFEMI/K7MDENG/bPxRfiCYEXAMPLEKEY",
        associate_tag="testtag-20",
    )


PAAPI_ITEM = {
    "ASIN": "B0863TXGM3",
    "DetailPageURL": "https://www.amazon.com/dp/B0863TXGM3",
    "ItemInfo": {
        "Title": {"DisplayValue": "Sony WH-1000XM4"},
        "Features": {"DisplayValues": ["Noise cancelling", "30h battery"]},
    },
    "Images": {"Primary": {"Large": {"URL": "https://m.media-amazon.com/x.jpg"}}},
    "Offers": {"Listings": [{
        "Price": {"Amount": 278.0, "Currency": "USD"},
        "Availability": {"Message": "In Stock"},
    }]},
}


class TestPaapiParse:
    def test_happy_path(self, paapi):
        result = paapi._parse_item(PAAPI_ITEM)
        assert result.product_id == "B0863TXGM3"
        assert result.retail_price == 278.0
        assert result.availability == "in stock"
        assert result.specifications == {"feature_1": "Noise cancelling", "feature_2": "30h battery"}
        assert result.image_url.endswith("x.jpg")

    def test_missing_optional_fields(self, paapi):
        result = paapi._parse_item({"ASIN": "B000000000"})
        assert result.ok
        assert result.retail_price is None
        assert result.product_title == "Unknown"
        assert result.specifications is None
        assert result.image_url is None

    def test_no_asin(self, paapi):
        assert paapi._parse_item({"ItemInfo": {}}) is None

    def test_disabled_without_tag(self):
        assert PaapiBackend("a", "b", None).is_enabled() is False


@pytest.mark.asyncio
class TestPaapiSearch:
    async def test_search_uses_first_item(self, paapi):
        data = {"SearchResult": {"Items": [PAAPI_ITEM]}}
        with patch.object(paapi, "_call", new_callable=AsyncMock, return_value=data) as mock_call:
            result = await paapi.search_product("Sony WH-1000XM4", "Electronics")
        mock_call.assert_awaited_once_with("Sony WH-1000XM4")
        assert result.product_id == "B0863TXGM3"

    async def test_no_items(self, paapi):
        with patch.object(paapi, "_call", new_callable=AsyncMock, return_value={"SearchResult": {}}):
            result = await paapi.search_product("nothing")
        assert result.error == "No products found"

    async def test_signed_request(self, paapi):
        session = fake_session({"SearchResult": {"Items": [PAAPI_ITEM]}}, method="post")
        with patch("pricing_backends.paapi_backend.aiohttp.ClientSession", return_value=session):
            await paapi.search_product("Sony WH-1000XM4")

        kwargs = session.post.call_args.kwargs
        headers = kwargs["headers"]
        assert session.post.call_args.args[0] == "https://webservices.amazon.com/paapi5/searchitems"
        assert headers["Content-Encoding"] == "amz-1.0"
        assert headers["X-Amz-Target"].endswith("SearchItems")
        assert headers["Authorization"].startswith("AWS4-HMAC-SHA256 Credential=AKIATEST/")
        assert b'"ItemCount": 1' in kwargs["data"]

    async def test_api_error(self, paapi):
        session = fake_session({"Errors": [{"Message": "Throttled"}]}, status=429, method="post")
        with patch("pricing_backends.paapi_backend.aiohttp.ClientSession", return_value=session):
            result = await paapi.search_product("x")
        assert "Throttled" in result.error


# ── SerpAPI Google Shopping ───────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSerpApi:
    async def test_average_offer_price(self):
        payload = {"shopping_results": [
            {"title": "Sony WH-1000XM4", "source": "Best Buy", "extracted_price": 300.0, "link": "https://a"},
            {"title": "Sony WH-1000XM4", "source": "Walmart", "price": "$320.00"},
            {"title": "Refurb", "source": "eBay", "price": "see site"},
        ]}
        with patch("pricing_backends.serpapi_backend.aiohttp.ClientSession", return_value=fake_session(payload)):
            result = await SerpApiShoppingBackend("key").search_product("Sony WH-1000XM4")

        assert result.retail_price == pytest.approx(310.0)
        assert result.price_range == PriceRange(min=300.0, max=320.0)
        assert result.extra["merchant_count"] == 2
        assert result.product_url == "https://a"
        assert result.product_id is None

    async def test_no_results(self):
        with patch("pricing_backends.serpapi_backend.aiohttp.ClientSession",
                   return_value=fake_session({"shopping_results": []})):
            result = await SerpApiShoppingBackend("key").search_product("x")
        assert result.error == "No products found"


# ── eBay ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestEbay:
    async def test_used_price_from_sold_items(self):
        payload = {"findCompletedItemsResponse": [{
            "searchResult": [{"item": [
                {"title": ["Sony WH-1000XM4 used"], "viewItemURL": ["https://ebay/1"],
                 "sellingStatus": [{"currentPrice": [{"__value__": "180.00"}]}],
                 "condition": [{"conditionDisplayName": ["Used"]}]},
                {"title": ["Sony WH-1000XM4"],
                 "sellingStatus": [{"currentPrice": [{"__value__": "220.00"}]}]},
                {"title": ["no price"], "sellingStatus": [{}]},
            ]}],
        }]}
        with patch("pricing_backends.ebay_backend.aiohttp.ClientSession", return_value=fake_session(payload)):
            result = await EbayBackend("app").search_product("Sony WH-1000XM4")

        assert result.used_price == pytest.approx(200.0)
        assert result.retail_price is None
        assert result.extra["sold_count"] == 2
        assert result.product_title == "Sony WH-1000XM4 used"

    async def test_no_items(self):
        payload = {"findCompletedItemsResponse": [{"searchResult": [{"@count": "0"}]}]}
        with patch("pricing_backends.ebay_backend.aiohttp.ClientSession", return_value=fake_session(payload)):
            result = await EbayBackend("app").search_product("x")
        assert result.error == "No sold items found"

    async def test_disabled(self):
        assert not (await EbayBackend(None).search_product("x")).ok
