"""
Abstract base for all price lookup backends.
Every backend returns the same PricingResult — Stage 2 doesn't care which
backend answered.
"""
from __future__ import annotations

import re
from abc import abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from providers.base import STATUS_ERROR, STATUS_SUCCESS, Provider


@dataclass
class PriceRange:
    min: float
    max: float


@dataclass
class PricingResult:
    status: str
    error: Optional[str] = None
    retail_price: Optional[float] = None
    used_price: Optional[float] = None
    price_range: Optional[PriceRange] = None
    currency: str = "USD"
    product_id: Optional[str] = None            # SKU / ASIN / UPC, when the backend has one
    product_title: Optional[str] = None
    product_description: Optional[str] = None
    product_url: Optional[str] = None
    image_url: Optional[str] = None
    specifications: Optional[dict[str, Any]] = None
    availability: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    cached: bool = field(default=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(cls, error: str) -> "PricingResult":
        return cls(status=STATUS_ERROR, error=error)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("cached")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PricingResult":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and k != "cached"}
        if isinstance(known.get("price_range"), dict):
            known["price_range"] = PriceRange(**known["price_range"])
        known.setdefault("status", STATUS_ERROR)
        return cls(**known)


class PricingBackend(Provider):
    """All pricing backends must implement this interface."""

    @abstractmethod
    async def search_product(
        self,
        product_name: str,
        category: Optional[str] = None,
    ) -> PricingResult:
        """
        Look up market prices for `product_name`.
        Never raises for expected API failures: returns PricingResult.failure().
        """
        ...


# ── Helpers ───────────────────────────────────────────────────────────────────

_PRICE_RE = re.compile(r"[\d,]+\.?\d*")


def parse_price(raw: Any) -> Optional[float]:
    """
    Parse "$1,234.56", "1234.56", 1234.56 → 1234.56.
    Returns None for anything that isn't a positive number.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else None
    match = _PRICE_RE.search(str(raw))
    if not match:
        return None
    try:
        value = float(match.group().replace(",", ""))
    except ValueError:
        return None
    return value if value > 0 else None


def price_summary(prices: list[float]) -> tuple[float, PriceRange]:
    """(mean, range) for a non-empty list of prices."""
    return sum(prices) / len(prices), PriceRange(min=min(prices), max=max(prices))
