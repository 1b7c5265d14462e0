"""
grouping.py — multi-image analysis: which photos show the same item?

All images of a request are sent to a multi-image vision backend (Gemini) in
one call, which groups them into products. More than `batch_size` images are
split into ceil(N / batch_size) sub-batches processed one after another;
batch-local indices are shifted to global ones and a failed sub-batch
produces one empty placeholder product per image.

Whatever the model answers, the returned indices are normalised so their
union over all products is exactly {0..N-1} with no duplicates: out-of-range
and repeated indices are dropped, missing ones become single-image
placeholders.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Protocol

import config
from errors import AllProvidersFailed
from models import CATEGORIES, CONDITIONS, canonical_category
from providers.base import parse_json_response
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)

SAME_PRODUCT = "same_product"
MULTIPLE_PRODUCTS = "multiple_products"


class MultiImageBackend(Protocol):
    name: str

    def is_enabled(self) -> bool: ...

    async def generate_from_images(self, prompt: str, image_urls: list[str], max_tokens: int = 2048) -> str: ...


@dataclass
class DetectedProduct:
    image_indices: list[int]
    title: str = ""
    description: str = ""
    category: str = ""
    retail_price: float = 0.0
    used_price: float = 0.0
    condition: str = ""
    confidence: float = 0.0


@dataclass
class MultiImageAnalysis:
    scenario: str
    message: str
    products: list[DetectedProduct] = field(default_factory=list)
    batches: int = 1

    def to_dict(self) -> dict:
        return asdict(self)


def build_prompt(count: int) -> str:
    return f"""Analyze {count} images. Group by product. Respond in JSON format.

RULES:
1. SAME ITEM: Match features (color, shape, texture, labels). Group together with all imageIndices.
2. DIFFERENT ITEMS: Separate products, list only relevant imageIndices.
3. 80%+ similarity = same item.

JSON OUTPUT FORMAT:
Same product: {{"scenario": "same_product", "products": [{{"imageIndices": [0,1,2], "title": "Product Name", "description": "...", "category": "Electronics", "retailPrice": 100, "usedPrice": 70, "condition": "good", "confidence": 90}}]}}

Multiple products: {{"scenario": "multiple_products", "products": [{{"imageIndices": [0,2], ...}}, {{"imageIndices": [1,3], ...}}]}}

Categories: {', '.join(CATEGORIES)}
Conditions: {', '.join(c for c in CONDITIONS if c != 'unknown')}
All imageIndices must cover 0-{count - 1}, no duplicates."""


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _parse_product(raw: dict) -> DetectedProduct:
    indices = []
    for idx in raw.get("imageIndices") or raw.get("image_indices") or []:
        try:
            indices.append(int(idx))
        except (TypeError, ValueError):
            continue
    confidence = _number(raw.get("confidence"))
    if confidence > 1:
        confidence /= 100
    return DetectedProduct(
        image_indices=indices,
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        category=str(raw.get("category") or ""),
        retail_price=_number(raw.get("retailPrice", raw.get("retail_price"))),
        used_price=_number(raw.get("usedPrice", raw.get("used_price"))),
        condition=str(raw.get("condition") or ""),
        confidence=min(max(confidence, 0.0), 1.0),
    )


def normalize_indices(products: list[DetectedProduct], total: int, category: str = "") -> list[DetectedProduct]:
    """Make the index union exactly {0..total-1}; see module docstring."""
    seen: set[int] = set()
    out: list[DetectedProduct] = []
    for product in products:
        kept = []
        for idx in product.image_indices:
            if 0 <= idx < total and idx not in seen:
                seen.add(idx)
                kept.append(idx)
        if kept:
            product.image_indices = kept
            out.append(product)
        elif product.image_indices:
            logger.warning("Dropping product %r: no valid image indices", product.title)
    for idx in range(total):
        if idx not in seen:
            out.append(DetectedProduct(image_indices=[idx], category=category))
    return out


class MultiImageAnalyzer:

    def __init__(
        self,
        backend: MultiImageBackend,
        usage: Optional[UsageMonitor] = None,
        batch_size: int = config.GROUPING_BATCH_SIZE,
    ) -> None:
        self.backend = backend
        self.usage = usage
        self.batch_size = max(1, batch_size)

    def is_enabled(self) -> bool:
        return self.backend.is_enabled()

    async def analyze(self, image_urls: list[str], manual_category: Optional[str] = None) -> MultiImageAnalysis:
        if not self.is_enabled():
            raise AllProvidersFailed("No multi-image analysis backend configured")

        category = (canonical_category(manual_category) or manual_category or "").strip()
        total = len(image_urls)
        logger.info("Multi-image analysis: %d images%s", total, f", category {category!r}" if category else "")

        if total <= self.batch_size:
            analysis = await self._analyze_chunk(image_urls, category)
            analysis.products = normalize_indices(analysis.products, total, category)
            return analysis

        chunks = [image_urls[i:i + self.batch_size] for i in range(0, total, self.batch_size)]
        logger.info("Split %d images into %d batches of up to %d", total, len(chunks), self.batch_size)

        products: list[DetectedProduct] = []
        offset = 0
        for number, chunk in enumerate(chunks, start=1):
            try:
                result = await self._analyze_chunk(chunk, category)
                local = normalize_indices(result.products, len(chunk), category)
                for product in local:
                    product.image_indices = [idx + offset for idx in product.image_indices]
                products.extend(local)
                logger.info("Batch %d/%d: %d products", number, len(chunks), len(local))
            except Exception as exc:
                logger.error("Batch %d/%d failed: %s", number, len(chunks), exc)
                products.extend(
                    DetectedProduct(image_indices=[offset + i], category=category)
                    for i in range(len(chunk))
                )
            offset += len(chunk)

        return MultiImageAnalysis(
            scenario=MULTIPLE_PRODUCTS,
            message=f"Detected {len(products)} items from {total} images (batched processing)",
            products=normalize_indices(products, total, category),
            batches=len(chunks),
        )

    async def _analyze_chunk(self, image_urls: list[str], category: str) -> MultiImageAnalysis:
        raw = await self.backend.generate_from_images(build_prompt(len(image_urls)), image_urls)
        if self.usage is not None:
            await self.usage.record(self.backend.name, "analyze_images")
        data = parse_json_response(raw, self.backend.name)

        products = [_parse_product(p) for p in data.get("products") or [] if isinstance(p, dict)]
        if category:
            for product in products:
                product.category = category

        scenario = data.get("scenario")
        if scenario == SAME_PRODUCT:
            message = f"Detected {len(image_urls)} photos of the same item"
        else:
            scenario = MULTIPLE_PRODUCTS
            message = f"Detected {len(products)} different items"
        return MultiImageAnalysis(scenario=scenario, message=message, products=products)
