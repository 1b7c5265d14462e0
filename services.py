"""
services.py — builds every long-lived object once per process.

    services = build_services()
    await services.start()      # cache schema
    ...
    services.pipeline.process_image(url)

Nothing here is module-level state: tests build their own Services with stub
providers via the keyword overrides.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import config
from cache import CacheStore
from enrichment import EnrichmentStep
from grouping import MultiImageAnalyzer
from identification import IdentificationStep
from notifications import AlertSink, build_sink
from pipeline import ProductImagePipeline
from pricing_backends.base import PricingBackend
from pricing_backends.ebay_backend import EbayBackend
from pricing_backends.paapi_backend import PaapiBackend
from pricing_backends.serpapi_backend import SerpApiShoppingBackend
from pricing_backends.shopsavvy_backend import ShopSavvyBackend
from providers.anthropic_provider import ClaudeVisionProvider
from providers.base import TextProvider, VisionProvider
from providers.cached import CachedPricingProvider, CachedVisionProvider
from providers.gemini_provider import GeminiTextProvider, GeminiVisionProvider
from providers.google_vision_provider import GoogleVisionProvider
from providers.openai_provider import OpenAITextProvider
from providers.registry import ProviderRegistry
from providers.rekognition_provider import RekognitionProvider
from synthesis import SynthesisStep
from usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: CacheStore
    usage: UsageMonitor
    vision: ProviderRegistry[VisionProvider]
    pricing: ProviderRegistry[PricingBackend]
    text: ProviderRegistry[TextProvider]
    pipeline: ProductImagePipeline
    grouping: MultiImageAnalyzer

    async def start(self) -> None:
        await self.cache.init()

    def health(self) -> dict[str, bool]:
        return {
            **self.vision.health(),
            **self.pricing.health(),
            **self.text.health(),
        }


def default_vision_providers() -> list[VisionProvider]:
    p = config.VISION_PRIORITIES
    return [
        GoogleVisionProvider(config.GOOGLE_CLOUD_VISION_API_KEY, priority=p["google-cloud-vision"]),
        GeminiVisionProvider(config.GEMINI_API_KEY, model=config.GEMINI_VISION_MODEL,
                             priority=p["gemini-vision"]),
        ClaudeVisionProvider(config.ANTHROPIC_API_KEY, model=config.CLAUDE_VISION_MODEL,
                             priority=p["claude-vision"]),
        RekognitionProvider(config.AWS_ACCESS_KEY_ID, config.AWS_SECRET_ACCESS_KEY,
                            region=config.AWS_REGION, priority=p["aws-rekognition"]),
    ]


def default_pricing_backends() -> list[PricingBackend]:
    p = config.PRICING_PRIORITIES
    return [
        ShopSavvyBackend(config.SHOPSAVVY_API_KEY, priority=p["shopsavvy"]),
        PaapiBackend(config.AMAZON_ACCESS_KEY, config.AMAZON_SECRET_KEY, config.AMAZON_ASSOCIATE_TAG,
                     marketplace=config.AMAZON_MARKETPLACE, priority=p["amazon-product"]),
        SerpApiShoppingBackend(config.SERPAPI_KEY, priority=p["google-shopping"]),
        EbayBackend(config.EBAY_APP_ID, priority=p["ebay"]),
    ]


def default_text_providers() -> list[TextProvider]:
    p = config.TEXT_PRIORITIES
    return [
        OpenAITextProvider(config.OPENAI_API_KEY, model=config.OPENAI_TEXT_MODEL,
                           base_url=config.OPENAI_BASE_URL, priority=p["openai-llm"]),
        GeminiTextProvider(config.GEMINI_API_KEY, model=config.GEMINI_TEXT_MODEL,
                           priority=p["gemini-llm"]),
    ]


def build_services(
    *,
    vision_providers: Optional[list[VisionProvider]] = None,
    pricing_backends: Optional[list[PricingBackend]] = None,
    text_providers: Optional[list[TextProvider]] = None,
    grouping_backend=None,
    cache: Optional[CacheStore] = None,
    sink: Optional[AlertSink] = None,
) -> Services:
    cache = cache or CacheStore(config.DATA_DIR / config.CACHE_DB_NAME, enabled=config.CACHE_ENABLED)
    usage = UsageMonitor(sink=sink or build_sink(), max_records=config.USAGE_MAX_RECORDS)

    if vision_providers is None:
        vision_providers = default_vision_providers()
    if pricing_backends is None:
        pricing_backends = default_pricing_backends()
    if text_providers is None:
        text_providers = default_text_providers()

    vision: ProviderRegistry[VisionProvider] = ProviderRegistry("vision")
    for provider in vision_providers:
        vision.register(CachedVisionProvider(provider, cache, config.VISION_CACHE_TTL))

    pricing: ProviderRegistry[PricingBackend] = ProviderRegistry("pricing")
    for backend in pricing_backends:
        pricing.register(CachedPricingProvider(
            backend, cache, config.PRICING_CACHE_TTL, config.SKU_CACHE_TTL_MULTIPLIER,
        ))

    text: ProviderRegistry[TextProvider] = ProviderRegistry("text")
    for provider in text_providers:
        text.register(provider)

    if grouping_backend is None:
        grouping_backend = next(
            (p for p in vision_providers if isinstance(p, GeminiVisionProvider)),
            GeminiVisionProvider(None),
        )

    pipeline = ProductImagePipeline(
        IdentificationStep(vision, usage),
        EnrichmentStep(pricing, usage),
        SynthesisStep(text, usage),
    )
    logger.info(
        "Services ready: %d/%d vision, %d/%d pricing, %d/%d text providers enabled",
        len(vision.get_enabled_providers()), len(vision),
        len(pricing.get_enabled_providers()), len(pricing),
        len(text.get_enabled_providers()), len(text),
    )
    return Services(
        cache=cache,
        usage=usage,
        vision=vision,
        pricing=pricing,
        text=text,
        pipeline=pipeline,
        grouping=MultiImageAnalyzer(grouping_backend, usage),
    )
