"""
pipeline.py — orchestrates identification → enrichment → synthesis.

process_image():
  • each stage can be skipped by option; skipping a stage also skips every
    stage that depends on it
  • FinalProduct is built only when all three stages produced a result
  • an exception escaping any stage turns the whole result into
    status="error" with the message; no partial stage output is returned

process_batch():
  • images are processed one after another, never concurrently
  • one image failing never affects the others
  • batch status: success (no failures), error (no successes), else partial
"""
from __future__ import annotations

import logging
import time
from typing import Optional

import config
from enrichment import EnrichmentStep
from errors import BatchItemFailed
from identification import IdentificationStep
from models import (
    BatchItem, BatchResult, FinalProduct, PipelineOptions, PipelineResult,
    Step1Result, Step2Result, Step3Result, utc_timestamp,
)
from providers.base import STATUS_ERROR, STATUS_SUCCESS
from synthesis import SynthesisStep

logger = logging.getLogger(__name__)

STATUS_PARTIAL = "partial"


def build_final_product(step1: Step1Result, step2: Step2Result, step3: Step3Result) -> FinalProduct:
    generated = step3.generated
    pricing = step2.unified
    return FinalProduct(
        title=generated.title,
        description=generated.description,
        short_description=generated.short_description,
        category=generated.category,
        tags=generated.tags,
        pricing={
            "retail_price":        pricing.retail_price,
            "used_price_estimate": pricing.used_price_estimate,
            "currency":            "USD",
        },
        seo=generated.seo,
        identifiers=dict(pricing.product_identifiers),
        confidence=(step1.unified.confidence + pricing.price_confidence + generated.confidence) / 3,
    )


class ProductImagePipeline:

    def __init__(
        self,
        identification: IdentificationStep,
        enrichment: EnrichmentStep,
        synthesis: SynthesisStep,
        version: str = config.PIPELINE_VERSION,
    ) -> None:
        self.identification = identification
        self.enrichment = enrichment
        self.synthesis = synthesis
        self.version = version

    async def process_image(self, image_url: str, options: Optional[PipelineOptions] = None) -> PipelineResult:
        options = options or PipelineOptions()
        logger.info("Pipeline started for %s (%s)", image_url, options)
        t0 = time.monotonic()

        try:
            step1 = None
            if options.skip_step1:
                logger.info("Step 1 skipped by option")
            else:
                step1 = await self.identification.execute(image_url, options.category)

            step2 = None
            if options.skip_step2 or step1 is None:
                logger.info("Step 2 skipped")
            else:
                step2 = await self.enrichment.execute(step1.unified, options.skip_pricing)

            step3 = None
            if options.skip_step3 or step1 is None or step2 is None:
                logger.info("Step 3 skipped")
            else:
                step3 = await self.synthesis.execute(step1, step2, options.llm_model, options.category)

            final_product = None
            if step1 and step2 and step3:
                final_product = build_final_product(step1, step2, step3)

        except Exception as exc:
            duration_ms = int((time.monotonic() - t0) * 1000)
            logger.error("Pipeline failed after %dms: %s", duration_ms, exc)
            return PipelineResult(
                image_url=image_url,
                processed_at=utc_timestamp(),
                total_duration_ms=duration_ms,
                status=STATUS_ERROR,
                pipeline_version=self.version,
                error=str(exc),
            )

        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.info("Pipeline complete in %dms", duration_ms)
        return PipelineResult(
            image_url=image_url,
            processed_at=utc_timestamp(),
            total_duration_ms=duration_ms,
            status=STATUS_SUCCESS,
            pipeline_version=self.version,
            step1=step1,
            step2=step2,
            step3=step3,
            final_product=final_product,
        )

    async def process_batch(self, image_urls: list[str], options: Optional[PipelineOptions] = None) -> BatchResult:
        logger.info("Batch started: %d images", len(image_urls))
        results: list[BatchItem] = []
        successful = failed = 0

        for image_url in image_urls:
            try:
                result = await self.process_image(image_url, options)
                if result.status != STATUS_SUCCESS:
                    raise BatchItemFailed(image_url, result.error or "unknown error")
            except Exception as exc:
                failed += 1
                results.append(BatchItem(image_url=image_url, error=str(exc)))
                logger.error("Batch item failed: %s (%s)", image_url, exc)
                continue
            successful += 1
            results.append(BatchItem(image_url=image_url, data=result))

        if failed == 0:
            status = STATUS_SUCCESS
        elif successful == 0:
            status = STATUS_ERROR
        else:
            status = STATUS_PARTIAL

        logger.info("Batch complete: %d ok, %d failed (%s)", successful, failed, status)
        return BatchResult(
            status=status,
            total_images=len(image_urls),
            successful=successful,
            failed=failed,
            results=results,
        )
