"""
Anthropic Claude vision provider — appraisal-style identification.

Claude is asked for a structured appraisal (name, brand, keywords, model or
barcode number, a 0-10 confidence score). That appraisal is mapped onto the
shared VisionResult shape:
  search keywords → labels (score/10)
  product name    → web entity (most specific signal; becomes primary object)
  barcode/model   → detected text
The full appraisal is kept in extra["appraisal"] for diagnostics.
"""
from __future__ import annotations

import base64
import logging
import time
from typing import Optional

import anthropic

import config
from providers.base import (
    STATUS_SUCCESS,
    Detection, DetectedText, VisionProvider, VisionResult, WebEntity,
    fetch_image, parse_json_response,
)

logger = logging.getLogger(__name__)

APPRAISAL_PROMPT = """You are an expert product appraiser for an online marketplace. Analyze this product image and provide detailed identification.

CRITICAL: Respond with ONLY valid JSON. No markdown, no backticks, no explanations outside the JSON.

Required JSON structure:
{
  "product_name": "Full product name with brand and model",
  "brand": "Brand name or 'Unknown'",
  "category": "Primary category",
  "condition": "New|Like New|Excellent|Good|Fair|Poor",
  "condition_details": "Specific visible wear, damage, or defects",
  "confidence_score": 0,
  "search_keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"],
  "barcode_visible": false,
  "barcode_number": "",
  "model_number": ""
}

CONFIDENCE SCORING (0-10):
  10: Exact product identified with visible model numbers
  8-9: Product clearly identified, minor details uncertain
  6-7: Product type clear, specific model uncertain
  4-5: Generic category identified
  1-3: Unable to identify clearly

KEYWORDS: brand name, product type, key features, terms buyers search for."""


class ClaudeVisionProvider(VisionProvider):

    name = "claude-vision"

    def __init__(self, api_key: Optional[str], model: str = "claude-3-5-sonnet-20241022", priority: int = 3) -> None:
        self.model_id = model
        self.priority = priority
        self._client = (
            anthropic.AsyncAnthropic(api_key=api_key, timeout=config.PROVIDER_TIMEOUT_SECS)
            if api_key else None
        )

    def is_enabled(self) -> bool:
        return self._client is not None

    async def analyze_image(self, image_url: str) -> VisionResult:
        if not self.is_enabled():
            return VisionResult.failure("Claude Vision not configured")

        logger.info("Claude Vision: analysing %s", image_url)
        t0 = time.monotonic()
        try:
            image_bytes, media_type = await fetch_image(image_url)
            message = await self._client.messages.create(
                model=self.model_id,
                max_tokens=2048,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": media_type,
                                    "data": base64.b64encode(image_bytes).decode(),
                                },
                            },
                            {"type": "text", "text": APPRAISAL_PROMPT},
                        ],
                    }
                ],
            )
            raw = next((block.text for block in message.content if block.type == "text"), None)
            if raw is None:
                raise RuntimeError("No text response from Claude")
            data = parse_json_response(raw, self.name)
        except Exception as exc:
            logger.error("Claude Vision failed after %dms: %s", int((time.monotonic() - t0) * 1000), exc)
            return VisionResult.failure(str(exc))

        result = self._to_result(data)
        logger.info(
            "Claude Vision done in %dms, confidence %.1f/10",
            int((time.monotonic() - t0) * 1000), (result.confidence or 0) * 10,
        )
        return result

    @staticmethod
    def _to_result(data: dict) -> VisionResult:
        try:
            score = float(data.get("confidence_score") or 0) / 10
        except (TypeError, ValueError):
            score = 0.0
        score = max(0.0, min(1.0, score))

        code = data.get("barcode_number") or data.get("model_number") or ""
        product_name = data.get("product_name")
        return VisionResult(
            status=STATUS_SUCCESS,
            labels=[Detection(name=str(k), confidence=score) for k in data.get("search_keywords") or []],
            text=[DetectedText(
                detected_text=str(code),
                confidence=0.9 if data.get("barcode_visible") else 0.5,
            )] if code else [],
            web_entities=[WebEntity(
                description=product_name,
                score=score,
                entity_id=data.get("brand") or "Unknown",
            )] if product_name else [],
            confidence=score,
            extra={"appraisal": data},
        )
