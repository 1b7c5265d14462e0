"""
Google Gemini — uses the google-genai SDK (v1 API).

Two adapters share one SDK client per API key:
  GeminiVisionProvider — single-image identification (Stage 1) and the
                         multi-image grouping call used by grouping.py
  GeminiTextProvider   — listing-copy generation (Stage 3)

Gemini returns no per-signal scores, so fixed confidences are assigned:
main object 0.8, labels 0.7, OCR text 0.9, overall 0.75.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from google import genai
from google.genai import types as genai_types

import config
from providers.base import (
    STATUS_SUCCESS,
    Detection, DetectedText, TextProvider, TextResult, VisionProvider, VisionResult,
    fetch_image, parse_json_response,
)

logger = logging.getLogger(__name__)

_SAFETY_OFF = [
    genai_types.SafetySetting(category="HARM_CATEGORY_HARASSMENT",        threshold="OFF"),
    genai_types.SafetySetting(category="HARM_CATEGORY_HATE_SPEECH",       threshold="OFF"),
    genai_types.SafetySetting(category="HARM_CATEGORY_SEXUALLY_EXPLICIT", threshold="OFF"),
    genai_types.SafetySetting(category="HARM_CATEGORY_DANGEROUS_CONTENT", threshold="OFF"),
]

_OBJECT_CONFIDENCE = 0.8
_LABEL_CONFIDENCE  = 0.7
_TEXT_CONFIDENCE   = 0.9
_OVERALL_CONFIDENCE = 0.75

VISION_PROMPT = """Analyze this product image and provide:
1. Main object/product name
2. All visible text (OCR)
3. Visual tags/labels (colors, materials, features)
4. Product category

Return as JSON:
{
  "mainObject": "product name",
  "text": ["text1", "text2"],
  "labels": ["label1", "label2"],
  "category": "category name"
}"""


def _make_client(api_key: str) -> genai.Client:
    # Force v1 (stable) API; the SDK timeout is in milliseconds
    return genai.Client(
        api_key=api_key,
        http_options={"api_version": "v1", "timeout": int(config.PROVIDER_TIMEOUT_SECS * 1000)},
    )


class GeminiVisionProvider(VisionProvider):

    name = "gemini-vision"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.0-flash", priority: int = 2) -> None:
        self.model_id = model
        self.priority = priority
        self._client  = _make_client(api_key) if api_key else None

    def is_enabled(self) -> bool:
        return self._client is not None

    async def analyze_image(self, image_url: str) -> VisionResult:
        if not self.is_enabled():
            return VisionResult.failure("Gemini Vision not configured")

        logger.info("Gemini Vision: analysing %s", image_url)
        t0 = time.monotonic()
        try:
            raw  = await self.generate_from_images(VISION_PROMPT, [image_url])
            data = parse_json_response(raw, self.name)
        except Exception as exc:
            logger.error("Gemini Vision failed: %s", exc)
            return VisionResult.failure(str(exc))

        main_object = data.get("mainObject")
        result = VisionResult(
            status=STATUS_SUCCESS,
            objects=[Detection(name=main_object, confidence=_OBJECT_CONFIDENCE)] if main_object else [],
            labels=[Detection(name=str(l), confidence=_LABEL_CONFIDENCE) for l in data.get("labels") or []],
            text=[DetectedText(detected_text=str(t), confidence=_TEXT_CONFIDENCE) for t in data.get("text") or []],
            confidence=_OVERALL_CONFIDENCE,
            extra={"category": data.get("category")} if data.get("category") else {},
        )
        logger.info(
            "Gemini Vision done in %dms: object=%r, %d labels",
            int((time.monotonic() - t0) * 1000), main_object, len(result.labels),
        )
        return result

    async def generate_from_images(self, prompt: str, image_urls: list[str], max_tokens: int = 2048) -> str:
        """
        Send prompt + every image inline in one request; return the raw text.
        Raises on download or API errors (callers decide how to degrade).
        """
        if not self.is_enabled():
            raise RuntimeError("Gemini Vision not configured")

        parts = []
        for url in image_urls:
            image_bytes, mime = await fetch_image(url)
            parts.append(genai_types.Part.from_bytes(data=image_bytes, mime_type=mime))

        gen_config = genai_types.GenerateContentConfig(
            temperature=0,
            max_output_tokens=max_tokens,
            safety_settings=_SAFETY_OFF,
        )
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=[prompt, *parts],
            config=gen_config,
        )
        return response.text or ""


class GeminiTextProvider(TextProvider):

    name = "gemini-llm"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.0-flash", priority: int = 2) -> None:
        self.model_id = model
        self.priority = priority
        self._client  = _make_client(api_key) if api_key else None

    def is_enabled(self) -> bool:
        return self._client is not None

    def supports_model(self, model: Optional[str]) -> bool:
        return bool(model) and model.lower().startswith("gemini")

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: Optional[str] = None,
    ) -> TextResult:
        model_id = model if self.supports_model(model) else self.model_id
        if not self.is_enabled():
            return TextResult.failure("Gemini API not configured", model_id)

        gen_config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=max_tokens,
            safety_settings=_SAFETY_OFF,
        )
        t0 = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=model_id,
                contents=prompt,
                config=gen_config,
            )
        except Exception as exc:
            logger.error("Gemini generation failed (%s): %s", model_id, exc)
            return TextResult.failure(str(exc), model_id)

        text = response.text
        if not text:
            return TextResult.failure("Empty response from Gemini", model_id)

        usage = response.usage_metadata
        tokens = getattr(usage, "total_token_count", None) if usage else None
        logger.info(
            "Gemini generated %d chars in %dms (%s tokens)",
            len(text), int((time.monotonic() - t0) * 1000), tokens,
        )
        return TextResult(status=STATUS_SUCCESS, text=text, tokens_used=tokens, model=model_id)
