"""
Google Cloud Vision — REST images:annotate with an API key.

The image is passed by URI (Google fetches it), so no local download happens.
One request asks for four feature types at once; the provider confidence is
the mean of every label, object and web-entity score returned.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

import aiohttp

import config
from providers.base import (
    STATUS_SUCCESS,
    Detection, DetectedText, VisionProvider, VisionResult, WebEntity, mean,
)

logger = logging.getLogger(__name__)

_ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"

_FEATURES = [
    {"type": "LABEL_DETECTION",     "maxResults": 20},
    {"type": "OBJECT_LOCALIZATION", "maxResults": 10},
    {"type": "TEXT_DETECTION",      "maxResults": 10},
    {"type": "WEB_DETECTION",       "maxResults": 10},
]


class GoogleVisionProvider(VisionProvider):

    name = "google-cloud-vision"

    def __init__(self, api_key: Optional[str], priority: int = 1) -> None:
        self._api_key = api_key
        self.priority = priority

    def is_enabled(self) -> bool:
        return bool(self._api_key)

    async def analyze_image(self, image_url: str) -> VisionResult:
        if not self.is_enabled():
            return VisionResult.failure("Google Cloud Vision not configured")

        logger.info("Google Vision: analysing %s", image_url)
        t0 = time.monotonic()
        body = {
            "requests": [{
                "image":    {"source": {"imageUri": image_url}},
                "features": _FEATURES,
            }],
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    _ANNOTATE_URL,
                    params={"key": self._api_key},
                    json=body,
                    timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
                ) as resp:
                    data = await resp.json(content_type=None)
                    if resp.status != 200:
                        msg = (data.get("error") or {}).get("message", str(data)[:200])
                        raise RuntimeError(f"Vision API {resp.status}: {msg}")
        except Exception as exc:
            logger.error("Google Vision failed: %s", exc)
            return VisionResult.failure(str(exc))

        annotation = (data.get("responses") or [{}])[0]
        if annotation.get("error"):
            msg = annotation["error"].get("message", "unknown error")
            logger.error("Google Vision annotate error: %s", msg)
            return VisionResult.failure(msg)

        result = self._parse(annotation)
        logger.info(
            "Google Vision done in %dms: %d labels, %d objects, %d text, %d web (confidence %.2f)",
            int((time.monotonic() - t0) * 1000),
            len(result.labels), len(result.objects), len(result.text),
            len(result.web_entities), result.confidence,
        )
        return result

    @staticmethod
    def _parse(annotation: dict) -> VisionResult:
        labels = [
            Detection(name=l.get("description") or "Unknown", confidence=float(l.get("score") or 0))
            for l in annotation.get("labelAnnotations") or []
        ]
        objects = [
            Detection(name=o.get("name") or "Unknown", confidence=float(o.get("score") or 0))
            for o in annotation.get("localizedObjectAnnotations") or []
        ]
        text = [
            DetectedText(detected_text=t.get("description") or "")
            for t in annotation.get("textAnnotations") or []
        ]
        web_entities = [
            WebEntity(
                description=e.get("description") or "Unknown",
                score=float(e.get("score") or 0),
                entity_id=e.get("entityId"),
            )
            for e in (annotation.get("webDetection") or {}).get("webEntities") or []
        ]
        scores = (
            [l.confidence for l in labels]
            + [o.confidence for o in objects]
            + [e.score for e in web_entities]
        )
        return VisionResult(
            status=STATUS_SUCCESS,
            objects=objects,
            labels=labels,
            text=text,
            web_entities=web_entities,
            confidence=mean(scores),
        )
