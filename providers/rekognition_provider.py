"""
AWS Rekognition — DetectLabels + DetectText over the JSON API, signed with SigV4.

The image is downloaded once and sent as base64 bytes to both operations.
Rekognition reports confidences as percentages; everything is normalised to
0–1 here. Labels that come with bounding-box instances are also reported as
objects (one per instance).
"""
from __future__ import annotations

import base64
import json
import logging
import time
from typing import Optional

import aiohttp

import aws_sigv4
import config
from providers.base import (
    STATUS_SUCCESS,
    Detection, DetectedText, VisionProvider, VisionResult,
    fetch_image, mean,
)

logger = logging.getLogger(__name__)

_SERVICE      = "rekognition"
_CONTENT_TYPE = "application/x-amz-json-1.1"


class RekognitionProvider(VisionProvider):

    name = "aws-rekognition"

    def __init__(
        self,
        access_key: Optional[str],
        secret_key: Optional[str],
        region: str = "us-east-1",
        priority: int = 4,
    ) -> None:
        self._access_key = access_key
        self._secret_key = secret_key
        self._region     = region
        self._host       = f"rekognition.{region}.amazonaws.com"
        self.priority    = priority

    def is_enabled(self) -> bool:
        return bool(self._access_key and self._secret_key)

    async def analyze_image(self, image_url: str) -> VisionResult:
        if not self.is_enabled():
            return VisionResult.failure("AWS Rekognition not configured")

        logger.info("Rekognition: analysing %s", image_url)
        t0 = time.monotonic()
        try:
            image_bytes, _ = await fetch_image(image_url)
            image = {"Bytes": base64.b64encode(image_bytes).decode()}
            labels_resp = await self._call("DetectLabels", {
                "Image": image, "MaxLabels": 20, "MinConfidence": 70,
            })
            text_resp = await self._call("DetectText", {"Image": image})
        except Exception as exc:
            logger.error("Rekognition failed after %dms: %s", int((time.monotonic() - t0) * 1000), exc)
            return VisionResult.failure(str(exc))

        result = self._parse(labels_resp, text_resp)
        logger.info(
            "Rekognition done in %dms: %d objects, %d labels, %d text (confidence %.2f)",
            int((time.monotonic() - t0) * 1000),
            len(result.objects), len(result.labels), len(result.text), result.confidence,
        )
        return result

    async def _call(self, operation: str, payload: dict) -> dict:
        body = json.dumps(payload).encode()
        headers = aws_sigv4.signed_headers(
            access_key=self._access_key,
            secret_key=self._secret_key,
            region=self._region,
            service=_SERVICE,
            host=self._host,
            path="/",
            amz_target=f"RekognitionService.{operation}",
            body=body,
            content_type=_CONTENT_TYPE,
        )
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"https://{self._host}/", data=body, headers=headers,
                timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT_SECS),
            ) as resp:
                data = await resp.json(content_type=None)
                if resp.status != 200:
                    msg = data.get("message") or data.get("Message") or str(data)[:200]
                    raise RuntimeError(f"Rekognition {operation} {resp.status}: {msg}")
                return data

    @staticmethod
    def _parse(labels_resp: dict, text_resp: dict) -> VisionResult:
        labels: list[Detection] = []
        objects: list[Detection] = []
        for label in labels_resp.get("Labels") or []:
            name = label.get("Name") or "Unknown"
            confidence = float(label.get("Confidence") or 0) / 100
            labels.append(Detection(name=name, confidence=confidence))
            for _ in label.get("Instances") or []:
                objects.append(Detection(name=name, confidence=confidence))

        text = [
            DetectedText(
                detected_text=d.get("DetectedText") or "",
                confidence=float(d.get("Confidence") or 0) / 100,
            )
            for d in text_resp.get("TextDetections") or []
            if d.get("Type") == "LINE"
        ]

        scores = [l.confidence for l in labels] + [t.confidence for t in text]
        return VisionResult(
            status=STATUS_SUCCESS,
            objects=objects,
            labels=labels,
            text=text,
            confidence=mean(scores),
        )
