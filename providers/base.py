"""
Shared types and base classes for every provider kind.

Three capability contracts live here:
  VisionProvider  — analyze_image(url)      → VisionResult
  TextProvider    — generate(prompt, …)     → TextResult
  (PricingBackend — search_product(name, …) → PricingResult, in pricing_backends/base.py)

All of them share the Provider base: a fixed name, a priority (lower = tried
first) and an is_enabled() predicate driven by credential presence.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import aiohttp

import config
from errors import ResponseParseFailed

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR   = "error"


# ── Abstract base ──────────────────────────────────────────────────────────────

class Provider(ABC):
    """Base class for every pluggable adapter over an external service."""

    name: str
    priority: int = 100

    def get_priority(self) -> int:
        return self.priority

    @abstractmethod
    def is_enabled(self) -> bool:
        """True when the provider's credentials are configured."""
        ...


# ── Vision ────────────────────────────────────────────────────────────────────

@dataclass
class Detection:
    """A named object or label with a 0–1 confidence."""
    name: str
    confidence: float


@dataclass
class DetectedText:
    detected_text: str
    confidence: Optional[float] = None


@dataclass
class WebEntity:
    description: str
    score: float
    entity_id: Optional[str] = None


@dataclass
class VisionResult:
    """Normalised output of any vision provider."""
    status: str
    error: Optional[str] = None
    objects: list[Detection] = field(default_factory=list)
    labels: list[Detection] = field(default_factory=list)
    text: list[DetectedText] = field(default_factory=list)
    web_entities: list[WebEntity] = field(default_factory=list)
    confidence: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)   # provider-specific passthrough

    # set by the caching decorator on a hit; never stored
    cached: bool = field(default=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(cls, error: str) -> "VisionResult":
        return cls(status=STATUS_ERROR, error=error)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("cached")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "VisionResult":
        return cls(
            status=data.get("status", STATUS_ERROR),
            error=data.get("error"),
            objects=[Detection(**o) for o in data.get("objects") or []],
            labels=[Detection(**l) for l in data.get("labels") or []],
            text=[DetectedText(**t) for t in data.get("text") or []],
            web_entities=[WebEntity(**e) for e in data.get("web_entities") or []],
            confidence=data.get("confidence"),
            extra=data.get("extra") or {},
        )


class VisionProvider(Provider):

    @abstractmethod
    async def analyze_image(self, image_url: str) -> VisionResult:
        """Run vision inference on the image at image_url."""
        ...


# ── Text generation ───────────────────────────────────────────────────────────

@dataclass
class TextResult:
    status: str
    error: Optional[str] = None
    text: Optional[str] = None
    tokens_used: Optional[int] = None
    model: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(cls, error: str, model: Optional[str] = None) -> "TextResult":
        return cls(status=STATUS_ERROR, error=error, model=model)


class TextProvider(Provider):

    model_id: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: Optional[str] = None,
    ) -> TextResult:
        ...

    def supports_model(self, model: Optional[str]) -> bool:
        """Whether a caller-requested model id belongs to this backend."""
        return False


# ── Helpers ───────────────────────────────────────────────────────────────────

def extract_json_object(raw: Optional[str]) -> str:
    """
    First parse phase: strip ``` fences and return the outermost {...} span.
    Raises ResponseParseFailed when there is no brace-delimited span at all.
    """
    text = (raw or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    start = text.find("{")
    end   = text.rfind("}")
    if start == -1 or end <= start:
        raise ResponseParseFailed("no JSON object found in response")
    return text[start:end + 1]


def parse_json_response(raw: Optional[str], provider_name: str) -> dict:
    """
    Parse the JSON object from a model response, handling markdown fences and
    surrounding prose. Raises ResponseParseFailed on any failure.
    """
    try:
        span = extract_json_object(raw)
        data = json.loads(span)
    except ResponseParseFailed as exc:
        logger.error("[%s] No JSON in response: %s", provider_name, (raw or "")[:300])
        raise ResponseParseFailed(f"[{provider_name}] {exc}") from exc
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", provider_name, (raw or "")[:300])
        raise ResponseParseFailed(f"[{provider_name}] JSON parse error: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseParseFailed(f"[{provider_name}] expected a JSON object, got {type(data).__name__}")
    return data


def detect_mime(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"


async def fetch_image(image_url: str, timeout: float = config.PROVIDER_TIMEOUT_SECS) -> tuple[bytes, str]:
    """Download an image. Returns (bytes, mime type)."""
    async with aiohttp.ClientSession() as session:
        async with session.get(
            image_url,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            if resp.status != 200:
                raise RuntimeError(f"Image download failed ({resp.status}) for {image_url}")
            data = await resp.read()
            content_type = resp.headers.get("Content-Type", "")

    mime = content_type.split(";")[0].strip()
    if not mime.startswith("image/"):
        mime = detect_mime(data)
    return data, mime


def mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0
