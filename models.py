"""
models.py — result records produced by the three stages and the orchestrator.

All records are plain dataclasses; to_dict() gives the JSON shape returned by
the HTTP layer (snake_case keys, None-valued optional fields omitted at the
top level of a pipeline result).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from providers.base import WebEntity

# Closed category set, in classification order. "Other" is the catch-all.
CATEGORIES: tuple[str, ...] = (
    "Electronics",
    "Furniture",
    "Clothing",
    "Home & Garden",
    "Sports & Outdoors",
    "Books & Media",
    "Toys & Games",
    "Automotive",
    "Other",
)
OTHER_CATEGORY = "Other"

CONDITIONS: tuple[str, ...] = ("new", "like-new", "good", "fair", "poor", "unknown")


def canonical_category(name: Optional[str]) -> Optional[str]:
    """Case-insensitive match against CATEGORIES; None when it isn't one."""
    if not name:
        return None
    wanted = name.strip().lower()
    for category in CATEGORIES:
        if category.lower() == wanted:
            return category
    return None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


_TRUE_WORDS  = ("true", "1", "yes")
_FALSE_WORDS = ("false", "0", "no", "")


def _as_flag(key: str, value: Any) -> bool:
    """JSON booleans, 0/1, or the strings config._flag understands."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"option {key!r} must be a boolean, got {value!r}")


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


# ── Stage 1 ───────────────────────────────────────────────────────────────────

@dataclass
class UnifiedDetection:
    primary_object: str
    category: str
    detected_text: list[str] = field(default_factory=list)
    visual_tags: list[str] = field(default_factory=list)
    confidence: float = 0.0
    web_entities: list[WebEntity] = field(default_factory=list)


@dataclass
class Step1Result:
    timestamp: str
    duration_ms: int
    provider: str                           # provider whose result was unified
    cached: bool
    sources: dict[str, dict[str, Any]]      # provider → raw result, for diagnostics
    unified: UnifiedDetection

    def to_dict(self) -> dict:
        return asdict(self)


# ── Stage 2 ───────────────────────────────────────────────────────────────────

@dataclass
class UnifiedPricing:
    retail_price: Optional[float] = None
    used_price_estimate: Optional[float] = None
    price_confidence: float = 0.0
    product_identifiers: dict[str, str] = field(default_factory=dict)
    product_description: Optional[str] = None
    product_specifications: Optional[dict[str, Any]] = None
    product_title: Optional[str] = None
    source: Optional[str] = None            # provider name, "heuristic", or None when skipped


@dataclass
class Step2Result:
    timestamp: str
    duration_ms: int
    sources: dict[str, dict[str, Any]]
    unified: UnifiedPricing
    skipped: bool = False
    degraded: bool = False                  # heuristic table used

    def to_dict(self) -> dict:
        return asdict(self)


# ── Stage 3 ───────────────────────────────────────────────────────────────────

@dataclass
class SEO:
    meta_title: str
    meta_description: str
    keywords: list[str]
    slug: str


@dataclass
class GeneratedContent:
    title: str
    description: str
    short_description: str
    bullet_points: list[str]
    seo: SEO
    category: str
    tags: list[str]
    condition_assessment: str
    confidence: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LLMInfo:
    model: str
    status: str
    tokens_used: Optional[int] = None
    error: Optional[str] = None


@dataclass
class Step3Result:
    timestamp: str
    duration_ms: int
    llm: LLMInfo
    generated: GeneratedContent
    degraded: bool = False                  # template generator used
    attempts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ── Orchestrator ──────────────────────────────────────────────────────────────

@dataclass
class FinalProduct:
    title: str
    description: str
    short_description: str
    category: str
    tags: list[str]
    pricing: dict[str, Any]
    seo: SEO
    identifiers: dict[str, str]
    confidence: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PipelineOptions:
    skip_step1: bool = False
    skip_step2: bool = False
    skip_step3: bool = False
    skip_pricing: bool = False
    llm_model: Optional[str] = None
    category: Optional[str] = None          # manual category override

    _ALIASES = {
        "skipStep1":   "skip_step1",
        "skipStep2":   "skip_step2",
        "skipStep3":   "skip_step3",
        "skipPricing": "skip_pricing",
        "llmModel":    "llm_model",
        "manualCategory":  "category",
        "manual_category": "category",
    }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PipelineOptions":
        """Accepts camelCase or snake_case keys; unknown keys are ignored."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("options must be a JSON object")
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name in ("skip_step1", "skip_step2", "skip_step3", "skip_pricing"):
                kwargs[name] = _as_flag(key, value)
            elif name in ("llm_model", "category"):
                kwargs[name] = str(value) if value else None
        return cls(**kwargs)


@dataclass
class PipelineResult:
    image_url: str
    processed_at: str
    total_duration_ms: int
    status: str                             # "success" | "error"
    pipeline_version: str = "1.0.0"
    error: Optional[str] = None
    step1: Optional[Step1Result] = None
    step2: Optional[Step2Result] = None
    step3: Optional[Step3Result] = None
    final_product: Optional[FinalProduct] = None

    def to_dict(self) -> dict:
        return _drop_none(asdict(self))


@dataclass
class BatchItem:
    image_url: str
    data: Optional[PipelineResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"image_url": self.image_url}
        if self.data is not None:
            out["data"] = self.data.to_dict()
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    status: str                             # "success" | "partial" | "error"
    total_images: int
    successful: int
    failed: int
    results: list[BatchItem]

    def to_dict(self) -> dict:
        return {
            "status":       self.status,
            "total_images": self.total_images,
            "successful":   self.successful,
            "failed":       self.failed,
            "results":      [r.to_dict() for r in self.results],
        }
