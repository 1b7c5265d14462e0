"""
Central configuration — reads from .env file.

Everything here is read once at process start. Provider enablement is driven
purely by credential presence: a provider whose key is missing simply reports
is_enabled() == False and is skipped by its registry.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(env_key: str, default: bool) -> bool:
    raw = os.getenv(env_key, "true" if default else "false")
    return raw.strip().lower() not in ("false", "0", "no")


# ── Vision providers ──────────────────────────────────────────────────────────
GOOGLE_CLOUD_VISION_API_KEY: str | None = os.getenv("GOOGLE_CLOUD_VISION_API_KEY")
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_AI_API_KEY")
ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
AWS_ACCESS_KEY_ID: str | None = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY: str | None = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")

GEMINI_VISION_MODEL: str = os.getenv("GEMINI_VISION_MODEL", "gemini-2.0-flash")
CLAUDE_VISION_MODEL: str = os.getenv("CLAUDE_VISION_MODEL", "claude-3-5-sonnet-20241022")

# ── Pricing providers ─────────────────────────────────────────────────────────
SHOPSAVVY_API_KEY: str | None = os.getenv("SHOPSAVVY_API_KEY")

# Amazon PA-API 5.0 (Associates account required)
AMAZON_ACCESS_KEY: str | None    = os.getenv("AMAZON_ACCESS_KEY")
AMAZON_SECRET_KEY: str | None    = os.getenv("AMAZON_SECRET_KEY")
AMAZON_ASSOCIATE_TAG: str | None = os.getenv("AMAZON_ASSOCIATE_TAG")
AMAZON_MARKETPLACE: str          = os.getenv("AMAZON_MARKETPLACE", "www.amazon.com")

# Google Shopping results via SerpAPI
SERPAPI_KEY: str | None = os.getenv("SERPAPI_KEY") or os.getenv("GOOGLE_SHOPPING_API_KEY")
EBAY_APP_ID: str | None = os.getenv("EBAY_APP_ID")

# ── Text generation ───────────────────────────────────────────────────────────
OPENAI_API_KEY: str | None  = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL") or None
OPENAI_TEXT_MODEL: str      = os.getenv("OPENAI_TEXT_MODEL", "gpt-4o-mini")
GEMINI_TEXT_MODEL: str      = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")

# ── Provider priorities (lower = tried first) ────────────────────────────────
VISION_PRIORITIES: dict[str, int] = {
    "google-cloud-vision": 1,
    "gemini-vision":       2,
    "claude-vision":       3,
    "aws-rekognition":     4,
}
PRICING_PRIORITIES: dict[str, int] = {
    "shopsavvy":       1,
    "amazon-product":  2,
    "google-shopping": 3,
    "ebay":            4,
}
TEXT_PRIORITIES: dict[str, int] = {
    "openai-llm": 1,
    "gemini-llm": 2,
}

# Every provider enforces its own network timeout; nothing upstream cancels it.
PROVIDER_TIMEOUT_SECS: float = float(os.getenv("PROVIDER_TIMEOUT_SECS", "15"))

# ── Cache ─────────────────────────────────────────────────────────────────────
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))
CACHE_ENABLED: bool = _flag("CACHE_ENABLED", True)
CACHE_DB_NAME: str = os.getenv("CACHE_DB_NAME", "cache.db")

# Vision results are deterministic per image; prices drift.
VISION_CACHE_TTL: int  = int(os.getenv("VISION_CACHE_TTL", str(86400 * 7)))
PRICING_CACHE_TTL: int = int(os.getenv("PRICING_CACHE_TTL", str(86400)))
SKU_CACHE_TTL_MULTIPLIER: int = int(os.getenv("SKU_CACHE_TTL_MULTIPLIER", "7"))

# ── Web server ────────────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8080"))
MAX_BATCH_IMAGES: int = int(os.getenv("MAX_BATCH_IMAGES", "100"))
GROUPING_BATCH_SIZE: int = int(os.getenv("GROUPING_BATCH_SIZE", "8"))

PIPELINE_VERSION = "1.0.0"

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE_NAME: str = os.getenv("LOG_FILE_NAME", "pipeline.log")

# ── Usage monitoring ──────────────────────────────────────────────────────────
# 0 keeps every record for the process lifetime (no persistence across restarts).
USAGE_MAX_RECORDS: int = int(os.getenv("USAGE_MAX_RECORDS", "0"))
USAGE_SUMMARY_INTERVAL_SECS: int = int(os.getenv("USAGE_SUMMARY_INTERVAL_SECS", "3600"))

# Optional Telegram delivery for usage alerts; alerts are only logged otherwise.
TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN") or None
ALERT_CHAT_IDS: set[int] = {
    int(x.strip())
    for x in os.getenv("ALERT_CHAT_IDS", "").split(",")
    if x.strip().lstrip("-").isdigit()
}
