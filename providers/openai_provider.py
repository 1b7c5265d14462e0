"""
OpenAI-compatible text generation — chat completions via the openai SDK.

Works against api.openai.com or any compatible endpoint (OPENAI_BASE_URL).
A caller-requested model is honoured when it looks like one of ours
("gpt-*", "o1*", "o3*", "o4*"); otherwise the configured default is used.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from openai import AsyncOpenAI

import config
from providers.base import STATUS_SUCCESS, TextProvider, TextResult

logger = logging.getLogger(__name__)

_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4")


class OpenAITextProvider(TextProvider):

    name = "openai-llm"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        priority: int = 1,
    ) -> None:
        self.model_id = model
        self.priority = priority
        self._client = (
            AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=config.PROVIDER_TIMEOUT_SECS)
            if api_key else None
        )

    def is_enabled(self) -> bool:
        return self._client is not None

    def supports_model(self, model: Optional[str]) -> bool:
        return bool(model) and model.lower().startswith(_MODEL_PREFIXES)

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
            return TextResult.failure("OpenAI API not configured", model_id)

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=model_id,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
            )
        except Exception as exc:
            logger.error("OpenAI generation failed (%s): %s", model_id, exc)
            return TextResult.failure(str(exc), model_id)

        text = response.choices[0].message.content if response.choices else None
        if not text:
            return TextResult.failure("Empty response from OpenAI", model_id)

        usage = response.usage
        tokens = usage.total_tokens if usage else None
        logger.info(
            "OpenAI generated %d chars in %dms (%s tokens)",
            len(text), int((time.monotonic() - t0) * 1000), tokens,
        )
        return TextResult(status=STATUS_SUCCESS, text=text, tokens_used=tokens, model=model_id)
