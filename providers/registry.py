"""
Provider registry — a priority-ordered collection of providers of one kind.

One registry per capability (vision, pricing, text). Registration happens once
at start-up (see services.py); after that the registry is only read:

  get_enabled_providers()  — enabled subset, lowest priority number first
  get_best_provider()      — first enabled provider, or None
  get_provider(name)       — exact name lookup, enabled or not

Ties in priority keep insertion order (list.sort is stable), so the order is
total and deterministic.
"""
from __future__ import annotations

import logging
from typing import Generic, Optional, TypeVar

from providers.base import Provider

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=Provider)


class ProviderRegistry(Generic[P]):

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._providers: list[P] = []

    def register(self, provider: P) -> None:
        self._providers.append(provider)
        self._providers.sort(key=lambda p: p.get_priority())
        logger.info(
            "Registered %s provider: %s (priority=%d, enabled=%s)",
            self.kind, provider.name, provider.get_priority(), provider.is_enabled(),
        )

    def get_provider(self, name: str) -> Optional[P]:
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    def get_enabled_providers(self) -> list[P]:
        return [p for p in self._providers if p.is_enabled()]

    def get_best_provider(self) -> Optional[P]:
        enabled = self.get_enabled_providers()
        return enabled[0] if enabled else None

    def get_all_providers(self) -> list[P]:
        return list(self._providers)

    def health(self) -> dict[str, bool]:
        """name → is_enabled() for every registered provider."""
        return {p.name: p.is_enabled() for p in self._providers}

    def __len__(self) -> int:
        return len(self._providers)
