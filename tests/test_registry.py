"""
Tests for providers/registry.py.

Covers:
  - priority ordering, stable for ties
  - enabled filtering and get_best_provider
  - name lookup and health map
"""
from __future__ import annotations

from providers.registry import ProviderRegistry
from stubs import StubVision


def make_registry(*providers) -> ProviderRegistry:
    registry = ProviderRegistry("vision")
    for p in providers:
        registry.register(p)
    return registry


class TestOrdering:
    def test_sorted_by_priority(self):
        registry = make_registry(StubVision("c", priority=3), StubVision("a", priority=1), StubVision("b", priority=2))
        assert [p.name for p in registry.get_all_providers()] == ["a", "b", "c"]

    def test_ties_keep_registration_order(self):
        registry = make_registry(StubVision("first", priority=1), StubVision("second", priority=1))
        assert [p.name for p in registry.get_enabled_providers()] == ["first", "second"]

    def test_len(self):
        assert len(make_registry(StubVision("a"), StubVision("b"))) == 2


class TestEnabled:
    def test_disabled_providers_are_filtered(self):
        registry = make_registry(
            StubVision("off", priority=1, enabled=False),
            StubVision("on", priority=2),
        )
        assert [p.name for p in registry.get_enabled_providers()] == ["on"]

    def test_best_provider_is_first_enabled(self):
        registry = make_registry(StubVision("off", priority=1, enabled=False), StubVision("on", priority=5))
        assert registry.get_best_provider().name == "on"

    def test_best_provider_none_when_nothing_enabled(self):
        registry = make_registry(StubVision("off", enabled=False))
        assert registry.get_best_provider() is None

    def test_empty_registry(self):
        registry = ProviderRegistry("text")
        assert registry.get_enabled_providers() == []
        assert registry.get_best_provider() is None


class TestLookup:
    def test_get_provider_by_name_even_if_disabled(self):
        off = StubVision("off", enabled=False)
        registry = make_registry(off)
        assert registry.get_provider("off") is off
        assert registry.get_provider("missing") is None

    def test_health_lists_every_provider(self):
        registry = make_registry(StubVision("a"), StubVision("b", enabled=False))
        assert registry.health() == {"a": True, "b": False}
