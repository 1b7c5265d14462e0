"""
Shared pytest fixtures.

Every test gets a clean temporary DATA_DIR via the `tmp_data_dir` fixture so
the cache database never touches the real data/cache.db.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level value that was already computed at import time
    import config
    monkeypatch.setattr(config, "DATA_DIR", data)

    yield data


@pytest.fixture
def cache_store(tmp_data_dir):
    from cache import CacheStore
    return CacheStore(tmp_data_dir / "cache.db")


@pytest.fixture
def usage():
    from notifications import LogAlertSink
    from usage_monitor import UsageMonitor
    return UsageMonitor(sink=LogAlertSink())
