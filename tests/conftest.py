"""
Shared pytest fixtures and configuration for inspection-spine tests.

This module provides:
- structlog reset between tests (the CLI reconfigures logging per invocation)
- Settings cache reset so environment overrides do not leak
- Path helpers for writing asset and schedule definition files

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import structlog

from inspection_spine.core.settings import get_settings


@pytest.fixture(autouse=True)
def _reset_logging():
    """Restore structlog defaults after every test."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def _reset_settings():
    """Drop the cached settings so ``monkeypatch.setenv`` takes effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def write_json(tmp_path: Path):
    """Write ``data`` as JSON under ``tmp_path`` and return the path."""

    def _write(name: str, data: Any) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
