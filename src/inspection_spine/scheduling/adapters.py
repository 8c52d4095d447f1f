"""
In-memory asset directory and meter source.

Manifesto:
    Single-process deployments, the CLI and test suites need collaborators
    that answer immediately without the real asset register or telemetry
    feed behind them.

Both classes satisfy the protocols in :mod:`inspection_spine.core.protocols`.
``load_assets_file`` builds them from a JSON document::

    {
      "assets": [
        {"id": "FL-001", "site_id": "site-1", "type": "forklift",
         "tags": ["warehouse"], "onboarded_at": "2025-01-10T00:00:00+00:00",
         "meters": {"HOURS": 1250.0}, "last_recorded": {"HOURS": 1000.0}}
      ]
    }

Tags:
    inspection-spine, adapters, in-memory, testing, single-node

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import MeterType
from inspection_spine.core.timestamps import from_iso8601

logger = get_logger(__name__)

__all__ = ["AssetRecord", "InMemoryAssetDirectory", "InMemoryMeterSource", "load_assets", "load_assets_file"]


@dataclass
class AssetRecord:
    """One asset as the directory knows it."""

    asset_id: str
    site_id: str
    asset_type_id: str | None = None
    tags: frozenset[str] = frozenset()
    onboarded_at: datetime | None = None


class InMemoryAssetDirectory:
    """Dictionary-backed :class:`~inspection_spine.core.protocols.AssetDirectory`.

    Tag selectors match assets carrying any of the requested tags.

    Example::

        directory = InMemoryAssetDirectory([
            AssetRecord("FL-001", "site-1", asset_type_id="forklift"),
        ])
        directory.lookup_assets("site-1", ("type", "forklift"))   # ['FL-001']
    """

    def __init__(self, assets: Iterable[AssetRecord] = ()) -> None:
        self._assets: dict[str, AssetRecord] = {}
        self._lock = threading.Lock()
        for record in assets:
            self.add(record)

    def add(self, record: AssetRecord) -> None:
        with self._lock:
            self._assets[record.asset_id] = record

    def remove(self, asset_id: str) -> None:
        with self._lock:
            self._assets.pop(asset_id, None)

    def lookup_assets(
        self,
        site_id: str,
        selector: tuple[str, Any] | None,
        *,
        onboarded_before: datetime | None = None,
    ) -> list[str]:
        with self._lock:
            records = [r for r in self._assets.values() if r.site_id == site_id]

        if selector is not None:
            kind, value = selector
            match kind:
                case "type":
                    records = [r for r in records if r.asset_type_id == value]
                case "tags":
                    wanted = frozenset(value)
                    records = [r for r in records if r.tags & wanted]
                case _:
                    raise ValueError(f"Unknown selector kind: {kind!r}")

        if onboarded_before is not None:
            records = [
                r for r in records
                if r.onboarded_at is not None and r.onboarded_at <= onboarded_before
            ]
        return sorted(r.asset_id for r in records)

    def asset_exists(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._assets

    def __len__(self) -> int:
        return len(self._assets)


class InMemoryMeterSource:
    """Dictionary-backed :class:`~inspection_spine.core.protocols.MeterSource`."""

    def __init__(self) -> None:
        self._current: dict[tuple[str, MeterType], float] = {}
        self._recorded: dict[tuple[str, MeterType], float] = {}
        self._lock = threading.Lock()

    def set_reading(self, asset_id: str, meter_type: MeterType, value: float) -> None:
        with self._lock:
            self._current[(asset_id, meter_type)] = float(value)

    def set_recorded(self, asset_id: str, meter_type: MeterType, value: float) -> None:
        with self._lock:
            self._recorded[(asset_id, meter_type)] = float(value)

    def current_reading(self, asset_id: str, meter_type: MeterType) -> float | None:
        with self._lock:
            return self._current.get((asset_id, meter_type))

    def last_recorded_reading(self, asset_id: str, meter_type: MeterType) -> float | None:
        with self._lock:
            return self._recorded.get((asset_id, meter_type))


def load_assets(data: dict[str, Any]) -> tuple[InMemoryAssetDirectory, InMemoryMeterSource]:
    """Build a directory and meter source from an already-parsed document."""
    directory = InMemoryAssetDirectory()
    meters = InMemoryMeterSource()
    for item in data.get("assets", []):
        asset_id = item["id"]
        directory.add(
            AssetRecord(
                asset_id=asset_id,
                site_id=item["site_id"],
                asset_type_id=item.get("type"),
                tags=frozenset(item.get("tags") or ()),
                onboarded_at=from_iso8601(item.get("onboarded_at")),
            )
        )
        for name, value in (item.get("meters") or {}).items():
            meters.set_reading(asset_id, MeterType(name), value)
        for name, value in (item.get("last_recorded") or {}).items():
            meters.set_recorded(asset_id, MeterType(name), value)
    logger.debug("assets.loaded", count=len(directory))
    return directory, meters


def load_assets_file(path: Path | str) -> tuple[InMemoryAssetDirectory, InMemoryMeterSource]:
    """Read an assets JSON file (see module docstring)."""
    with open(path, encoding="utf-8") as f:
        return load_assets(json.load(f))
