"""Scope resolution: scope declaration → concrete asset ids.

``ScopeResolver`` is the only component that talks to the asset directory.
Every lookup runs through :func:`run_with_timeout`, so a hung directory
costs one schedule one run instead of stalling the whole loop.

    AllAssets        → directory.lookup_assets(site, None[, onboarded_before])
    AssetIds(ids)    → ids ∩ {a : directory.asset_exists(a)}
    AssetType(t)     → directory.lookup_assets(site, ("type", t))
    Tags(tags)       → directory.lookup_assets(site, ("tags", tags))
"""

from __future__ import annotations

from datetime import datetime

from inspection_spine.core.errors import EngineError, ScopeResolutionError
from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import AllAssets, AssetIds, AssetType, Scope, Tags
from inspection_spine.core.protocols import AssetDirectory
from inspection_spine.core.timeouts import run_with_timeout

logger = get_logger(__name__)


class ScopeResolver:
    """Expands scopes against an :class:`AssetDirectory`.

    Args:
        directory: Asset register.
        timeout_seconds: Upper bound for one directory call; ``None`` disables it.
    """

    def __init__(self, directory: AssetDirectory, timeout_seconds: float | None = 10.0) -> None:
        self.directory = directory
        self.timeout_seconds = timeout_seconds

    def resolve(
        self,
        scope: Scope,
        site_id: str,
        *,
        include_new_assets: bool = True,
        snapshot_at: datetime | None = None,
    ) -> frozenset[str]:
        """Asset ids covered by ``scope`` at ``site_id``.

        Raises:
            ScopeResolutionError: Directory failure, or a frozen AllAssets
                scope without a snapshot instant.
            ExternalTimeout: A directory call exceeded the timeout.
        """
        match scope:
            case AllAssets():
                onboarded_before = None
                if not include_new_assets:
                    if snapshot_at is None:
                        raise ScopeResolutionError(
                            "AllAssets scope excludes new assets but no snapshot instant was given"
                        ).with_context(site_id=site_id)
                    onboarded_before = snapshot_at
                return self._lookup(site_id, None, onboarded_before=onboarded_before)

            case AssetIds(asset_ids=ids):
                existing = frozenset(
                    asset_id for asset_id in ids
                    if self._call("asset_exists", self.directory.asset_exists, asset_id)
                )
                stale = ids - existing
                if stale:
                    logger.debug("scope.stale_asset_ids", site_id=site_id, dropped=sorted(stale))
                return existing

            case AssetType(asset_type_id=type_id):
                assets = self._lookup(site_id, ("type", type_id))
                if not assets:
                    logger.warning("scope.empty", site_id=site_id, asset_type_id=type_id)
                return assets

            case Tags(tags=tags):
                assets = self._lookup(site_id, ("tags", tags))
                if not assets:
                    logger.warning("scope.empty", site_id=site_id, tags=sorted(tags))
                return assets

        raise ScopeResolutionError(f"Unsupported scope: {scope!r}")

    def _lookup(self, site_id: str, selector, *, onboarded_before: datetime | None = None) -> frozenset[str]:
        result = self._call(
            "lookup_assets",
            self.directory.lookup_assets,
            site_id,
            selector,
            onboarded_before=onboarded_before,
        )
        return frozenset(result)

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return run_with_timeout(
                fn,
                *args,
                timeout_seconds=self.timeout_seconds,
                operation=f"asset_directory.{operation}",
                **kwargs,
            )
        except EngineError:
            raise
        except Exception as exc:
            raise ScopeResolutionError(
                f"Asset directory {operation} failed: {exc}", cause=exc
            ) from exc


__all__ = ["ScopeResolver"]
