"""Tests for ScopeResolver."""

import threading
from datetime import UTC, datetime

import pytest

from inspection_spine.core.errors import ExternalTimeout, ScopeResolutionError
from inspection_spine.core.models.scheduling import AllAssets, AssetIds, AssetType, Tags
from inspection_spine.scheduling.scope import ScopeResolver

SNAPSHOT = datetime(2025, 3, 3, tzinfo=UTC)


@pytest.fixture
def resolver(directory):
    return ScopeResolver(directory, timeout_seconds=None)


class TestResolve:
    def test_all_assets_at_site(self, resolver):
        assert resolver.resolve(AllAssets(), "site-1") == {"FL-001", "FL-002", "CR-001"}

    def test_all_assets_frozen_to_snapshot(self, resolver):
        assets = resolver.resolve(AllAssets(), "site-1", include_new_assets=False, snapshot_at=SNAPSHOT)
        assert assets == {"FL-001", "CR-001"}

    def test_frozen_scope_requires_snapshot(self, resolver):
        with pytest.raises(ScopeResolutionError):
            resolver.resolve(AllAssets(), "site-1", include_new_assets=False)

    def test_asset_type(self, resolver):
        assert resolver.resolve(AssetType("forklift"), "site-1") == {"FL-001", "FL-002"}
        assert resolver.resolve(AssetType("forklift"), "site-2") == {"FL-101"}

    def test_asset_type_ignores_include_new_assets(self, resolver):
        assets = resolver.resolve(AssetType("forklift"), "site-1", include_new_assets=False, snapshot_at=SNAPSHOT)
        assert assets == {"FL-001", "FL-002"}

    def test_tags_match_any(self, resolver):
        assert resolver.resolve(Tags(frozenset({"yard"})), "site-1") == {"FL-002", "CR-001"}
        assert resolver.resolve(Tags(frozenset({"warehouse", "lifting"})), "site-1") == {"FL-001", "CR-001"}

    def test_asset_ids_drop_unknown(self, resolver):
        assets = resolver.resolve(AssetIds(frozenset({"FL-001", "GONE-9"})), "site-1")
        assert assets == {"FL-001"}

    def test_empty_result_is_not_an_error(self, resolver):
        assert resolver.resolve(AssetType("excavator"), "site-1") == frozenset()


class TestFailures:
    def test_directory_exception_becomes_scope_error(self):
        class BrokenDirectory:
            def lookup_assets(self, site_id, selector, *, onboarded_before=None):
                raise ConnectionError("directory offline")

            def asset_exists(self, asset_id):
                return True

        resolver = ScopeResolver(BrokenDirectory(), timeout_seconds=None)
        with pytest.raises(ScopeResolutionError, match="directory offline") as exc_info:
            resolver.resolve(AssetType("forklift"), "site-1")
        assert exc_info.value.retryable is True

    def test_slow_directory_times_out(self):
        release = threading.Event()

        class SlowDirectory:
            def lookup_assets(self, site_id, selector, *, onboarded_before=None):
                release.wait(5)
                return []

            def asset_exists(self, asset_id):
                return True

        resolver = ScopeResolver(SlowDirectory(), timeout_seconds=0.05)
        try:
            with pytest.raises(ExternalTimeout) as exc_info:
                resolver.resolve(AllAssets(), "site-1")
        finally:
            release.set()
        assert exc_info.value.operation == "asset_directory.lookup_assets"
