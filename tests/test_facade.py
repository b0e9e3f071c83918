"""
Scope-Override Facade Tests

Uses plain objects as targets so the facade is tested without a database.
"""

import asyncio
import gc
import weakref
from datetime import datetime
from types import MappingProxyType

import pytest

from soft_delete_scope.context import DEFAULT_SCOPE, ScopeContext, get_scope_context
from soft_delete_scope.facade import ScopedView, ViewCache


class _Accessor:
    label = "accessor"
    limit = 10

    def current(self):
        return get_scope_context()

    async def current_later(self):
        await asyncio.sleep(0)
        return get_scope_context()


class _Root:
    def __init__(self):
        self.accessor = _Accessor()
        self.nothing = None
        self.names = frozenset({"User", "Post"})
        self.settings = MappingProxyType({"limit": 10})
        self.items = [1, 2, 3]
        self.stamp = datetime(2026, 1, 1)

    def marker(self):
        return "ok"


@pytest.fixture
def root():
    return _Root()


@pytest.fixture
def cache():
    return ViewCache()


class TestCallInterception:
    """Test calls made through a view run under its override"""

    def test_sync_results_are_returned_directly(self, root, cache):
        """Test synchronous calls see the override and return plain results"""
        view = cache.view(root, "with_deleted")

        assert view.marker() == "ok"
        assert view.accessor.current() == ScopeContext(include_deleted=True)
        assert get_scope_context() == DEFAULT_SCOPE

    @pytest.mark.asyncio
    async def test_awaitable_results_run_under_override(self, root, cache):
        """Test awaited results still see the override after the call returns"""
        with_deleted = await cache.view(root, "with_deleted").accessor.current_later()
        hard = await cache.view(root, "hard_delete").accessor.current_later()

        assert with_deleted == ScopeContext(include_deleted=True)
        assert hard == ScopeContext(hard_delete=True, include_deleted=True)
        assert get_scope_context() == DEFAULT_SCOPE

    @pytest.mark.asyncio
    async def test_concurrent_views_do_not_leak(self, root, cache):
        """Test a view awaited concurrently with plain calls does not leak"""
        results = await asyncio.gather(
            root.accessor.current_later(),
            cache.view(root, "with_deleted").accessor.current_later(),
            root.accessor.current_later(),
        )

        assert results == [DEFAULT_SCOPE, ScopeContext(include_deleted=True), DEFAULT_SCOPE]


class TestWrapping:
    """Test which members are wrapped and how views are cached"""

    def test_primitives_pass_through(self, root, cache):
        """Test scalar members are returned unwrapped"""
        view = cache.view(root, "with_deleted")

        assert view.nothing is None
        assert view.accessor.label == "accessor"
        assert view.accessor.limit == 10

    def test_containers_and_values_pass_through(self, root, cache):
        """Test sets, mappings, lists and datetimes keep their own protocols"""
        view = cache.view(root, "with_deleted")

        assert "User" in view.names
        assert view.names is root.names
        assert view.settings["limit"] == 10
        assert dict(view.settings) == {"limit": 10}
        assert view.items is root.items
        assert len(view.items) == 3
        assert view.stamp < datetime(2027, 1, 1)

    def test_nested_objects_are_wrapped_and_cached(self, root, cache):
        """Test collaborator members are wrapped once per override kind"""
        view = cache.view(root, "with_deleted")

        assert isinstance(view.accessor, ScopedView)
        assert view.accessor is view.accessor
        assert cache.view(root, "with_deleted") is view
        assert cache.view(root, "hard_delete") is not view

    def test_unused_views_are_released(self, cache):
        """Test the cache keeps neither unused views nor their targets alive"""
        target = _Accessor()
        target_ref = weakref.ref(target)
        view_ref = weakref.ref(cache.view(target, "with_deleted"))

        del target
        gc.collect()

        assert view_ref() is None
        assert target_ref() is None

    def test_override_entry_points_on_views(self, root, cache):
        """Test with_deleted and hard_delete are available on any view"""
        view = cache.view(root, "with_deleted")
        hard = view.hard_delete()

        assert hard is cache.view(root, "hard_delete")
        assert hard.accessor.current() == ScopeContext(hard_delete=True, include_deleted=True)
        assert view.with_deleted() is view

    def test_missing_attribute_raises(self, root, cache):
        """Test unknown members raise AttributeError"""
        with pytest.raises(AttributeError):
            cache.view(root, "with_deleted").missing
