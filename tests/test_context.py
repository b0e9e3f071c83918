"""
Scope Context Tests
"""

import asyncio

import pytest

from soft_delete_scope.context import DEFAULT_SCOPE, ScopeContext, get_scope_context, scope_context


class TestScopeContextValue:
    """Test the immutable scope context value"""

    def test_defaults(self):
        """Test the default context hides deleted rows and deletes softly"""
        assert get_scope_context() == ScopeContext(hard_delete=False, include_deleted=False)

    def test_hard_delete_requires_include_deleted(self):
        """Test hard_delete without include_deleted is rejected"""
        with pytest.raises(ValueError):
            ScopeContext(hard_delete=True)

    def test_merge_hard_delete_implies_include_deleted(self):
        """Test merging hard_delete also sets include_deleted"""
        merged = DEFAULT_SCOPE.merge(hard_delete=True)

        assert merged == ScopeContext(hard_delete=True, include_deleted=True)
        assert DEFAULT_SCOPE == ScopeContext()

    def test_merge_keeps_unrelated_flags(self):
        """Test merging leaves flags that were not overridden"""
        merged = ScopeContext(include_deleted=True).merge(hard_delete=False)

        assert merged.include_deleted is True


class TestScopePropagation:
    """Test context propagation through blocks and tasks"""

    def test_scope_context_resets_on_exit(self):
        """Test nested scope blocks restore the outer context"""
        with scope_context(include_deleted=True) as active:
            assert get_scope_context() is active
            with scope_context(hard_delete=True):
                assert get_scope_context().hard_delete is True
            assert get_scope_context() == ScopeContext(include_deleted=True)

        assert get_scope_context() == DEFAULT_SCOPE

    def test_scope_context_resets_after_error(self):
        """Test the context is restored when the block raises"""
        with pytest.raises(RuntimeError):
            with scope_context(include_deleted=True):
                raise RuntimeError("boom")

        assert get_scope_context() == DEFAULT_SCOPE

    @pytest.mark.asyncio
    async def test_nested_awaits_inherit_context(self):
        """Test awaited coroutines see the caller's context"""
        async def inner():
            await asyncio.sleep(0)
            return get_scope_context()

        async def outer():
            return await inner()

        with scope_context(include_deleted=True):
            observed = await outer()

        assert observed.include_deleted is True

    @pytest.mark.asyncio
    async def test_concurrent_chains_are_isolated(self):
        """Test gathered chains keep their own overrides"""
        async def chain(overrides):
            with scope_context(**overrides):
                await asyncio.sleep(0)
                first = get_scope_context()
                await asyncio.sleep(0)
                return first, get_scope_context()

        results = await asyncio.gather(chain({}), chain({"include_deleted": True}), chain({"hard_delete": True}))

        assert [r[0] for r in results] == [r[1] for r in results]
        assert results[0][0] == DEFAULT_SCOPE
        assert results[1][0] == ScopeContext(include_deleted=True)
        assert results[2][0] == ScopeContext(hard_delete=True, include_deleted=True)
        assert get_scope_context() == DEFAULT_SCOPE
