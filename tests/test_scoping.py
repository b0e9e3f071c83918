"""
Root Operation Scoper Tests
"""

import copy

import pytest

from soft_delete_scope.context import scope_context
from soft_delete_scope.engine import QueryParams
from soft_delete_scope.scoping import ROOT_SCOPED_OPERATIONS, ReadScopeMiddleware, scope_read_args

NOT_DELETED = {"deleted_at": None}


class TestScopeReadArgs:
    """Per-operation handling of the root filter"""

    @pytest.mark.parametrize("operation", ["find_unique", "find_unique_or_throw"])
    def test_unique_reads_merge_flat(self, registry, operation):
        """Test unique reads get a flat predicate"""
        args = scope_read_args(registry, "User", operation, {"where": {"email": "a@example.com"}})

        assert args == {"where": {"email": "a@example.com", "deleted_at": None}}

    @pytest.mark.parametrize(
        "operation",
        ["find_first", "find_first_or_throw", "find_many", "count", "aggregate", "group_by"],
    )
    def test_other_reads_are_and_wrapped(self, registry, operation):
        """Test other reads are AND-wrapped"""
        args = scope_read_args(registry, "User", operation, {"where": {"name": "A"}})

        assert args["where"] == {"AND": [{"name": "A"}, NOT_DELETED]}

    def test_missing_where_gets_bare_predicate(self, registry):
        """Test a missing where becomes the bare predicate"""
        assert scope_read_args(registry, "User", "find_many", {}) == {"where": NOT_DELETED}
        assert scope_read_args(registry, "User", "count", None) == {"where": NOT_DELETED}

    @pytest.mark.parametrize("operation", ["update", "update_many", "upsert", "create", "delete"])
    def test_writes_are_not_root_scoped(self, registry, operation):
        """Test write operations keep their root filter"""
        args = scope_read_args(registry, "User", operation, {"where": {"email": "a@example.com"}})

        assert args == {"where": {"email": "a@example.com"}}

    def test_writes_still_scope_relation_filters(self, registry):
        """Test writes still scope relation filters"""
        args = scope_read_args(registry, "User", "update_many", {"where": {"posts": {"some": {"title": "x"}}}})

        assert args["where"] == {"posts": {"some": {"AND": [{"title": "x"}, NOT_DELETED]}}}

    def test_upsert_is_a_known_gap(self):
        """Test upsert is not root-scoped"""
        assert "upsert" not in ROOT_SCOPED_OPERATIONS

    def test_non_soft_deletable_entity_root_untouched(self, registry):
        """Test plain entities get no root predicate"""
        args = scope_read_args(registry, "Comment", "find_many", {"where": {"body": "x"}})

        assert args == {"where": {"body": "x"}}

    def test_selections_are_scoped_with_root(self, registry):
        """Test include trees are scoped together with the root"""
        args = scope_read_args(registry, "User", "find_many", {"include": {"posts": True}})

        assert args == {"include": {"posts": {"where": NOT_DELETED}}, "where": NOT_DELETED}

    def test_pass_through_keys_are_preserved(self, registry):
        """Test ordering and paging arguments are kept"""
        args = scope_read_args(registry, "User", "find_many", {"order_by": {"id": "asc"}, "take": 5})

        assert args["order_by"] == {"id": "asc"}
        assert args["take"] == 5

    def test_input_is_not_mutated(self, registry):
        """Test scoping returns independent copies"""
        args = {
            "where": {"posts": {"some": {"title": "x"}}},
            "include": {"posts": {"where": {"title": {"contains": "Post"}}}},
        }
        original = copy.deepcopy(args)

        first = scope_read_args(registry, "User", "find_many", args)
        second = scope_read_args(registry, "User", "find_many", args)

        assert args == original
        assert first == second
        assert first["include"] is not second["include"]


class TestReadScopeMiddleware:
    """Middleware behaviour under the ambient scope context"""

    @pytest.mark.asyncio
    async def test_default_context_rewrites_args(self, registry):
        """Test the middleware rewrites arguments by default"""
        seen = []

        async def call_next(params):
            seen.append(params)
            return "result"

        params = QueryParams("User", "find_many", {"where": {"name": "A"}})
        result = await ReadScopeMiddleware(registry)(params, call_next)

        assert result == "result"
        assert seen[0].args == {"where": {"AND": [{"name": "A"}, NOT_DELETED]}}
        assert params.args == {"where": {"name": "A"}}

    @pytest.mark.asyncio
    async def test_include_deleted_passes_params_through(self, registry):
        """Test the middleware is bypassed under include_deleted"""
        seen = []

        async def call_next(params):
            seen.append(params)

        params = QueryParams("User", "find_many", {"where": {"name": "A"}})
        with scope_context(include_deleted=True):
            await ReadScopeMiddleware(registry)(params, call_next)

        assert seen == [params]
