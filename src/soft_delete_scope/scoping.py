"""
Soft Delete Read Scoping

Decides per operation how the not-deleted predicate joins the root filter and
plugs the whole rewrite into the engine as a query middleware.
"""

import logging
from typing import Any, Dict

from soft_delete_scope.context import get_scope_context
from soft_delete_scope.engine import NextCall, QueryParams
from soft_delete_scope.filters import (
    clone_tree,
    is_plain_dict,
    merge_into_unique,
    merge_with_and,
    scope_where,
)
from soft_delete_scope.metadata import MetadataRegistry
from soft_delete_scope.selections import scope_selections

logger = logging.getLogger(__name__)

# upsert is intentionally absent: its internal lookup still sees deleted rows
ROOT_SCOPED_OPERATIONS = frozenset(
    (
        "aggregate",
        "count",
        "find_first",
        "find_first_or_throw",
        "find_many",
        "find_unique",
        "find_unique_or_throw",
        "group_by",
    )
)

UNIQUE_READ_OPERATIONS = frozenset(("find_unique", "find_unique_or_throw"))


def scope_read_args(
    registry: MetadataRegistry, entity: str, operation: str, args: Any
) -> Dict[str, Any]:
    """
    Return a scoped copy of an operation's argument tree

    Relation filters and nested selections are scoped for every operation;
    the root ``where`` only for root-scoped reads on soft-deletable entities.
    Unique lookups get the predicate merged into their flat filter, every
    other root-scoped read gets it AND-combined.
    """
    scoped_args = clone_tree(args) if is_plain_dict(args) else {}

    if scoped_args.get("where") is not None:
        scoped_args["where"] = scope_where(registry, entity, scoped_args["where"])
    scope_selections(registry, entity, scoped_args)

    if not registry.is_soft_deletable(entity) or operation not in ROOT_SCOPED_OPERATIONS:
        return scoped_args

    existing_where = scoped_args.get("where")
    if operation in UNIQUE_READ_OPERATIONS:
        scoped_args["where"] = merge_into_unique(registry, existing_where)
    else:
        scoped_args["where"] = merge_with_and(registry, existing_where)
    return scoped_args


class ReadScopeMiddleware:
    """Engine middleware applying ``scope_read_args`` unless deleted rows are visible"""

    def __init__(self, registry: MetadataRegistry):
        self.registry = registry

    async def __call__(self, params: QueryParams, call_next: NextCall) -> Any:
        if not params.model or get_scope_context().include_deleted:
            return await call_next(params)

        scoped_args = scope_read_args(self.registry, params.model, params.operation, params.args)
        logger.debug(
            "Scoped %s.%s where=%s", params.model, params.operation, scoped_args.get("where")
        )
        return await call_next(params.replace(args=scoped_args))
