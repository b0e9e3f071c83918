"""
Soft Delete Filter Rewriter

Rewrites ``where`` trees so that relation sub-filters only match rows whose
soft-delete timestamp is null. The input tree is never mutated; every call
returns an independent copy.
"""

from typing import Any, Dict

from soft_delete_scope.metadata import MetadataRegistry

LOGICAL_OPERATORS = frozenset(("AND", "OR", "NOT"))
LIST_RELATION_OPERATORS = ("some", "none", "every")
TO_ONE_RELATION_OPERATORS = ("is", "is_not")


def is_plain_dict(value: Any) -> bool:
    return type(value) is dict


def clone_tree(value: Any) -> Any:
    """Copy dicts, lists and tuples recursively; share every other value"""
    if isinstance(value, list):
        return [clone_tree(item) for item in value]
    if isinstance(value, tuple):
        return tuple(clone_tree(item) for item in value)
    if isinstance(value, dict):
        return {key: clone_tree(item) for key, item in value.items()}
    return value


def not_deleted(registry: MetadataRegistry) -> Dict[str, Any]:
    return {registry.soft_delete_field: None}


def merge_with_and(registry: MetadataRegistry, where: Any) -> Dict[str, Any]:
    """AND-combine ``where`` with the not-deleted predicate"""
    if where is None:
        return not_deleted(registry)
    return {"AND": [where, not_deleted(registry)]}


def merge_into_unique(registry: MetadataRegistry, where: Any) -> Dict[str, Any]:
    """Add the not-deleted predicate directly to a unique-lookup filter"""
    unique_where = dict(where) if is_plain_dict(where) else {}
    unique_where[registry.soft_delete_field] = None
    return unique_where


def _scope_logical_operator(registry: MetadataRegistry, entity: str, value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [scope_where(registry, entity, item) for item in value]
    if is_plain_dict(value):
        return scope_where(registry, entity, value)
    return clone_tree(value)


def _scope_list_relation_filter(
    registry: MetadataRegistry, target: str, relation_filter: Dict[str, Any]
) -> Dict[str, Any]:
    scoped_filter = clone_tree(relation_filter)
    target_soft_deletable = registry.is_soft_deletable(target)

    for operator in LIST_RELATION_OPERATORS:
        if operator not in relation_filter:
            continue

        scoped_value = scope_where(registry, target, relation_filter[operator])
        if not target_soft_deletable:
            scoped_filter[operator] = scoped_value
        elif operator == "every":
            # rows already hidden satisfy "every" trivially
            scoped_filter[operator] = {
                "OR": [
                    {registry.soft_delete_field: {"not": None}},
                    scoped_value if is_plain_dict(scoped_value) else {},
                ]
            }
        else:
            scoped_filter[operator] = merge_with_and(registry, scoped_value)

    return scoped_filter


def _scope_to_one_relation_filter(
    registry: MetadataRegistry, target: str, relation_filter: Dict[str, Any]
) -> Any:
    target_soft_deletable = registry.is_soft_deletable(target)

    if any(operator in relation_filter for operator in TO_ONE_RELATION_OPERATORS):
        scoped_filter = clone_tree(relation_filter)
        if "is" in relation_filter and relation_filter["is"] is not None:
            scoped_is = scope_where(registry, target, relation_filter["is"])
            if target_soft_deletable:
                scoped_is = merge_with_and(registry, scoped_is)
            scoped_filter["is"] = scoped_is
        if "is_not" in relation_filter and relation_filter["is_not"] is not None:
            # negative match, never tightened
            scoped_filter["is_not"] = scope_where(registry, target, relation_filter["is_not"])
        return scoped_filter

    scoped_shorthand = scope_where(registry, target, relation_filter)
    if not target_soft_deletable:
        return scoped_shorthand
    return merge_with_and(registry, scoped_shorthand)


def scope_where(registry: MetadataRegistry, entity: str, where: Any) -> Any:
    """
    Return a scoped copy of a ``where`` tree for ``entity``

    Relation filters on soft-deletable targets get the not-deleted predicate;
    scalar predicates and unknown keys are copied verbatim. Anything that is
    not a dict is cloned and returned unchanged.
    """
    if not is_plain_dict(where):
        return clone_tree(where)

    scoped_where: Dict[str, Any] = {}
    relations = registry.relations(entity)

    for key, value in where.items():
        if key in LOGICAL_OPERATORS:
            scoped_where[key] = _scope_logical_operator(registry, entity, value)
            continue

        relation = relations.get(key)
        if relation is None or not is_plain_dict(value):
            scoped_where[key] = clone_tree(value)
            continue

        if relation.is_list:
            scoped_where[key] = _scope_list_relation_filter(registry, relation.target_entity, value)
        else:
            scoped_where[key] = _scope_to_one_relation_filter(
                registry, relation.target_entity, value
            )

    return scoped_where
