"""
Soft Delete Selection Rewriter

Scopes nested ``include``/``select`` relation fetches and ``_count``
aggregates the same way the root query is scoped. Operates in place on an
argument tree that the caller has already cloned.
"""

from typing import Any, Dict

from soft_delete_scope.filters import is_plain_dict, merge_with_and, not_deleted, scope_where
from soft_delete_scope.metadata import MetadataRegistry

SELECTION_KEYS = ("include", "select")
COUNT_KEY = "_count"


def _scope_count_selection(
    registry: MetadataRegistry, entity: str, container: Dict[str, Any]
) -> None:
    relations = registry.relations(entity)
    count_selection = container.get(COUNT_KEY)

    if count_selection is True:
        list_relations = {name: True for name, relation in relations.items() if relation.is_list}
        targets = [relations[name].target_entity for name in list_relations]
        if not any(registry.is_soft_deletable(target) for target in targets):
            return
        count_selection = {"select": list_relations}
        container[COUNT_KEY] = count_selection

    if not is_plain_dict(count_selection):
        return
    count_select = count_selection.get("select")
    if not is_plain_dict(count_select):
        return

    for field_name, field_selection in count_select.items():
        relation = relations.get(field_name)
        if relation is None or not relation.is_list:
            continue
        if not registry.is_soft_deletable(relation.target_entity):
            continue

        if field_selection is True:
            count_select[field_name] = {"where": not_deleted(registry)}
        elif is_plain_dict(field_selection):
            target = relation.target_entity
            scoped_where = scope_where(registry, target, field_selection.get("where"))
            field_selection["where"] = merge_with_and(registry, scoped_where)


def scope_selections(registry: MetadataRegistry, entity: str, args: Dict[str, Any]) -> None:
    """Scope every relation requested under ``include``/``select`` of ``args``"""
    relations = registry.relations(entity)
    if not relations:
        return

    for key in SELECTION_KEYS:
        container = args.get(key)
        if not is_plain_dict(container):
            continue

        _scope_count_selection(registry, entity, container)

        for relation_name, selection in container.items():
            relation = relations.get(relation_name)
            if relation is None:
                continue

            scoped_list = relation.is_list and registry.is_soft_deletable(relation.target_entity)

            if selection is True:
                if scoped_list:
                    container[relation_name] = {"where": not_deleted(registry)}
                continue

            if not is_plain_dict(selection):
                continue

            has_where = selection.get("where") is not None
            scoped_where = None
            if has_where:
                scoped_where = scope_where(registry, relation.target_entity, selection["where"])

            if scoped_list:
                selection["where"] = merge_with_and(registry, scoped_where)
            elif has_where:
                selection["where"] = scoped_where

            scope_selections(registry, relation.target_entity, selection)
