"""
Row Loader

Turns ORM instances into plain dict rows, resolving ``include``/``select``
relation fetches and ``_count`` sub-selections with one query per relation.
"""

from typing import Any, Dict, Optional, Set

from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import with_parent

from soft_delete_scope.engine.compiler import compile_order_by, compile_where
from soft_delete_scope.errors import QueryValidationError


def column_values(instance, keys: Optional[Set[str]] = None) -> Dict[str, Any]:
    mapper = inspect(type(instance))
    return {
        attr.key: getattr(instance, attr.key)
        for attr in mapper.column_attrs
        if keys is None or attr.key in keys
    }


def primary_key_order(model):
    return [column.asc() for column in inspect(model).primary_key]


async def _load_counts(session: AsyncSession, instance, count_selection: Any) -> Dict[str, int]:
    model = type(instance)
    mapper = inspect(model)

    if count_selection is True:
        fields = {rel.key: True for rel in mapper.relationships if rel.uselist}
    elif isinstance(count_selection, dict) and isinstance(count_selection.get("select"), dict):
        fields = count_selection["select"]
    else:
        raise QueryValidationError(f"Invalid _count selection on '{model.__name__}'")

    counts: Dict[str, int] = {}
    for name, selection in fields.items():
        relationship = mapper.relationships.get(name)
        if relationship is None or not relationship.uselist:
            raise QueryValidationError(f"Cannot count '{name}' on '{model.__name__}'")
        if not selection:
            continue

        target = relationship.mapper.class_
        where = selection.get("where") if isinstance(selection, dict) else None
        stmt = (
            select(func.count())
            .select_from(target)
            .where(with_parent(instance, getattr(model, name)))
            .where(compile_where(target, where))
        )
        counts[name] = await session.scalar(stmt)
    return counts


async def _load_relation(session: AsyncSession, instance, relationship, selection: Any) -> Any:
    model = type(instance)
    target = relationship.mapper.class_
    nested = selection if isinstance(selection, dict) else {}

    stmt = (
        select(target)
        .where(with_parent(instance, getattr(model, relationship.key)))
        .where(compile_where(target, nested.get("where")))
        .order_by(*compile_order_by(target, nested.get("order_by")), *primary_key_order(target))
        .execution_options(populate_existing=True)
    )

    if not relationship.uselist:
        related = (await session.scalars(stmt.limit(1))).first()
        return None if related is None else await shape_row(session, related, nested)

    if nested.get("skip"):
        stmt = stmt.offset(nested["skip"])
    if nested.get("take") is not None:
        stmt = stmt.limit(nested["take"])
    related_rows = (await session.scalars(stmt)).all()
    return [await shape_row(session, related, nested) for related in related_rows]


async def shape_row(session: AsyncSession, instance, args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the dict returned to callers for one instance

    ``select`` restricts scalar fields and may request relations; ``include``
    keeps every scalar field and adds the requested relations.
    """
    model = type(instance)
    mapper = inspect(model)
    select_tree = args.get("select")
    include_tree = args.get("include")

    if isinstance(select_tree, dict) and isinstance(include_tree, dict):
        raise QueryValidationError("Use either select or include, not both")

    if isinstance(select_tree, dict):
        scalar_keys = {
            key for key, value in select_tree.items() if value and key in mapper.column_attrs
        }
        row = column_values(instance, scalar_keys)
        relation_tree = select_tree
    else:
        row = column_values(instance)
        relation_tree = include_tree if isinstance(include_tree, dict) else {}

    for key, selection in relation_tree.items():
        if key == "_count":
            if selection:
                row["_count"] = await _load_counts(session, instance, selection)
        elif key in mapper.relationships:
            if selection:
                relationship = mapper.relationships[key]
                row[key] = await _load_relation(session, instance, relationship, selection)
        elif key not in mapper.column_attrs:
            raise QueryValidationError(f"Unknown field '{key}' on model '{model.__name__}'")

    return row
