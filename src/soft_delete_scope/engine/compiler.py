"""
Filter Compiler

Translates ``where`` and ``order_by`` argument trees into SQLAlchemy
expressions for one mapped class.
"""

from typing import Any, Dict, List

from sqlalchemy import and_, false, inspect, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from soft_delete_scope.errors import QueryValidationError

FIELD_OPERATORS = frozenset(
    (
        "equals", "not", "in", "not_in", "lt", "lte", "gt", "gte",
        "contains", "starts_with", "ends_with",
    )
)
SORT_DIRECTIONS = frozenset(("asc", "desc"))


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _compile_field_operator(column, operator: str, operand: Any) -> ColumnElement:
    if operator == "equals":
        return column.is_(None) if operand is None else column == operand
    if operator == "not":
        if isinstance(operand, dict):
            return not_(compile_field_filter(column, operand))
        return column.is_not(None) if operand is None else column != operand
    if operator == "in":
        return column.in_(list(operand))
    if operator == "not_in":
        return column.not_in(list(operand))
    if operator == "lt":
        return column < operand
    if operator == "lte":
        return column <= operand
    if operator == "gt":
        return column > operand
    if operator == "gte":
        return column >= operand
    if operator == "contains":
        return column.contains(operand, autoescape=True)
    if operator == "starts_with":
        return column.startswith(operand, autoescape=True)
    return column.endswith(operand, autoescape=True)


def compile_field_filter(column, value: Any) -> ColumnElement:
    """Compile a scalar-field predicate: a literal or a dict of field operators"""
    if not isinstance(value, dict):
        return column.is_(None) if value is None else column == value

    unknown = set(value) - FIELD_OPERATORS
    if unknown:
        raise QueryValidationError(f"Unknown field operator(s) {sorted(unknown)} on '{column.key}'")

    clauses = [
        _compile_field_operator(column, operator, operand) for operator, operand in value.items()
    ]
    return and_(*clauses) if clauses else true()


def _compile_relation_filter(model, key: str, relationship, value: Any) -> ColumnElement:
    attribute = getattr(model, key)
    target = relationship.mapper.class_

    if not isinstance(value, dict):
        raise QueryValidationError(
            f"Relation filter '{key}' on '{model.__name__}' must be a mapping"
        )

    if relationship.uselist:
        unknown = set(value) - {"some", "none", "every"}
        if unknown:
            raise QueryValidationError(
                f"Unknown list relation operator(s) {sorted(unknown)} on '{key}'"
            )
        clauses = []
        if "some" in value:
            clauses.append(attribute.any(compile_where(target, value["some"])))
        if "none" in value:
            clauses.append(not_(attribute.any(compile_where(target, value["none"]))))
        if "every" in value:
            clauses.append(not_(attribute.any(not_(compile_where(target, value["every"])))))
        return and_(*clauses) if clauses else true()

    if "is" in value or "is_not" in value:
        clauses = []
        if "is" in value:
            if value["is"] is None:
                clauses.append(not_(attribute.has()))
            else:
                clauses.append(attribute.has(compile_where(target, value["is"])))
        if "is_not" in value:
            if value["is_not"] is None:
                clauses.append(attribute.has())
            else:
                clauses.append(not_(attribute.has(compile_where(target, value["is_not"]))))
        return and_(*clauses)

    return attribute.has(compile_where(target, value))


def compile_where(model, where: Any) -> ColumnElement:
    """
    Compile a ``where`` tree into a boolean SQL expression

    Args:
        model: Mapped class the filter applies to
        where: Filter tree; ``None`` matches every row

    Returns:
        SQLAlchemy boolean clause
    """
    if where is None:
        return true()
    if not isinstance(where, dict):
        raise QueryValidationError(
            f"Filter for '{model.__name__}' must be a mapping, got {type(where).__name__}"
        )

    mapper = inspect(model)
    clauses = []

    for key, value in where.items():
        if key == "AND":
            clauses.append(and_(true(), *[compile_where(model, item) for item in _as_list(value)]))
        elif key == "OR":
            items = _as_list(value)
            if items:
                clauses.append(or_(*[compile_where(model, item) for item in items]))
            else:
                clauses.append(false())
        elif key == "NOT":
            negated = [not_(compile_where(model, item)) for item in _as_list(value)]
            clauses.append(and_(true(), *negated))
        elif key in mapper.relationships:
            clauses.append(_compile_relation_filter(model, key, mapper.relationships[key], value))
        elif key in mapper.column_attrs:
            clauses.append(compile_field_filter(getattr(model, key), value))
        else:
            raise QueryValidationError(f"Unknown field '{key}' on model '{model.__name__}'")

    return and_(true(), *clauses)


def compile_order_by(model, order_by: Any) -> List[ColumnElement]:
    """Compile ``{"field": "asc"}`` or a list of such mappings"""
    if order_by is None:
        return []

    mapper = inspect(model)
    expressions = []
    for entry in _as_list(order_by):
        if not isinstance(entry, dict):
            raise QueryValidationError(f"Invalid order_by entry {entry!r}")
        for field, direction in entry.items():
            if field not in mapper.column_attrs:
                raise QueryValidationError(f"Cannot order '{model.__name__}' by '{field}'")
            if direction not in SORT_DIRECTIONS:
                raise QueryValidationError(f"Invalid sort direction {direction!r} for '{field}'")
            column = getattr(model, field)
            expressions.append(column.asc() if direction == "asc" else column.desc())
    return expressions
