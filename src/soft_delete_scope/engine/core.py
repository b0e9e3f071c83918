"""
Host Query Engine

Executes structured argument trees (``where``/``include``/``select``/``data``)
against SQLAlchemy mapped classes through an async session. Every delegate
method returns a lazy ``QueryRequest``; awaiting it runs the query through the
middleware chain and then the executor below.
"""

import inspect as pyinspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, inspect, select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm.interfaces import MANYTOONE

from soft_delete_scope.engine.compiler import compile_order_by, compile_where
from soft_delete_scope.engine.loader import primary_key_order, shape_row
from soft_delete_scope.errors import (
    QueryValidationError,
    RecordNotFoundError,
    TransactionBatchError,
)
from soft_delete_scope.metadata import to_delegate_name

logger = logging.getLogger(__name__)

AGGREGATE_KEYS = ("_count", "_min", "_max", "_sum", "_avg")
_AGGREGATE_FUNCTIONS = {"_min": func.min, "_max": func.max, "_sum": func.sum, "_avg": func.avg}

_ALLOWED_ARGS: Dict[str, frozenset] = {
    "find_unique": frozenset(("where", "select", "include")),
    "find_unique_or_throw": frozenset(("where", "select", "include")),
    "find_first": frozenset(("where", "select", "include", "order_by", "skip")),
    "find_first_or_throw": frozenset(("where", "select", "include", "order_by", "skip")),
    "find_many": frozenset(("where", "select", "include", "order_by", "skip", "take")),
    "count": frozenset(("where", "select", "order_by", "skip", "take")),
    "aggregate": frozenset(("where", "order_by", "skip", "take", *AGGREGATE_KEYS)),
    "group_by": frozenset(("by", "where", "order_by", "skip", "take", *AGGREGATE_KEYS)),
    "create": frozenset(("data", "select", "include")),
    "create_many": frozenset(("data",)),
    "update": frozenset(("where", "data", "select", "include")),
    "update_many": frozenset(("where", "data")),
    "upsert": frozenset(("where", "create", "update", "select", "include")),
    "delete": frozenset(("where", "select", "include")),
    "delete_many": frozenset(("where",)),
}


@dataclass(frozen=True)
class QueryParams:
    """One named operation on one entity with its argument tree"""

    model: str
    operation: str
    args: Dict[str, Any] = field(default_factory=dict)

    def replace(self, **changes: Any) -> "QueryParams":
        return replace(self, **changes)


NextCall = Callable[[QueryParams], Awaitable[Any]]
Middleware = Callable[[QueryParams, NextCall], Awaitable[Any]]


class QueryRequest:
    """
    Lazy handle for one engine operation

    Nothing runs until the handle is awaited or passed to a batch
    ``transaction``; only these handles are accepted by batch transactions.
    """

    __slots__ = ("_engine", "params")

    def __init__(self, engine: "QueryEngine", params: QueryParams):
        self._engine = engine
        self.params = params

    def __await__(self):
        return self._engine.dispatch(self.params).__await__()

    def __repr__(self) -> str:
        return f"<QueryRequest {self.params.model}.{self.params.operation}>"


class ModelDelegate:
    """Per-entity accessor exposing the named operations"""

    def __init__(self, engine: "QueryEngine", name: str):
        self._engine = engine
        self.name = name

    def _request(self, operation: str, args: Dict[str, Any]) -> QueryRequest:
        return QueryRequest(self._engine, QueryParams(self.name, operation, args))

    def find_unique(self, **args: Any) -> QueryRequest:
        return self._request("find_unique", args)

    def find_unique_or_throw(self, **args: Any) -> QueryRequest:
        return self._request("find_unique_or_throw", args)

    def find_first(self, **args: Any) -> QueryRequest:
        return self._request("find_first", args)

    def find_first_or_throw(self, **args: Any) -> QueryRequest:
        return self._request("find_first_or_throw", args)

    def find_many(self, **args: Any) -> QueryRequest:
        return self._request("find_many", args)

    def count(self, **args: Any) -> QueryRequest:
        return self._request("count", args)

    def aggregate(self, **args: Any) -> QueryRequest:
        return self._request("aggregate", args)

    def group_by(self, **args: Any) -> QueryRequest:
        return self._request("group_by", args)

    def create(self, **args: Any) -> QueryRequest:
        return self._request("create", args)

    def create_many(self, **args: Any) -> QueryRequest:
        return self._request("create_many", args)

    def update(self, **args: Any) -> QueryRequest:
        return self._request("update", args)

    def update_many(self, **args: Any) -> QueryRequest:
        return self._request("update_many", args)

    def upsert(self, **args: Any) -> QueryRequest:
        return self._request("upsert", args)

    def delete(self, **args: Any) -> QueryRequest:
        return self._request("delete", args)

    def delete_many(self, **args: Any) -> QueryRequest:
        return self._request("delete_many", args)

    def __repr__(self) -> str:
        return f"<ModelDelegate {self.name}>"


class QueryEngine:
    """Async executor for structured queries over one declarative base"""

    def __init__(
        self,
        bind: AsyncEngine,
        base,
        session_factory: Optional[async_sessionmaker] = None,
        middlewares: Sequence[Middleware] = (),
        session: Optional[AsyncSession] = None,
    ):
        self.bind = bind
        self.base = base
        self.session_factory = session_factory or async_sessionmaker(bind, expire_on_commit=False)
        self._middlewares = tuple(middlewares)
        self._session = session
        self._models = {mapper.class_.__name__: mapper.class_ for mapper in base.registry.mappers}
        self._by_delegate = {to_delegate_name(name): name for name in self._models}
        self._delegates: Dict[str, ModelDelegate] = {}

    # ========================================================================
    # Construction
    # ========================================================================

    def extend(self, middleware: Middleware) -> "QueryEngine":
        """Return a new engine with ``middleware`` appended to the chain"""
        middlewares = (*self._middlewares, middleware)
        return QueryEngine(self.bind, self.base, self.session_factory, middlewares, self._session)

    def _bind_session(self, session: AsyncSession) -> "QueryEngine":
        return QueryEngine(self.bind, self.base, self.session_factory, self._middlewares, session)

    @property
    def in_transaction(self) -> bool:
        return self._session is not None

    def delegate(self, model: str) -> ModelDelegate:
        if model not in self._models:
            raise QueryValidationError(f"Unknown model '{model}'")
        if model not in self._delegates:
            self._delegates[model] = ModelDelegate(self, model)
        return self._delegates[model]

    def __getattr__(self, name: str) -> ModelDelegate:
        model = self.__dict__.get("_by_delegate", {}).get(name)
        if model is None:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return self.delegate(model)

    # ========================================================================
    # Schema and lifecycle
    # ========================================================================

    async def create_all(self) -> None:
        async with self.bind.begin() as conn:
            await conn.run_sync(self.base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def drop_all(self) -> None:
        async with self.bind.begin() as conn:
            await conn.run_sync(self.base.metadata.drop_all)
        logger.info("Database tables dropped")

    async def dispose(self) -> None:
        await self.bind.dispose()

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def dispatch(self, params: QueryParams) -> Any:
        """Run ``params`` through the middleware chain and execute it"""

        async def call(index: int, current: QueryParams) -> Any:
            if index == len(self._middlewares):
                return await self._execute(current)
            middleware = self._middlewares[index]
            return await middleware(current, lambda next_params: call(index + 1, next_params))

        return await call(0, params)

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[AsyncSession]:
        if self._session is not None:
            yield self._session
            return
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def _execute(self, params: QueryParams) -> Any:
        model = self._models.get(params.model)
        if model is None:
            raise QueryValidationError(f"Unknown model '{params.model}'")

        allowed = _ALLOWED_ARGS.get(params.operation)
        if allowed is None:
            raise QueryValidationError(f"Unknown operation '{params.operation}'")
        unknown = set(params.args) - allowed
        if unknown:
            raise QueryValidationError(
                f"Unknown argument(s) {sorted(unknown)} for {params.model}.{params.operation}"
            )

        logger.debug("Executing %s.%s args=%s", params.model, params.operation, params.args)
        handler = getattr(self, f"_op_{params.operation}")
        async with self._session_scope() as session:
            return await handler(session, model, params.args)

    # ========================================================================
    # Transactions
    # ========================================================================

    async def transaction(self, operations: Any) -> Any:
        """
        Run operations atomically

        Args:
            operations: Either an async callback receiving an engine bound to
                the transaction, or an iterable of ``QueryRequest`` handles

        Returns:
            The callback's result, or the list of request results in order
        """
        if callable(operations):
            if self._session is not None:
                return await operations(self)
            async with self.session_factory() as session:
                async with session.begin():
                    return await operations(self._bind_session(session))

        items = list(operations)
        rejected = [item for item in items if not isinstance(item, QueryRequest)]
        if rejected:
            for item in items:
                if pyinspect.iscoroutine(item):
                    item.close()
            logger.warning(
                "Rejected batch transaction with %d non-request element(s)", len(rejected)
            )
            raise TransactionBatchError(
                "Batch transactions only accept QueryRequest handles returned by model delegates; "
                f"got {', '.join(type(item).__name__ for item in rejected)}"
            )

        async with self._session_scope() as session:
            bound = self._bind_session(session)
            return [await bound.dispatch(item.params) for item in items]

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _unique_fields(model) -> List[str]:
        return [
            attr.key
            for attr in inspect(model).column_attrs
            if any(column.primary_key or column.unique for column in attr.columns)
        ]

    def _require_unique(self, model, where: Any, operation: str) -> None:
        unique_fields = self._unique_fields(model)
        if not isinstance(where, dict) or not any(key in where for key in unique_fields):
            raise QueryValidationError(
                f"{model.__name__}.{operation} needs a unique filter on one of {unique_fields}"
            )

    def _rows_statement(self, model, args: Dict[str, Any]):
        stmt = (
            select(model)
            .where(compile_where(model, args.get("where")))
            .order_by(*compile_order_by(model, args.get("order_by")), *primary_key_order(model))
            .execution_options(populate_existing=True)
        )
        if args.get("skip"):
            stmt = stmt.offset(args["skip"])
        if args.get("take") is not None:
            stmt = stmt.limit(args["take"])
        return stmt

    async def _first(self, session: AsyncSession, model, args: Dict[str, Any]):
        return (await session.scalars(self._rows_statement(model, {**args, "take": 1}))).first()

    def _filtered_subquery(self, model, args: Dict[str, Any]):
        stmt = select(model.__table__).where(compile_where(model, args.get("where")))
        stmt = stmt.order_by(*compile_order_by(model, args.get("order_by")))
        if args.get("skip"):
            stmt = stmt.offset(args["skip"])
        if args.get("take") is not None:
            stmt = stmt.limit(args["take"])
        return stmt.subquery()

    @staticmethod
    def _column(model, source, key: str):
        mapper = inspect(model)
        if key not in mapper.column_attrs:
            raise QueryValidationError(f"Unknown field '{key}' on model '{model.__name__}'")
        if source is None:
            return getattr(model, key)
        return source.c[mapper.column_attrs[key].columns[0].name]

    def _aggregate_columns(self, model, source, args: Dict[str, Any]) -> List[tuple]:
        """Return ``(section, field, labelled expression)`` for every requested aggregate"""
        columns = []
        for section in AGGREGATE_KEYS:
            selection = args.get(section)
            if not selection:
                continue
            if section == "_count" and selection is True:
                columns.append((section, None, func.count().label("_count")))
                continue
            if not isinstance(selection, dict):
                raise QueryValidationError(f"Invalid {section} selection on '{model.__name__}'")
            for key, enabled in selection.items():
                if not enabled:
                    continue
                label = f"{section}__{key}"
                if section == "_count":
                    if key == "_all":
                        expression = func.count()
                    else:
                        expression = func.count(self._column(model, source, key))
                else:
                    expression = _AGGREGATE_FUNCTIONS[section](self._column(model, source, key))
                columns.append((section, key, expression.label(label)))
        return columns

    @staticmethod
    def _aggregate_result(columns: List[tuple], row) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for section, key, expression in columns:
            value = row._mapping[expression.name]
            if key is None:
                result[section] = value
            else:
                result.setdefault(section, {})[key] = value
        return result

    async def _link(self, session: AsyncSession, instance, relationship, related) -> None:
        if relationship.direction is MANYTOONE:
            setattr(instance, relationship.key, related)
        elif relationship.back_populates:
            setattr(related, relationship.back_populates, instance)
        elif relationship.uselist:
            getattr(instance, relationship.key).append(related)
        else:
            setattr(instance, relationship.key, related)
        session.add(related)

    async def _write_relation(
        self, session: AsyncSession, instance, relationship, value: Any
    ) -> None:
        target = relationship.mapper.class_
        if not isinstance(value, dict) or not set(value) <= {"create", "connect"}:
            raise QueryValidationError(
                f"Nested write on '{relationship.key}' supports only create and connect"
            )

        for data in _as_list(value.get("create", [])):
            child = await self._build(session, target, data)
            await self._link(session, instance, relationship, child)

        for where in _as_list(value.get("connect", [])):
            related = await self._first(session, target, {"where": where})
            if related is None:
                raise RecordNotFoundError(target.__name__, "connect")
            await self._link(session, instance, relationship, related)

    def _scalar_value(self, model, instance, key: str, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        if set(value) == {"set"}:
            return value["set"]
        if set(value) == {"increment"}:
            return (getattr(instance, key) or 0) + value["increment"]
        if set(value) == {"decrement"}:
            return (getattr(instance, key) or 0) - value["decrement"]
        raise QueryValidationError(
            f"Invalid update operation {sorted(value)} for '{model.__name__}.{key}'"
        )

    async def _apply_data(self, session: AsyncSession, model, instance, data: Any) -> None:
        if not isinstance(data, dict):
            raise QueryValidationError(f"data for '{model.__name__}' must be a mapping")
        mapper = inspect(model)
        for key, value in data.items():
            if key in mapper.column_attrs:
                setattr(instance, key, self._scalar_value(model, instance, key, value))
            elif key in mapper.relationships:
                await self._write_relation(session, instance, mapper.relationships[key], value)
            else:
                raise QueryValidationError(f"Unknown field '{key}' on model '{model.__name__}'")

    async def _build(self, session: AsyncSession, model, data: Any):
        instance = model()
        await self._apply_data(session, model, instance, data)
        session.add(instance)
        return instance

    def _bulk_values(self, model, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise QueryValidationError(f"data for '{model.__name__}' must be a mapping")
        values = {}
        for key, value in data.items():
            column = self._column(model, None, key)
            if not isinstance(value, dict):
                values[key] = value
            elif set(value) == {"set"}:
                values[key] = value["set"]
            elif set(value) == {"increment"}:
                values[key] = column + value["increment"]
            elif set(value) == {"decrement"}:
                values[key] = column - value["decrement"]
            else:
                raise QueryValidationError(
                    f"Invalid update operation {sorted(value)} for '{model.__name__}.{key}'"
                )
        return values

    # ========================================================================
    # Reads
    # ========================================================================

    async def _op_find_many(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        rows = (await session.scalars(self._rows_statement(model, args))).all()
        return [await shape_row(session, row, args) for row in rows]

    async def _op_find_first(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        row = await self._first(session, model, args)
        return None if row is None else await shape_row(session, row, args)

    async def _op_find_first_or_throw(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        row = await self._op_find_first(session, model, args)
        if row is None:
            raise RecordNotFoundError(model.__name__, "find_first_or_throw")
        return row

    async def _op_find_unique(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        self._require_unique(model, args.get("where"), "find_unique")
        return await self._op_find_first(session, model, args)

    async def _op_find_unique_or_throw(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        row = await self._op_find_unique(session, model, args)
        if row is None:
            raise RecordNotFoundError(model.__name__, "find_unique_or_throw")
        return row

    async def _op_count(self, session: AsyncSession, model, args: Dict[str, Any]) -> Any:
        source = self._filtered_subquery(model, args)
        selection = args.get("select")
        if not isinstance(selection, dict):
            return await session.scalar(select(func.count()).select_from(source))

        columns = self._aggregate_columns(model, source, {"_count": selection})
        statement = select(*[expression for _, _, expression in columns]).select_from(source)
        row = (await session.execute(statement)).one()
        return self._aggregate_result(columns, row).get("_count", {})

    async def _op_aggregate(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        source = self._filtered_subquery(model, args)
        columns = self._aggregate_columns(model, source, args)
        if not columns:
            return {}
        statement = select(*[expression for _, _, expression in columns]).select_from(source)
        row = (await session.execute(statement)).one()
        return self._aggregate_result(columns, row)

    async def _op_group_by(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        by = _as_list(args.get("by") or [])
        if not by:
            raise QueryValidationError(f"{model.__name__}.group_by needs at least one 'by' field")

        group_columns = [self._column(model, None, key).label(key) for key in by]
        aggregates = self._aggregate_columns(model, None, args)
        stmt = (
            select(*group_columns, *[expression for _, _, expression in aggregates])
            .where(compile_where(model, args.get("where")))
            .group_by(*group_columns)
            .order_by(*compile_order_by(model, args.get("order_by")))
        )
        if args.get("skip"):
            stmt = stmt.offset(args["skip"])
        if args.get("take") is not None:
            stmt = stmt.limit(args["take"])

        results = []
        for row in (await session.execute(stmt)).all():
            grouped = {key: row._mapping[key] for key in by}
            grouped.update(self._aggregate_result(aggregates, row))
            results.append(grouped)
        return results

    # ========================================================================
    # Writes
    # ========================================================================

    async def _op_create(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        instance = await self._build(session, model, args.get("data"))
        await session.flush()
        await session.refresh(instance)
        return await shape_row(session, instance, args)

    async def _op_create_many(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, int]:
        records = _as_list(args.get("data") or [])
        session.add_all([model(**self._bulk_values(model, data)) for data in records])
        await session.flush()
        return {"count": len(records)}

    async def _op_update(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._require_unique(model, args.get("where"), "update")
        instance = await self._first(session, model, args)
        if instance is None:
            raise RecordNotFoundError(model.__name__, "update")
        await self._apply_data(session, model, instance, args.get("data"))
        await session.flush()
        await session.refresh(instance)
        return await shape_row(session, instance, args)

    async def _op_update_many(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, int]:
        stmt = (
            sa_update(model)
            .where(compile_where(model, args.get("where")))
            .values(**self._bulk_values(model, args.get("data")))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return {"count": result.rowcount}

    async def _op_upsert(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._require_unique(model, args.get("where"), "upsert")
        instance = await self._first(session, model, args)
        if instance is None:
            instance = await self._build(session, model, args.get("create"))
        else:
            await self._apply_data(session, model, instance, args.get("update"))
        await session.flush()
        await session.refresh(instance)
        return await shape_row(session, instance, args)

    async def _op_delete(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._require_unique(model, args.get("where"), "delete")
        instance = await self._first(session, model, args)
        if instance is None:
            raise RecordNotFoundError(model.__name__, "delete")

        row = await shape_row(session, instance, args)
        identity = inspect(instance).identity
        pk_columns = inspect(model).primary_key
        await session.execute(
            sa_delete(model)
            .where(*[column == value for column, value in zip(pk_columns, identity)])
            .execution_options(synchronize_session=False)
        )
        session.expunge(instance)
        return row

    async def _op_delete_many(
        self, session: AsyncSession, model, args: Dict[str, Any]
    ) -> Dict[str, int]:
        stmt = (
            sa_delete(model)
            .where(compile_where(model, args.get("where")))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return {"count": result.rowcount}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
