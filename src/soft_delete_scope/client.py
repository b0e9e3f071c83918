"""
Soft Delete Client

Assembles the metadata registry, the read-scope middleware, the write
transformer and the override facade around a host query engine.

Usage:
    from soft_delete_scope import create_client

    client = create_client("sqlite+aiosqlite:///./app.db")
    users = await client.user.find_many(include={"posts": True})
    everyone = await client.with_deleted().user.find_many()
    await client.hard_delete().user.delete(where={"email": "gone@example.com"})
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from soft_delete_scope import config
from soft_delete_scope.engine import QueryEngine
from soft_delete_scope.facade import ScopedView, ViewCache
from soft_delete_scope.metadata import MetadataRegistry
from soft_delete_scope.scoping import ReadScopeMiddleware
from soft_delete_scope.writes import Clock, SoftDeleteModelDelegate, utcnow

logger = logging.getLogger(__name__)


class SoftDeleteClient:
    """
    Soft-delete-aware client over a ``QueryEngine``

    Entity delegates are exposed as snake_case attributes (``client.user``).
    ``with_deleted()`` and ``hard_delete()`` return views under which reads
    see deleted rows, and deletes additionally become physical.
    """

    def __init__(self, engine: QueryEngine, registry: MetadataRegistry, clock: Clock = utcnow):
        self._engine = engine
        self._registry = registry
        self._clock = clock
        self._delegates: Dict[str, SoftDeleteModelDelegate] = {}
        self._views = ViewCache()

    @property
    def engine(self) -> QueryEngine:
        return self._engine

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    def with_deleted(self) -> ScopedView:
        return self._views.view(self, "with_deleted")

    def hard_delete(self) -> ScopedView:
        return self._views.view(self, "hard_delete")

    def delegate(self, entity: str) -> SoftDeleteModelDelegate:
        if entity not in self._delegates:
            self._delegates[entity] = SoftDeleteModelDelegate(
                self._engine.delegate(entity), entity, self._registry, self._clock
            )
        return self._delegates[entity]

    async def transaction(self, operations: Any) -> Any:
        """
        Run an interactive callback or a batch of requests in one transaction

        The callback receives a soft-delete client bound to the transaction
        and runs in the caller's scope context.
        """
        if not callable(operations):
            return await self._engine.transaction(operations)

        async def run(bound_engine: QueryEngine) -> Any:
            return await operations(SoftDeleteClient(bound_engine, self._registry, self._clock))

        return await self._engine.transaction(run)

    def __getattr__(self, name: str) -> Any:
        registry = self.__dict__.get("_registry")
        entity = registry.entity_for_delegate(name) if registry is not None else None
        if entity is not None:
            return self.delegate(entity)
        return getattr(self.__dict__["_engine"], name)

    def __repr__(self) -> str:
        return f"<SoftDeleteClient entities={sorted(self._registry.entities)}>"


def extend_with_soft_delete(
    engine: QueryEngine,
    registry: Optional[MetadataRegistry] = None,
    clock: Clock = utcnow,
) -> SoftDeleteClient:
    """Install read scoping on ``engine`` and wrap it in a ``SoftDeleteClient``"""
    registry = registry or MetadataRegistry.from_declarative_base(engine.base)
    return SoftDeleteClient(engine.extend(ReadScopeMiddleware(registry)), registry, clock)


def create_client(
    database_url: Optional[str] = None,
    base=None,
    soft_delete_field: Optional[str] = None,
    clock: Optional[Clock] = None,
    echo: Optional[bool] = None,
) -> SoftDeleteClient:
    """
    Build a soft-delete client for a database

    Args:
        database_url: SQLAlchemy async URL, defaults to ``DATABASE_URL``
        base: Declarative base holding the schema, defaults to the example models
        soft_delete_field: Timestamp column name, defaults to ``SOFT_DELETE_FIELD``
        clock: Source of deletion timestamps
        echo: Log emitted SQL, defaults to ``SQL_ECHO``

    Returns:
        SoftDeleteClient ready for use; call ``create_all()`` for a fresh database
    """
    if base is None:
        from soft_delete_scope.models import Base

        base = Base

    url = database_url or config.DATABASE_URL
    db_engine = create_async_engine(url, echo=config.SQL_ECHO if echo is None else echo)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)

    field = soft_delete_field or config.SOFT_DELETE_FIELD
    registry = MetadataRegistry.from_declarative_base(base, field)
    logger.info(
        "Soft delete client created for %s (soft-deletable: %s)",
        db_engine.url,
        sorted(registry.soft_deletable),
    )
    engine = QueryEngine(db_engine, base, session_factory)
    return extend_with_soft_delete(engine, registry, clock or utcnow)
