"""
Soft Delete Scope Test Configuration

Provides fixtures for a fresh SQLite database per test, the raw host engine,
the soft-delete client and the seeded scenario.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from soft_delete_scope import create_client
from soft_delete_scope.engine import QueryEngine
from soft_delete_scope.metadata import MetadataRegistry
from soft_delete_scope.models import Base

from scenario import seed_scenario


@pytest.fixture(scope="session")
def registry():
    """Metadata registry for the example schema"""
    return MetadataRegistry.from_declarative_base(Base)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'soft_delete_scope.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    """Host query engine without soft-delete scoping"""
    db_engine = create_async_engine(database_url)
    query_engine = QueryEngine(db_engine, Base)
    await query_engine.create_all()
    yield query_engine
    await db_engine.dispose()


@pytest_asyncio.fixture
async def client(database_url):
    """
    Soft-delete client over an empty database.
    Disposes the connection pool after the test completes.
    """
    soft_client = create_client(database_url)
    await soft_client.create_all()
    yield soft_client
    await soft_client.dispose()


@pytest_asyncio.fixture
async def seeded_client(client):
    """Soft-delete client over the seeded scenario"""
    await seed_scenario(client)
    return client
