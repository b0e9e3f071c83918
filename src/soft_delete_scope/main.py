"""
Soft Delete Scope API

HTTP surface over the example schema. Reads hide soft-deleted rows unless
``with_deleted=true`` is passed; deletes are soft unless ``hard=true``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from soft_delete_scope import config
from soft_delete_scope.client import SoftDeleteClient, create_client
from soft_delete_scope.errors import QueryValidationError, RecordNotFoundError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ============================================================================
# Setup
# ============================================================================

client = create_client(config.DATABASE_URL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await client.create_all()
    except Exception as e:
        logger.error("Failed to create database tables: %s", e)
        raise
    yield
    await client.dispose()


app = FastAPI(
    title="Soft Delete Scope API",
    description="Soft-delete aware access to users and posts",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================================
# Dependency Injection
# ============================================================================


def get_client() -> SoftDeleteClient:
    """Get the shared soft-delete client"""
    return client


def _scoped(soft_client: SoftDeleteClient, with_deleted: bool):
    return soft_client.with_deleted() if with_deleted else soft_client


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "soft-delete-scope"}


# ============================================================================
# User Endpoints
# ============================================================================


@app.get("/users", tags=["Users"])
async def list_users(
    with_deleted: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    soft_client: SoftDeleteClient = Depends(get_client),
):
    """
    List users ordered by id, each with their posts

    - **with_deleted**: include soft-deleted users and posts
    """
    scoped = _scoped(soft_client, with_deleted)
    users = await scoped.user.find_many(
        order_by={"id": "asc"},
        include={"posts": {"order_by": {"id": "asc"}}},
        take=limit,
        skip=offset,
    )
    total = await scoped.user.count()
    return {"users": users, "total": total, "limit": limit, "offset": offset}


@app.get("/users/{email}", tags=["Users"])
async def get_user(
    email: str,
    with_deleted: bool = False,
    soft_client: SoftDeleteClient = Depends(get_client),
):
    """Get a user by email"""
    user = await _scoped(soft_client, with_deleted).user.find_unique(where={"email": email})
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.get("/users/{email}/posts/count", tags=["Users"])
async def count_user_posts(
    email: str,
    with_deleted: bool = False,
    soft_client: SoftDeleteClient = Depends(get_client),
):
    """Count a user's posts"""
    user = await _scoped(soft_client, with_deleted).user.find_unique(
        where={"email": email},
        include={"_count": {"select": {"posts": True}}},
    )
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"email": email, "posts": user["_count"]["posts"]}


@app.delete("/users/{email}", tags=["Users"])
async def delete_user(
    email: str,
    hard: bool = False,
    soft_client: SoftDeleteClient = Depends(get_client),
) -> Dict[str, Any]:
    """
    Delete a user

    - **hard**: remove the row physically instead of setting ``deleted_at``
    """
    scoped = soft_client.hard_delete() if hard else soft_client
    deleted = await scoped.user.delete(where={"email": email})
    logger.info("Deleted user %s (hard=%s)", email, hard)
    return {"user": deleted, "hard": hard}


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request, exc):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(QueryValidationError)
async def query_validation_handler(request, exc):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
