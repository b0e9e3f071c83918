"""
Host query engine over SQLAlchemy's asyncio extension.
"""

from soft_delete_scope.engine.compiler import compile_order_by, compile_where
from soft_delete_scope.engine.core import (
    Middleware,
    ModelDelegate,
    NextCall,
    QueryEngine,
    QueryParams,
    QueryRequest,
)

__all__ = [
    "Middleware",
    "ModelDelegate",
    "NextCall",
    "QueryEngine",
    "QueryParams",
    "QueryRequest",
    "compile_order_by",
    "compile_where",
]
