"""
Soft Delete Scope

Transparent soft-delete semantics for a structured query layer: reads hide
rows whose ``deleted_at`` is set, deletes become timestamp updates, and
``with_deleted()`` / ``hard_delete()`` override both for one call chain.
"""

from soft_delete_scope.client import SoftDeleteClient, create_client, extend_with_soft_delete
from soft_delete_scope.context import ScopeContext, get_scope_context, scope_context
from soft_delete_scope.errors import (
    QueryEngineError,
    QueryValidationError,
    RecordNotFoundError,
    SoftDeleteConfigurationError,
    SoftDeleteError,
    TransactionBatchError,
)
from soft_delete_scope.metadata import EntityDescriptor, MetadataRegistry, RelationMeta

__version__ = "1.0.0"

__all__ = [
    "EntityDescriptor",
    "MetadataRegistry",
    "QueryEngineError",
    "QueryValidationError",
    "RecordNotFoundError",
    "RelationMeta",
    "ScopeContext",
    "SoftDeleteClient",
    "SoftDeleteConfigurationError",
    "SoftDeleteError",
    "TransactionBatchError",
    "create_client",
    "extend_with_soft_delete",
    "get_scope_context",
    "scope_context",
]
