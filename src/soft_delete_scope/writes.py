"""
Soft Delete Write Transformer

Wraps one engine delegate so that ``delete``/``delete_many`` set the
soft-delete timestamp through ``update``/``update_many`` instead of removing
rows, unless hard-delete mode is active or the entity is not soft-deletable.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from soft_delete_scope.context import get_scope_context
from soft_delete_scope.errors import SoftDeleteConfigurationError
from soft_delete_scope.filters import clone_tree, is_plain_dict
from soft_delete_scope.metadata import MetadataRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SOFT_DELETE_UPDATES = {"delete": "update", "delete_many": "update_many"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_soft_delete_data(existing_data: Any, field: str, now: datetime) -> Dict[str, Any]:
    data = clone_tree(existing_data) if is_plain_dict(existing_data) else {}
    data[field] = now
    return data


class SoftDeleteModelDelegate:
    """Delegate wrapper turning deletes into timestamp updates"""

    def __init__(self, delegate, entity: str, registry: MetadataRegistry, clock: Clock = utcnow):
        self._delegate = delegate
        self._entity = entity
        self._registry = registry
        self._clock = clock

    @property
    def name(self) -> str:
        return self._entity

    async def delete(self, **args: Any) -> Any:
        return await self._handle_delete("delete", args)

    async def delete_many(self, **args: Any) -> Any:
        return await self._handle_delete("delete_many", args)

    async def _handle_delete(self, operation: str, args: Dict[str, Any]) -> Any:
        normalized_args = clone_tree(args)

        if get_scope_context().hard_delete or not self._registry.is_soft_deletable(self._entity):
            physical_delete = getattr(self._delegate, operation, None)
            if not callable(physical_delete):
                raise SoftDeleteConfigurationError(
                    f"Model '{self._entity}' does not support {operation}."
                )
            logger.info("Physically deleting %s via %s", self._entity, operation)
            return await physical_delete(**normalized_args)

        update_operation = getattr(self._delegate, SOFT_DELETE_UPDATES[operation])
        normalized_args["data"] = build_soft_delete_data(
            normalized_args.get("data"), self._registry.soft_delete_field, self._clock()
        )
        logger.debug("Soft deleting %s via %s", self._entity, SOFT_DELETE_UPDATES[operation])
        return await update_operation(**normalized_args)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.__dict__["_delegate"], name)

    def __repr__(self) -> str:
        return f"<SoftDeleteModelDelegate {self._entity}>"
