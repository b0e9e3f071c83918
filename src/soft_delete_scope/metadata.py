"""
Soft Delete Metadata Registry

Static description of every mapped entity: its relation fields (cardinality and
target entity) and whether it carries the soft-delete timestamp column.
Built once from SQLAlchemy mapper metadata and read-only afterwards.
"""

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from soft_delete_scope.config import SOFT_DELETE_FIELD

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@dataclass(frozen=True)
class RelationMeta:
    is_list: bool
    target_entity: str


@dataclass(frozen=True)
class EntityDescriptor:
    name: str
    relations: Mapping[str, RelationMeta]
    soft_deletable: bool


def to_delegate_name(entity: str) -> str:
    """``User`` -> ``user``, ``BlogPost`` -> ``blog_post``"""
    return _CAMEL_BOUNDARY.sub("_", entity).lower()


class MetadataRegistry:
    """Relation and soft-delete metadata for every entity of one schema"""

    def __init__(
        self, entities: Iterable[EntityDescriptor], soft_delete_field: str = SOFT_DELETE_FIELD
    ):
        by_name = {entity.name: entity for entity in entities}
        self.soft_delete_field = soft_delete_field
        self.entities: Mapping[str, EntityDescriptor] = MappingProxyType(by_name)
        self.soft_deletable: FrozenSet[str] = frozenset(
            name for name, entity in by_name.items() if entity.soft_deletable
        )
        self._by_delegate = MappingProxyType({to_delegate_name(name): name for name in by_name})

    @classmethod
    def from_declarative_base(
        cls, base, soft_delete_field: str = SOFT_DELETE_FIELD
    ) -> "MetadataRegistry":
        """
        Derive the registry from every mapper registered on a declarative base

        An entity is soft-deletable when it maps a nullable column attribute
        named ``soft_delete_field``. Every ``relationship()`` is recorded with
        its cardinality (``uselist``) and target entity.
        """
        entities = []
        for mapper in sorted(base.registry.mappers, key=lambda m: m.class_.__name__):
            relations: Dict[str, RelationMeta] = {
                rel.key: RelationMeta(
                    is_list=bool(rel.uselist), target_entity=rel.mapper.class_.__name__
                )
                for rel in mapper.relationships
            }
            column_attr = mapper.column_attrs.get(soft_delete_field)
            soft_deletable = column_attr is not None and all(
                column.nullable for column in column_attr.columns
            )
            entities.append(
                EntityDescriptor(
                    name=mapper.class_.__name__,
                    relations=MappingProxyType(relations),
                    soft_deletable=soft_deletable,
                )
            )

        registry = cls(entities, soft_delete_field=soft_delete_field)
        logger.debug(
            "Built metadata registry: %d entities, soft-deletable=%s",
            len(registry.entities),
            sorted(registry.soft_deletable),
        )
        return registry

    def is_soft_deletable(self, entity: str) -> bool:
        return entity in self.soft_deletable

    def relations(self, entity: str) -> Mapping[str, RelationMeta]:
        descriptor = self.entities.get(entity)
        return descriptor.relations if descriptor is not None else MappingProxyType({})

    def relation(self, entity: str, field: str) -> Optional[RelationMeta]:
        return self.relations(entity).get(field)

    def delegate_name(self, entity: str) -> str:
        return to_delegate_name(entity)

    def entity_for_delegate(self, delegate_name: str) -> Optional[str]:
        return self._by_delegate.get(delegate_name)

    def __contains__(self, entity: str) -> bool:
        return entity in self.entities
