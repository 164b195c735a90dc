"""Entity catalog loaded from the persisted definitions file.

The definitions file is a JSON mapping with four keys::

    {
        "entities": {"user": {"entity": "User", "fields": "id name",
                              "availableInc": {"posts": {"type": "post",
                                                         "args": {"first": "Int"}}}}},
        "query": {"user": [{"id": "ID!"}, "user"]},
        "mutation": {},
        "subscription": {}
    }

Every model here is frozen: one catalog is shared read-only by all
document builds.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

OPERATION_KINDS = ("query", "mutation", "subscription")


class RelationDescriptor(BaseModel):
    """A nested relation declared on an entity."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # May name an entity missing from the catalog, which makes the relation a leaf
    target_entity: str = Field(alias="type")
    declared_arguments: dict[str, str] = Field(default_factory=dict, alias="args")


class EntityDescriptor(BaseModel):
    """Default fields and relations of one entity type."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entity_type_name: str = Field(alias="entity")
    default_fields: tuple[str, ...] = Field(default=(), alias="fields")
    available_relations: dict[str, RelationDescriptor] = Field(
        default_factory=dict, alias="availableInc"
    )

    @field_validator("default_fields", mode="before")
    @classmethod
    def _split_fields(cls, value: Any) -> Any:
        # The generator writes fields as one space-separated string
        if isinstance(value, str):
            return tuple(value.split())
        return value

    @property
    def fields_text(self) -> str:
        return " ".join(self.default_fields)


class OperationDescriptor(BaseModel):
    """Argument wire types and root entity of a query, mutation or subscription."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    argument_types: dict[str, str] = Field(default_factory=dict, alias="args")
    root_entity: str = Field(alias="type")

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, value: Any) -> Any:
        """Accept the on-disk ``[args, rootEntity]`` pair."""
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError(f"Operation must be an [args, type] pair, got {value!r}")
            return {"args": value[0], "type": value[1]}
        return value


class Catalog(BaseModel):
    """All entities and operations known to the client."""
    model_config = ConfigDict(frozen=True)

    entities: dict[str, EntityDescriptor] = Field(default_factory=dict)
    query: dict[str, OperationDescriptor] = Field(default_factory=dict)
    mutation: dict[str, OperationDescriptor] = Field(default_factory=dict)
    subscription: dict[str, OperationDescriptor] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path) -> "Catalog":
        """Load a catalog from a definitions JSON file."""
        with open(path, encoding="utf-8") as f:
            return cls.model_validate(json.load(f))

    @classmethod
    def empty(cls) -> "Catalog":
        return cls()

    def entity(self, name: str) -> EntityDescriptor | None:
        return self.entities.get(name)

    def has_entity(self, name: str) -> bool:
        return name in self.entities

    def operation(self, kind: str, name: str) -> OperationDescriptor | None:
        """Look up an operation by kind ('query', 'mutation' or 'subscription') and name."""
        if kind not in OPERATION_KINDS:
            raise ValueError(f"Unknown operation kind: {kind}")
        return getattr(self, kind).get(name)

    def to_definitions(self) -> dict[str, Any]:
        """Serialize back to the on-disk definitions shape."""
        result: dict[str, Any] = {
            "entities": {
                name: {
                    "entity": entity.entity_type_name,
                    "fields": entity.fields_text,
                    "availableInc": {
                        rel_name: {"type": rel.target_entity, "args": dict(rel.declared_arguments)}
                        for rel_name, rel in entity.available_relations.items()
                    },
                }
                for name, entity in self.entities.items()
            }
        }
        for kind in OPERATION_KINDS:
            result[kind] = {
                name: [dict(op.argument_types), op.root_entity]
                for name, op in getattr(self, kind).items()
            }
        return result
