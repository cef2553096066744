"""In-memory world state for one simulation run.

The world is a set of named collections of entities. It changes only
through effects applied by the EffectApplier; tools, derivation functions
and success predicates see it through the read-only WorldView.

Usage:
    store = WorldStore()
    store.create_entity("flights", "F1", {"seatsAvailable": 1})

    view = store.view()
    flights = view.get_collection("flights")
    assert flights.size == 1
"""

import asyncio
import copy
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from multiverse.exceptions import (
    DuplicateEntityError,
    EntityNotFoundError,
    EntitySchemaError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into 'path: message' strings."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        messages.append(f"{location}: {item.get('msg', 'invalid value')}")
    return messages


class Entity(BaseModel):
    """A single entity owned by a world store.

    Attributes:
        collection: Name of the collection holding the entity
        id: Identifier, unique within its collection
        data: Structured payload (field name -> value)
        version: 1 on create, incremented on every update
        created_at: When the entity was created
        updated_at: When the entity was last updated
    """

    model_config = ConfigDict(extra="ignore")

    collection: str
    id: str
    data: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def get(self, field: str, default: Any = None) -> Any:
        """Get a payload field by name."""
        return self.data.get(field, default)


class CollectionView:
    """Immutable snapshot of one collection at the time it was taken.

    Supports len(), iteration over entities, membership tests by id and
    equality with another view.
    """

    def __init__(self, name: str, entities: Mapping[str, Entity]):
        self._name = name
        self._entities = {
            entity_id: entity.model_copy(deep=True)
            for entity_id, entity in entities.items()
        }

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        """Number of entities in the collection."""
        return len(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities.values())

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CollectionView):
            return NotImplemented
        return self._name == other._name and self._entities == other._entities

    def __repr__(self) -> str:
        return f"CollectionView(name={self._name!r}, size={self.size})"

    def get(self, entity_id: str) -> Optional[Entity]:
        """Get an entity by id, or None."""
        entity = self._entities.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    def ids(self) -> list[str]:
        """Ids of all entities in the collection."""
        return list(self._entities)


class WorldSnapshot(BaseModel):
    """Deep, serializable copy of a world store."""

    version: int = 0
    collections: dict[str, dict[str, Entity]] = Field(default_factory=dict)

    def get_entity(self, collection: str, entity_id: str) -> Optional[Entity]:
        entity = self.collections.get(collection, {}).get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    def get_collection(self, collection: str) -> CollectionView:
        return CollectionView(collection, self.collections.get(collection, {}))

    def collection_names(self) -> list[str]:
        return sorted(self.collections)


class WorldStore:
    """Versioned, in-memory collection of entities for one run.

    Each run owns an exclusive store, so no locking is needed across runs.
    ``lock`` serializes effect batches of the same run when an agent issues
    concurrent tool calls.

    Attributes:
        version: Incremented once per applied create/update/delete
        lock: asyncio lock held by the tool wrapper around each batch
    """

    def __init__(self, schemas: Optional[Mapping[str, type[BaseModel]]] = None):
        """Initialize an empty store.

        Args:
            schemas: Optional pydantic models keyed by collection name; entity
                payloads in those collections are validated after every
                create and update
        """
        self._collections: dict[str, dict[str, Entity]] = {}
        self._schemas = dict(schemas or {})
        self.version = 0
        self.lock = asyncio.Lock()

    # Reads

    def get_entity(self, collection: str, entity_id: str) -> Optional[Entity]:
        """Return a copy of the current entity, or None if absent."""
        entity = self._collections.get(collection, {}).get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    def get_collection(self, collection: str) -> CollectionView:
        """Return a read-only view of every entity in a collection."""
        return CollectionView(collection, self._collections.get(collection, {}))

    def collection_names(self) -> list[str]:
        return sorted(self._collections)

    def view(self) -> "WorldView":
        """Return a read-only accessor bound to this store."""
        return WorldView(self)

    def snapshot(self) -> WorldSnapshot:
        """Return a deep copy of the current state."""
        return WorldSnapshot(
            version=self.version,
            collections=copy.deepcopy(self._collections),
        )

    # Mutations (called by the EffectApplier only)

    def create_entity(
        self,
        collection: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Entity:
        """Insert a new entity.

        Raises:
            DuplicateEntityError: If the id already exists in the collection
            EntitySchemaError: If the payload fails the collection schema
        """
        if entity_id in self._collections.get(collection, {}):
            raise DuplicateEntityError(collection, entity_id)

        payload = copy.deepcopy(dict(data))
        self._validate(collection, entity_id, payload)

        entity = Entity(collection=collection, id=entity_id, data=payload)
        self._collections.setdefault(collection, {})[entity_id] = entity
        self.version += 1
        return entity.model_copy(deep=True)

    def update_entity(
        self,
        collection: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Entity:
        """Merge fields into an existing entity and bump its version.

        Raises:
            EntityNotFoundError: If the entity does not exist
            EntitySchemaError: If the merged payload fails the collection schema
        """
        entity = self._collections.get(collection, {}).get(entity_id)
        if entity is None:
            raise EntityNotFoundError(collection, entity_id)

        merged = {**entity.data, **copy.deepcopy(dict(data))}
        self._validate(collection, entity_id, merged)

        entity.data = merged
        entity.version += 1
        entity.updated_at = _utcnow()
        self.version += 1
        return entity.model_copy(deep=True)

    def delete_entity(self, collection: str, entity_id: str) -> Entity:
        """Remove an entity.

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        entities = self._collections.get(collection, {})
        if entity_id not in entities:
            raise EntityNotFoundError(collection, entity_id)
        entity = entities.pop(entity_id)
        self.version += 1
        return entity

    @contextmanager
    def transaction(self) -> Iterator["WorldStore"]:
        """Restore the pre-block state if the block raises."""
        saved = self.snapshot()
        try:
            yield self
        except BaseException:
            self.restore(saved)
            raise

    def restore(self, snapshot: WorldSnapshot) -> None:
        """Replace the current state with a snapshot."""
        self._collections = copy.deepcopy(snapshot.collections)
        self.version = snapshot.version

    def _validate(self, collection: str, entity_id: str, data: dict[str, Any]) -> None:
        schema = self._schemas.get(collection)
        if schema is None:
            return
        try:
            schema.model_validate(data)
        except ValidationError as e:
            raise EntitySchemaError(collection, entity_id, format_validation_errors(e)) from e

    def __repr__(self) -> str:
        sizes = {name: len(entities) for name, entities in self._collections.items()}
        return f"WorldStore(version={self.version}, collections={sizes})"


class WorldView:
    """Read-only accessor over a live world store.

    Handed to effect-derivation functions and success predicates. Exposes
    no mutation methods, and every entity it returns is a copy.
    """

    def __init__(self, store: WorldStore):
        self._store = store

    @property
    def version(self) -> int:
        return self._store.version

    def get_entity(self, collection: str, entity_id: str) -> Optional[Entity]:
        return self._store.get_entity(collection, entity_id)

    def get_collection(self, collection: str) -> CollectionView:
        return self._store.get_collection(collection)

    def collection_names(self) -> list[str]:
        return self._store.collection_names()

    def snapshot(self) -> WorldSnapshot:
        return self._store.snapshot()

    def __repr__(self) -> str:
        return f"WorldView({self._store!r})"
