"""Declarative world mutations and the applier that commits them.

An effect batch is the list of effects derived from one tool call. The
applier commits a batch all-or-nothing: if any effect fails, the store is
restored to its pre-batch state.
"""

import logging
from typing import Any, Iterable, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from multiverse.core.types import EffectOperation
from multiverse.core.world import WorldStore, format_validation_errors
from multiverse.exceptions import EffectApplicationError, WorldStateError

logger = logging.getLogger(__name__)


class Effect(BaseModel):
    """A declarative mutation request.

    Attributes:
        operation: create, update or delete
        collection: Target collection name
        id: Target entity id
        data: Payload for create (full) or update (fields to merge);
            ignored for delete
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation: EffectOperation
    collection: str = Field(min_length=1)
    id: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, collection: str, id: str, data: Mapping[str, Any]) -> "Effect":
        return cls(operation=EffectOperation.CREATE, collection=collection, id=id, data=dict(data))

    @classmethod
    def update(cls, collection: str, id: str, data: Mapping[str, Any]) -> "Effect":
        return cls(operation=EffectOperation.UPDATE, collection=collection, id=id, data=dict(data))

    @classmethod
    def delete(cls, collection: str, id: str) -> "Effect":
        return cls(operation=EffectOperation.DELETE, collection=collection, id=id)


EffectLike = Union[Effect, Mapping[str, Any]]


class EffectApplier:
    """Applies effect batches to a single world store.

    This is the only path by which a world store changes during a run.

    Usage:
        applier = EffectApplier(store)
        applier.apply([
            Effect.create("bookings", "B1", {"flightId": "F1"}),
            Effect.update("flights", "F1", {"seatsAvailable": 0}),
        ])
    """

    def __init__(self, store: WorldStore):
        self._store = store

    @property
    def store(self) -> WorldStore:
        return self._store

    def apply(self, effects: Iterable[EffectLike]) -> list[Effect]:
        """Apply a batch of effects strictly in order, atomically.

        Args:
            effects: Effects (or mappings with the same fields) in order

        Returns:
            The applied effects, as Effect models

        Raises:
            EffectApplicationError: If any effect is malformed or fails; the
                store is left exactly as it was before the batch
        """
        applied: list[Effect] = []
        with self._store.transaction():
            for index, raw in enumerate(effects):
                effect = self._coerce(index, raw)
                try:
                    self._apply_one(effect)
                except WorldStateError as e:
                    raise EffectApplicationError(
                        f"Effect #{index} ({effect.operation.value} "
                        f"{effect.collection}/{effect.id}) failed: {e}",
                        effect_index=index,
                        effect=effect,
                        cause=e,
                    ) from e
                applied.append(effect)

        logger.debug(
            f"Applied {len(applied)} effect(s), world version {self._store.version}"
        )
        return applied

    def _coerce(self, index: int, raw: EffectLike) -> Effect:
        if isinstance(raw, Effect):
            return raw
        try:
            return Effect.model_validate(raw)
        except ValidationError as e:
            raise EffectApplicationError(
                f"Effect #{index} is malformed: {'; '.join(format_validation_errors(e))}",
                effect_index=index,
                effect=raw,
                cause=e,
            ) from e

    def _apply_one(self, effect: Effect) -> None:
        if effect.operation == EffectOperation.CREATE:
            self._store.create_entity(effect.collection, effect.id, effect.data)
        elif effect.operation == EffectOperation.UPDATE:
            self._store.update_entity(effect.collection, effect.id, effect.data)
        elif effect.operation == EffectOperation.DELETE:
            self._store.delete_entity(effect.collection, effect.id)
