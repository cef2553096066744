"""Declarative invariants over world state.

Invariants are checked after every applied effect batch. Any violating
entity aborts the run that produced it.

Usage:
    seats_non_negative = Invariant(
        collection="flights",
        field="seatsAvailable",
        condition="gte",
        value=0,
    )
    InvariantChecker().check([seats_non_negative], store.view())
"""

import operator
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from multiverse.core.types import InvariantCondition
from multiverse.core.world import Entity, WorldSnapshot, WorldStore, WorldView
from multiverse.exceptions import InvariantViolationError

_MISSING = object()

_COMPARATORS: dict[InvariantCondition, Callable[[Any, Any], bool]] = {
    InvariantCondition.EQ: operator.eq,
    InvariantCondition.NE: operator.ne,
    InvariantCondition.GT: operator.gt,
    InvariantCondition.GTE: operator.ge,
    InvariantCondition.LT: operator.lt,
    InvariantCondition.LTE: operator.le,
}

World = Union[WorldStore, WorldView, WorldSnapshot]


class Invariant(BaseModel):
    """A predicate every entity of a collection must satisfy.

    Attributes:
        collection: Collection whose entities are checked
        field: Payload field to compare; dotted paths reach nested fields
            (e.g. "shippingAddress.zip")
        condition: Comparison between the field value and ``value``
        value: Threshold the field is compared against
        description: Optional human-readable explanation
    """

    model_config = ConfigDict(frozen=True)

    collection: str = Field(min_length=1)
    field: str = Field(min_length=1)
    condition: InvariantCondition
    value: Any
    description: Optional[str] = None

    def extract(self, entity: Entity) -> Any:
        """Return the field value from an entity, or a sentinel if absent."""
        current: Any = entity.data
        for part in self.field.split("."):
            if not isinstance(current, dict) or part not in current:
                return _MISSING
            current = current[part]
        return current

    def holds_for(self, observed: Any) -> bool:
        """Whether an observed field value satisfies this invariant.

        Missing or incomparable values never satisfy it.
        """
        if observed is _MISSING or observed is None:
            return False
        try:
            return bool(_COMPARATORS[self.condition](observed, self.value))
        except TypeError:
            return False

    def __str__(self) -> str:
        return f"{self.collection}.{self.field} {self.condition.value} {self.value!r}"


@dataclass
class Violation:
    """A single entity failing an invariant."""

    invariant: Invariant
    entity_id: str
    observed: Any

    def to_error(self) -> InvariantViolationError:
        return InvariantViolationError(
            collection=self.invariant.collection,
            entity_id=self.entity_id,
            field=self.invariant.field,
            observed=self.observed,
            condition=self.invariant.condition.value,
            expected=self.invariant.value,
            description=self.invariant.description,
        )


class InvariantChecker:
    """Evaluates invariants against a world. Read-only."""

    def check(self, invariants: Iterable[Invariant], world: World) -> None:
        """Raise on the first violating entity.

        Raises:
            InvariantViolationError: With collection, id, field, observed
                value and expected condition of the violation
        """
        for violation in self._iter_violations(invariants, world):
            raise violation.to_error()

    def violations(self, invariants: Iterable[Invariant], world: World) -> list[Violation]:
        """Return every violation without raising."""
        return list(self._iter_violations(invariants, world))

    def _iter_violations(self, invariants: Iterable[Invariant], world: World):
        for invariant in invariants:
            for entity in world.get_collection(invariant.collection):
                observed = invariant.extract(entity)
                if not invariant.holds_for(observed):
                    yield Violation(
                        invariant=invariant,
                        entity_id=entity.id,
                        observed=None if observed is _MISSING else observed,
                    )
