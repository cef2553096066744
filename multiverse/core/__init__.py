"""Core world-state engine for Multiverse.

- WorldStore, WorldView, Entity, CollectionView, WorldSnapshot
- Effect and EffectApplier
- Invariant and InvariantChecker
- RunTrace and its step models
"""

from multiverse.core.effects import Effect, EffectApplier
from multiverse.core.invariants import Invariant, InvariantChecker, Violation
from multiverse.core.trace import (
    AgentResponseStep,
    BaseStep,
    RunTrace,
    ToolCallStep,
    TraceStep,
    UserMessageStep,
)
from multiverse.core.types import (
    EffectOperation,
    InvariantCondition,
    RunStatus,
    StepType,
)
from multiverse.core.world import (
    CollectionView,
    Entity,
    WorldSnapshot,
    WorldStore,
    WorldView,
)

__all__ = [
    # Enums
    "EffectOperation",
    "InvariantCondition",
    "RunStatus",
    "StepType",
    # World
    "Entity",
    "CollectionView",
    "WorldSnapshot",
    "WorldStore",
    "WorldView",
    # Effects
    "Effect",
    "EffectApplier",
    # Invariants
    "Invariant",
    "InvariantChecker",
    "Violation",
    # Trace
    "BaseStep",
    "UserMessageStep",
    "ToolCallStep",
    "AgentResponseStep",
    "TraceStep",
    "RunTrace",
]
