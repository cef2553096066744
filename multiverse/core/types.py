"""Core enums shared across Multiverse.

- EffectOperation: the three declarative world mutations
- InvariantCondition: comparison conditions for invariants
- RunStatus: lifecycle of a single simulation run
- StepType: discriminator for run trace steps
"""

from enum import Enum


class EffectOperation(str, Enum):
    """Operation requested by an effect."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class InvariantCondition(str, Enum):
    """Comparison applied between an entity field and an invariant threshold."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class RunStatus(str, Enum):
    """State of a single (scenario, trial) run.

    pending -> running -> succeeded | failed | errored

    FAILED means the success predicate returned False on an otherwise clean
    run. ERRORED means the run hit an unrecoverable failure (invariant
    violation, timeout, agent exception, cancellation).
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ERRORED)


class StepType(str, Enum):
    """Discriminator for run trace step types."""

    USER_MESSAGE = "user_message"
    TOOL_CALL = "tool_call"
    AGENT_RESPONSE = "agent_response"
