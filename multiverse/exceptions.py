"""Custom exceptions for Multiverse.

Errors raised inside a single run (contract violations, invariant
violations, timeouts) are caught at the run boundary and recorded on the
run result. Errors raised by the scheduler itself propagate to the caller.
"""

from typing import Any, Optional


class MultiverseError(Exception):
    """Base exception for all Multiverse errors."""

    def to_dict(self) -> dict[str, Any]:
        """Structured diagnostic data recorded on run results."""
        return {"message": str(self)}


class ConfigurationError(MultiverseError):
    """Raised when a test definition or configuration is unusable."""

    pass


# World state


class WorldStateError(MultiverseError):
    """Base for errors raised by the world store."""

    def __init__(self, message: str, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "collection": self.collection,
            "entity_id": self.entity_id,
        }


class DuplicateEntityError(WorldStateError):
    """Raised when creating an entity whose id already exists."""

    def __init__(self, collection: str, entity_id: str):
        super().__init__(
            f"Entity '{entity_id}' already exists in collection '{collection}'",
            collection,
            entity_id,
        )


class EntityNotFoundError(WorldStateError):
    """Raised when updating or deleting an entity that does not exist."""

    def __init__(self, collection: str, entity_id: str):
        super().__init__(
            f"Entity '{entity_id}' not found in collection '{collection}'",
            collection,
            entity_id,
        )


class EntitySchemaError(WorldStateError):
    """Raised when an entity payload does not match its collection schema."""

    def __init__(self, collection: str, entity_id: str, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Entity '{entity_id}' in collection '{collection}' does not match "
            f"schema: {'; '.join(errors)}",
            collection,
            entity_id,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


# Effects


class EffectApplicationError(MultiverseError):
    """Raised when an effect batch is rejected and rolled back."""

    def __init__(
        self,
        message: str,
        effect_index: int,
        effect: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ):
        self.effect_index = effect_index
        self.effect = effect
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        effect = self.effect
        if hasattr(effect, "model_dump"):
            effect = effect.model_dump(mode="json")
        return {
            "message": str(self),
            "effect_index": self.effect_index,
            "effect": effect,
            "cause": type(self.cause).__name__ if self.cause else None,
        }


class EffectDerivationError(MultiverseError):
    """Raised when a tool's effect-derivation function itself fails."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Effect derivation for tool '{tool_name}' failed: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"message": str(self), "tool_name": self.tool_name}


# Invariants


class InvariantViolationError(MultiverseError):
    """Raised when an entity violates a declared invariant.

    Aborts the run that triggered it.
    """

    def __init__(
        self,
        collection: str,
        entity_id: str,
        field: str,
        observed: Any,
        condition: str,
        expected: Any,
        description: Optional[str] = None,
    ):
        self.collection = collection
        self.entity_id = entity_id
        self.field = field
        self.observed = observed
        self.condition = condition
        self.expected = expected
        self.description = description
        message = (
            f"Invariant violated on {collection}/{entity_id}: "
            f"{field}={observed!r} does not satisfy {condition} {expected!r}"
        )
        if description:
            message = f"{message} ({description})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "collection": self.collection,
            "entity_id": self.entity_id,
            "field": self.field,
            "observed": self.observed,
            "condition": self.condition,
            "expected": self.expected,
        }


# Tools


class ToolExecutionError(MultiverseError):
    """Raised to the agent when a wrapped tool call fails."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"message": str(self), "tool_name": self.tool_name}


class OutputContractViolationError(ToolExecutionError):
    """Raised when a tool's return value does not match its output contract."""

    def __init__(self, tool_name: str, errors: list[str]):
        self.errors = errors
        super().__init__(
            tool_name,
            f"Tool '{tool_name}' returned output violating its contract: "
            f"{'; '.join(errors)}",
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NoActiveRunError(MultiverseError):
    """Raised when a wrapped tool is called outside of a simulation run."""

    pass


# Runs and scheduling


class RunTimeoutError(MultiverseError):
    """Raised when a run exceeds its configured timeout."""

    def __init__(self, run_id: str, timeout: float):
        self.run_id = run_id
        self.timeout = timeout
        super().__init__(f"Run {run_id} exceeded timeout of {timeout}s")

    def to_dict(self) -> dict[str, Any]:
        return {"message": str(self), "run_id": self.run_id, "timeout": self.timeout}


class AgentExecutionError(MultiverseError):
    """Raised when the agent entrypoint fails with an uncaught exception."""

    def __init__(self, run_id: str, cause: BaseException):
        self.run_id = run_id
        self.cause = cause
        super().__init__(
            f"Agent failed in run {run_id}: {type(cause).__name__}: {cause}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "run_id": self.run_id,
            "cause": type(self.cause).__name__,
        }


class SchedulerAbortedError(MultiverseError):
    """Raised when a test is cancelled before all runs completed.

    Attributes:
        results: Run results that reached a terminal state before the abort
        report: Report over ``results``, attached by the client when any
            run finished
    """

    def __init__(self, message: str = "Scheduler aborted", results: Optional[list] = None):
        self.results = results or []
        self.report = None
        super().__init__(message)


class ScenarioGenerationError(MultiverseError):
    """Raised when the requested number of distinct scenarios cannot be produced."""

    pass


class QualityThresholdError(MultiverseError):
    """Raised when a test's pass rate is below its quality threshold."""

    def __init__(self, report: Any):
        self.report = report
        super().__init__(
            f"Pass rate {report.pass_rate}% is below threshold "
            f"({report.quality_threshold}%)"
        )
