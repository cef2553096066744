"""Per-run context: the world, trace and invariants of one simulation run.

The active run is bound to the current asyncio task through a context
variable. Tools wrapped once at import time resolve the world store of
whichever run is calling them, so concurrent runs never share state.
"""

import asyncio
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field

from multiverse.core.effects import Effect
from multiverse.core.invariants import Invariant
from multiverse.core.trace import (
    AgentResponseStep,
    RunTrace,
    ToolCallStep,
    UserMessageStep,
)
from multiverse.core.world import WorldStore
from multiverse.exceptions import MultiverseError, NoActiveRunError

logger = logging.getLogger(__name__)

_active_run: ContextVar[Optional["RunContext"]] = ContextVar(
    "multiverse_active_run", default=None
)


class AgentContext(BaseModel):
    """What the agent entrypoint receives on every turn.

    Attributes:
        user_message: The message the agent must answer this turn
        scenario_text: The scenario's initial task text
        run_id: Identifier of the run (use it as a conversation thread id)
        scenario_id: Scenario being executed
        trial_index: Trial number within the scenario
        turn: Conversation turn, starting at 0
        conversation_history: Earlier messages of this run, oldest first
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_message: str
    scenario_text: str
    run_id: str
    scenario_id: str
    trial_index: int = 0
    turn: int = 0
    conversation_history: list[BaseMessage] = Field(default_factory=list)


class RunContext:
    """State owned by exactly one simulation run.

    Attributes:
        run_id: Unique run identifier
        world: The run's exclusive world store
        trace: The run's trace
        turn: Current conversation turn
        fatal_error: Error that aborted the run, if any
    """

    def __init__(
        self,
        run_id: str,
        scenario_id: str,
        trial_index: int = 0,
        world: Optional[WorldStore] = None,
        invariants: Optional[Iterable[Invariant]] = None,
    ):
        self.run_id = run_id
        self.scenario_id = scenario_id
        self.trial_index = trial_index
        self.world = world if world is not None else WorldStore()
        self.trace = RunTrace(
            run_id=run_id,
            scenario_id=scenario_id,
            trial_index=trial_index,
        )
        self.turn = 0
        self.fatal_error: Optional[MultiverseError] = None
        self._invariants: list[Invariant] = []
        try:
            self.loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self.loop = None
        self.register_invariants(invariants or [])

    @property
    def invariants(self) -> tuple[Invariant, ...]:
        return tuple(self._invariants)

    def register_invariants(self, invariants: Iterable[Invariant]) -> None:
        """Add invariants to be checked after every effect batch of this run."""
        for invariant in invariants:
            if invariant not in self._invariants:
                self._invariants.append(invariant)

    # Abort handling

    @property
    def aborted(self) -> bool:
        return self.fatal_error is not None

    def abort(self, error: MultiverseError) -> None:
        """Record an unrecoverable error. The first one wins."""
        if self.fatal_error is None:
            logger.info(f"Run {self.run_id} aborted: {error}")
            self.fatal_error = error

    def raise_if_aborted(self) -> None:
        if self.fatal_error is not None:
            raise self.fatal_error

    # Activation

    @contextmanager
    def activate(self) -> Iterator["RunContext"]:
        """Bind this run to the current task's context."""
        token = _active_run.set(self)
        try:
            yield self
        finally:
            _active_run.reset(token)

    @staticmethod
    def current() -> "RunContext":
        """Return the run bound to the current context.

        Raises:
            NoActiveRunError: If called outside a simulation run
        """
        run = _active_run.get()
        if run is None:
            raise NoActiveRunError(
                "No active simulation run. Wrapped tools can only be called "
                "from an agent executed by the trial scheduler, or through "
                "WrappedTool.bind(run)."
            )
        return run

    @staticmethod
    def current_or_none() -> Optional["RunContext"]:
        return _active_run.get()

    # Trace recording

    def record_user_message(self, content: str, simulated: bool = False) -> str:
        step_id = self.trace.next_step_id()
        self.trace.add_step(UserMessageStep(
            step_id=step_id,
            turn=self.turn,
            content=content,
            simulated=simulated,
        ))
        return step_id

    def record_agent_response(self, content: str) -> str:
        step_id = self.trace.next_step_id()
        self.trace.add_step(AgentResponseStep(
            step_id=step_id,
            turn=self.turn,
            content=content,
        ))
        return step_id

    def record_tool_call(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        output: Any = None,
        effects: Optional[list[Effect]] = None,
        error: Optional[BaseException] = None,
        latency_ms: Optional[int] = None,
    ) -> str:
        step_id = self.trace.next_step_id()
        self.trace.add_step(ToolCallStep(
            step_id=step_id,
            turn=self.turn,
            tool_name=tool_name,
            arguments=arguments,
            output=output,
            effects=effects or [],
            success=error is None,
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
            latency_ms=latency_ms,
        ))
        return step_id

    def finish(self) -> None:
        self.trace.ended_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return (
            f"RunContext(run_id={self.run_id!r}, scenario_id={self.scenario_id!r}, "
            f"trial_index={self.trial_index})"
        )
