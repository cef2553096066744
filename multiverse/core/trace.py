"""Run trace models for Multiverse.

A run trace is the ordered record of one simulation run: the user
messages the agent received, every tool call with the effects it applied,
and the agent's responses.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from multiverse.core.effects import Effect
from multiverse.core.types import StepType


class BaseStep(BaseModel):
    """Base fields shared by all step types.

    Attributes:
        step_id: Unique identifier for this step within the trace
        timestamp: When this step occurred
        turn: Conversation turn the step belongs to
        metadata: Optional additional metadata for this step
    """

    model_config = ConfigDict(extra="ignore")

    step_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    turn: int = 0
    metadata: Optional[dict[str, Any]] = None


class UserMessageStep(BaseStep):
    """A message delivered to the agent (scenario text or simulated user)."""

    step_type: Literal[StepType.USER_MESSAGE] = StepType.USER_MESSAGE
    content: str
    simulated: bool = False


class ToolCallStep(BaseStep):
    """A wrapped tool invocation.

    Attributes:
        tool_name: Tool identifier
        arguments: Arguments the agent passed
        output: Raw tool result (None if the tool raised)
        effects: Effects committed to the world (empty on failure)
        success: Whether the call completed without error
        error: Error message if the call failed
        error_type: Exception class name if the call failed
        latency_ms: Execution time in milliseconds
    """

    step_type: Literal[StepType.TOOL_CALL] = StepType.TOOL_CALL
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    output: Optional[Any] = None
    effects: list[Effect] = Field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    error_type: Optional[str] = None
    latency_ms: Optional[int] = None


class AgentResponseStep(BaseStep):
    """A natural-language response returned by the agent entrypoint."""

    step_type: Literal[StepType.AGENT_RESPONSE] = StepType.AGENT_RESPONSE
    content: str


TraceStep = Annotated[
    Union[UserMessageStep, ToolCallStep, AgentResponseStep],
    Field(discriminator="step_type"),
]


class RunTrace(BaseModel):
    """Complete record of one simulation run.

    Attributes:
        run_id: Unique identifier of the run
        scenario_id: Scenario the run executed
        trial_index: Index of the trial within its scenario
        started_at: When the run started
        ended_at: When the run ended (None while running)
        steps: Ordered trace steps
    """

    model_config = ConfigDict(extra="ignore")

    run_id: str
    scenario_id: str
    trial_index: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    steps: list[TraceStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_steps(self) -> "RunTrace":
        """Step ids must be unique and ended_at must not precede started_at."""
        step_ids = [step.step_id for step in self.steps]
        duplicates = [sid for sid in step_ids if step_ids.count(sid) > 1]
        if duplicates:
            raise ValueError(f"Duplicate step_ids found: {sorted(set(duplicates))}")

        if self.ended_at is not None and self.ended_at < self.started_at:
            raise ValueError(
                f"ended_at ({self.ended_at}) cannot be before started_at ({self.started_at})"
            )
        return self

    def next_step_id(self) -> str:
        return f"step-{len(self.steps) + 1:04d}"

    def add_step(self, step: TraceStep) -> None:
        self.steps.append(step)

    def get_steps_by_type(self, step_type: StepType) -> list[TraceStep]:
        return [s for s in self.steps if s.step_type == step_type]

    @property
    def tool_calls(self) -> list[ToolCallStep]:
        return [s for s in self.steps if isinstance(s, ToolCallStep)]

    @property
    def responses(self) -> list[AgentResponseStep]:
        return [s for s in self.steps if isinstance(s, AgentResponseStep)]

    @property
    def final_response(self) -> Optional[str]:
        """The agent's last natural-language response, if any."""
        responses = self.responses
        return responses[-1].content if responses else None

    def applied_effects(self) -> list[Effect]:
        """All effects committed during the run, in order."""
        return [effect for call in self.tool_calls for effect in call.effects]

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(exclude_none=True, **kwargs)
