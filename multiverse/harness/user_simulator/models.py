"""Pydantic models for the state of a simulated conversation."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field


class ConversationRole(str, Enum):
    """Role in the conversation."""

    USER = "user"
    AGENT = "agent"


class ConversationTurn(BaseModel):
    """A single message in the conversation."""

    turn_number: int
    role: ConversationRole
    message: BaseMessage
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ConversationState(BaseModel):
    """State of the agent/user loop for one run.

    ``current_turn`` counts completed agent turns; the loop never runs more
    than ``max_turns`` of them.
    """

    scenario_id: str
    turns: list[ConversationTurn] = Field(default_factory=list)
    current_turn: int = 0
    max_turns: int = 10
    status: Literal["running", "completed", "terminated"] = "running"
    termination_reason: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def add(self, role: ConversationRole, message: BaseMessage) -> None:
        self.turns.append(ConversationTurn(
            turn_number=self.current_turn,
            role=role,
            message=message,
        ))

    def get_messages(self) -> list[BaseMessage]:
        return [turn.message for turn in self.turns]

    def get_last_agent_message(self) -> Optional[BaseMessage]:
        for turn in reversed(self.turns):
            if turn.role == ConversationRole.AGENT:
                return turn.message
        return None

    def get_last_user_message(self) -> Optional[BaseMessage]:
        for turn in reversed(self.turns):
            if turn.role == ConversationRole.USER:
                return turn.message
        return None

    def finish(self, reason: str, status: Literal["completed", "terminated"] = "completed") -> None:
        self.status = status
        self.termination_reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "status": self.status,
            "termination_reason": self.termination_reason,
            "agent_turns": self.current_turn,
            "conversation": [
                {
                    "turn": t.turn_number,
                    "role": t.role.value,
                    "content": t.message.content,
                    "timestamp": t.timestamp.isoformat(),
                }
                for t in self.turns
            ],
        }
