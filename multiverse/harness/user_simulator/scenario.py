"""Scenario definitions: concrete task variants run against the agent."""

from typing import Optional, Union

from pydantic import BaseModel, Field

from .persona import Persona


class ScriptedTurn(BaseModel):
    """A pre-defined user message in a scripted scenario."""

    turn_number: int
    user_message: str


class ScriptedScenario(BaseModel):
    """A scenario whose user messages are fixed in advance.

    Useful for regression tests and for replaying a failing conversation.
    """

    scenario_id: str
    name: str = ""
    task: str = ""
    persona: Optional[Persona] = None
    turns: list[ScriptedTurn] = Field(min_length=1)
    max_turns: int = Field(default=10, ge=1)

    def get_turn_message(self, turn_number: int) -> Optional[str]:
        for turn in self.turns:
            if turn.turn_number == turn_number:
                return turn.user_message
        return None

    def get_initial_message(self) -> str:
        return min(self.turns, key=lambda t: t.turn_number).user_message


class GenerativeScenario(BaseModel):
    """A scenario opened by a fixed message and continued by a simulated user.

    Without user simulation only ``initial_message`` is sent to the agent.
    """

    scenario_id: str
    name: str = ""
    task: str = ""
    persona: Optional[Persona] = None
    initial_message: str
    max_turns: int = Field(default=10, ge=1)
    temperature: float = Field(default=0.7, ge=0, le=2)
    stop_keyword: str = "[DONE]"

    def get_initial_message(self) -> str:
        return self.initial_message


Scenario = Union[ScriptedScenario, GenerativeScenario]
