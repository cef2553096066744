"""Persona definitions for simulated users."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class CommunicationStyle(str, Enum):
    """How the persona communicates."""

    CONCISE = "concise"
    VERBOSE = "verbose"
    CASUAL = "casual"
    FORMAL = "formal"
    CONFUSED = "confused"
    IMPATIENT = "impatient"


class TechnicalLevel(str, Enum):
    """How familiar the persona is with the task domain."""

    NOVICE = "novice"
    INTERMEDIATE = "intermediate"
    EXPERT = "expert"


class Behavior(BaseModel):
    """Behavioral traits that shape simulated replies."""

    communication_style: CommunicationStyle = CommunicationStyle.CASUAL
    technical_level: TechnicalLevel = TechnicalLevel.INTERMEDIATE
    provides_details_upfront: bool = False
    changes_mind: bool = False


class Goal(BaseModel):
    """Something the simulated user wants the agent to accomplish."""

    description: str
    success_criteria: str = ""
    is_achieved: bool = False


class Persona(BaseModel):
    """A simulated user that multi-turns with the agent.

    The persona carries the concrete details of a scenario (names, dates,
    cities, payment details) in ``context`` so the simulated user can answer
    the agent's follow-up questions consistently.
    """

    persona_id: str
    name: str
    description: str = ""
    background: str = ""
    situation: str = ""
    behavior: Behavior = Field(default_factory=Behavior)
    goals: list[Goal] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    def to_system_prompt(self, stop_keyword: str = "[DONE]") -> str:
        """Build the system prompt used to generate this persona's replies."""
        style_desc = {
            CommunicationStyle.CONCISE: "Keep replies short and to the point.",
            CommunicationStyle.VERBOSE: "Give detailed replies with extra context.",
            CommunicationStyle.CASUAL: "Use informal, conversational language.",
            CommunicationStyle.FORMAL: "Use polite, professional language.",
            CommunicationStyle.CONFUSED: "Sometimes misunderstand and ask for clarification.",
            CommunicationStyle.IMPATIENT: "Push for quick answers and express urgency.",
        }
        tech_desc = {
            TechnicalLevel.NOVICE: "You are unfamiliar with the domain's jargon.",
            TechnicalLevel.INTERMEDIATE: "You know the basics of the domain.",
            TechnicalLevel.EXPERT: "You know the domain well and notice vague answers.",
        }

        parts = [f"You are role-playing a user named {self.name} talking to an assistant."]
        if self.background:
            parts.append(f"Background: {self.background}")
        if self.situation:
            parts.append(f"Situation: {self.situation}")
        parts.append(f"Style: {style_desc[self.behavior.communication_style]}")
        parts.append(f"Expertise: {tech_desc[self.behavior.technical_level]}")
        if self.behavior.provides_details_upfront:
            parts.append("Volunteer the details the assistant will need.")
        else:
            parts.append("Only share details when the assistant asks for them.")
        if self.behavior.changes_mind:
            parts.append("At some point, change one of your preferences.")

        pending = self.get_pending_goals()
        if pending:
            goals = "\n".join(f"- {g.description}" for g in pending)
            parts.append(f"What you want:\n{goals}")

        if self.context:
            details = "\n".join(f"- {k}: {v}" for k, v in self.context.items())
            parts.append(f"Details you know (use them when asked):\n{details}")

        parts.append(
            "Reply with only the user's next message. When your request is "
            f"fully handled, or you want to stop, reply with exactly {stop_keyword}."
        )
        return "\n".join(parts)

    def get_pending_goals(self) -> list[Goal]:
        return [g for g in self.goals if not g.is_achieved]

    def reset_goals(self) -> None:
        for goal in self.goals:
            goal.is_achieved = False
