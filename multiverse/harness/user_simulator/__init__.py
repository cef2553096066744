"""User simulator module for multi-turn conversations with the agent under test."""

from .llm import OllamaClient, OllamaConfig
from .models import ConversationRole, ConversationState, ConversationTurn
from .persona import (
    Behavior,
    CommunicationStyle,
    Goal,
    Persona,
    TechnicalLevel,
)
from .scenario import (
    GenerativeScenario,
    Scenario,
    ScriptedScenario,
    ScriptedTurn,
)
from .simulator import (
    LLMUserSimulator,
    ScriptedUserSimulator,
    UserSimulator,
)

__all__ = [
    # Models
    "ConversationRole",
    "ConversationState",
    "ConversationTurn",
    # Personas
    "Persona",
    "Behavior",
    "Goal",
    "CommunicationStyle",
    "TechnicalLevel",
    # Scenarios
    "Scenario",
    "ScriptedScenario",
    "GenerativeScenario",
    "ScriptedTurn",
    # Simulators
    "UserSimulator",
    "LLMUserSimulator",
    "ScriptedUserSimulator",
    # LLM
    "OllamaClient",
    "OllamaConfig",
]
