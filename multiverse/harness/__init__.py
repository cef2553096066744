"""Multiverse harness: run context, conversations, scenarios and scheduling."""

from multiverse.harness.adapters import LangGraphEntrypoint
from multiverse.harness.context import AgentContext, RunContext
from multiverse.harness.conversation import AgentEntrypoint, ConversationLoop, invoke_agent
from multiverse.harness.scenarios import (
    GeneratedScenario,
    OllamaScenarioBackend,
    ScenarioBackend,
    ScenarioGenerator,
    ScenarioSet,
)
from multiverse.harness.scheduler import Progress, SuccessPredicate, TrialScheduler
from multiverse.harness.user_simulator import (
    GenerativeScenario,
    Goal,
    LLMUserSimulator,
    Persona,
    Scenario,
    ScriptedScenario,
    ScriptedTurn,
    ScriptedUserSimulator,
    UserSimulator,
)

__all__ = [
    # Run context
    "AgentContext",
    "RunContext",
    # Conversation
    "AgentEntrypoint",
    "ConversationLoop",
    "invoke_agent",
    "LangGraphEntrypoint",
    # Scenarios
    "Scenario",
    "GenerativeScenario",
    "ScriptedScenario",
    "ScriptedTurn",
    "Persona",
    "Goal",
    "ScenarioBackend",
    "OllamaScenarioBackend",
    "GeneratedScenario",
    "ScenarioGenerator",
    "ScenarioSet",
    # Simulators
    "UserSimulator",
    "LLMUserSimulator",
    "ScriptedUserSimulator",
    # Scheduling
    "Progress",
    "SuccessPredicate",
    "TrialScheduler",
]
