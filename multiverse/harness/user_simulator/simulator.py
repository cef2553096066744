"""User simulator implementations."""

import logging
from typing import Optional, Protocol, runtime_checkable

from langchain_core.messages import BaseMessage, HumanMessage

from .llm.ollama import OllamaClient, OllamaConfig
from .models import ConversationRole, ConversationState
from .persona import Persona
from .scenario import GenerativeScenario, ScriptedScenario

logger = logging.getLogger(__name__)


@runtime_checkable
class UserSimulator(Protocol):
    """Protocol for simulating the user side of a conversation.

    Implementations can be:
    - LLM-based (persona-driven replies generated by Ollama)
    - Scripted (pre-defined replies)
    """

    async def generate_response(
        self,
        agent_message: BaseMessage,
        state: ConversationState,
    ) -> Optional[BaseMessage]:
        """Generate the next user message, or None when the user has nothing left to say."""
        ...

    async def should_terminate(
        self,
        state: ConversationState,
    ) -> tuple[bool, Optional[str]]:
        """Decide whether the conversation should end before the next user turn."""
        ...

    async def initialize(self) -> None:
        ...

    async def cleanup(self) -> None:
        ...


class LLMUserSimulator:
    """User simulator powered by an Ollama chat model.

    The persona's system prompt tells the model to answer with the
    scenario's stop keyword once its request has been handled; a reply
    containing the keyword ends the conversation.

    Example usage:
        simulator = LLMUserSimulator(scenario)
        await simulator.initialize()
        reply = await simulator.generate_response(agent_message, state)
    """

    def __init__(
        self,
        scenario: GenerativeScenario,
        ollama_config: Optional[OllamaConfig] = None,
        client: Optional[OllamaClient] = None,
        check_goals: bool = False,
    ):
        """Initialize the simulator.

        Args:
            scenario: Scenario providing persona, temperature and stop keyword
            ollama_config: Configuration for the default Ollama client
            client: Pre-built client (takes precedence over ollama_config)
            check_goals: Also ask the model whether the persona's goals are met
        """
        self._scenario = scenario
        self._persona = scenario.persona or Persona(persona_id="default", name="User")
        self._client = client or OllamaClient(ollama_config)
        self._check_goals = check_goals
        self._initialized = False

    @property
    def persona(self) -> Persona:
        return self._persona

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self._client.__aenter__()
        self._initialized = True

    async def cleanup(self) -> None:
        if self._initialized:
            await self._client.__aexit__(None, None, None)
            self._initialized = False

    async def generate_response(
        self,
        agent_message: BaseMessage,
        state: ConversationState,
    ) -> Optional[BaseMessage]:
        if not self._initialized:
            await self.initialize()

        reply = await self._client.chat(
            self._role_play_history(state),
            system=self._persona.to_system_prompt(self._scenario.stop_keyword),
            temperature=self._scenario.temperature,
        )
        cleaned = reply.strip()
        for prefix in ("User:", "user:", "Human:", "human:"):
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):].strip()

        if not cleaned or self._scenario.stop_keyword in cleaned:
            logger.debug(f"Simulated user ended scenario {state.scenario_id}")
            return None
        return HumanMessage(content=cleaned)

    def _role_play_history(self, state: ConversationState) -> list[dict[str, str]]:
        """Conversation from the simulated user's side: roles are swapped."""
        messages = []
        for turn in state.turns[-20:]:
            role = "assistant" if turn.role == ConversationRole.USER else "user"
            messages.append({"role": role, "content": str(turn.message.content)})
        return messages

    async def should_terminate(
        self,
        state: ConversationState,
    ) -> tuple[bool, Optional[str]]:
        if state.current_turn >= state.max_turns:
            return True, "max_turns_reached"
        if self._check_goals and self._persona.goals:
            if await self._goals_achieved(state):
                return True, "goals_achieved"
        return False, None

    async def _goals_achieved(self, state: ConversationState) -> bool:
        if not self._initialized:
            return False

        pending = self._persona.get_pending_goals()
        if not pending:
            return True

        goals = "\n".join(f"- {g.description}: {g.success_criteria}" for g in pending)
        history = "\n".join(
            f"{'User' if t.role == ConversationRole.USER else 'Agent'}: {t.message.content}"
            for t in state.turns[-10:]
        )
        answer = await self._client.generate(
            f"Goals:\n{goals}\n\nConversation:\n{history}\n\n"
            "Have all goals been achieved? Answer with ONLY 'yes' or 'no'."
        )
        return answer.strip().lower().startswith("yes")


class ScriptedUserSimulator:
    """User simulator that replays a scripted scenario's turns.

    Example usage:
        scenario = ScriptedScenario(
            scenario_id="book-bos",
            turns=[
                ScriptedTurn(turn_number=0, user_message="Book me a flight to BOS"),
                ScriptedTurn(turn_number=1, user_message="The 9am one, please"),
            ],
        )
        simulator = ScriptedUserSimulator(scenario)
    """

    def __init__(self, scenario: ScriptedScenario):
        self._scenario = scenario

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    async def generate_response(
        self,
        agent_message: BaseMessage,
        state: ConversationState,
    ) -> Optional[BaseMessage]:
        scripted = self._scenario.get_turn_message(state.current_turn)
        if scripted is None:
            return None
        return HumanMessage(content=scripted)

    async def should_terminate(
        self,
        state: ConversationState,
    ) -> tuple[bool, Optional[str]]:
        if state.current_turn >= min(state.max_turns, self._scenario.max_turns):
            return True, "max_turns_reached"
        if self._scenario.get_turn_message(state.current_turn) is None:
            return True, "script_exhausted"
        return False, None
