"""Bounded agent/user conversation loop for a single run.

The loop alternates agent turns and simulated-user turns until the
simulated user stops, a termination predicate fires, the run is aborted,
or the ``max_turns`` budget is spent. Without a simulator it runs exactly
one agent turn.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from langchain_core.messages import AIMessage, HumanMessage

from multiverse.exceptions import AgentExecutionError, MultiverseError
from multiverse.harness.context import AgentContext, RunContext
from multiverse.harness.user_simulator.models import ConversationRole, ConversationState
from multiverse.harness.user_simulator.scenario import Scenario
from multiverse.harness.user_simulator.simulator import UserSimulator

logger = logging.getLogger(__name__)

AgentEntrypoint = Callable[[AgentContext], Union[Any, Awaitable[Any]]]


async def invoke_agent(agent: AgentEntrypoint, context: AgentContext) -> str:
    """Call the agent entrypoint and return its response as text.

    Sync entrypoints run in a worker thread; the active run's context
    variables are carried over.

    Raises:
        AgentExecutionError: If the entrypoint raises anything other than a
            harness error
    """
    try:
        if inspect.iscoroutinefunction(agent) or inspect.iscoroutinefunction(
            getattr(agent, "__call__", None)
        ):
            response = await agent(context)
        else:
            response = await asyncio.to_thread(agent, context)
            if inspect.isawaitable(response):
                response = await response
    except MultiverseError:
        raise
    except Exception as e:
        raise AgentExecutionError(context.run_id, e) from e

    if response is None:
        return ""
    if isinstance(response, str):
        return response
    return json.dumps(response, default=str)


class ConversationLoop:
    """Explicit state machine driving one run's conversation.

    States: agent turn -> (terminated | user turn -> agent turn ...). The
    turn counter is incremented after every agent turn and checked against
    ``max_turns`` before any simulated-user turn, so the loop is bounded.
    """

    def __init__(
        self,
        agent: AgentEntrypoint,
        simulator: Optional[UserSimulator] = None,
        max_turns: int = 10,
    ):
        self._agent = agent
        self._simulator = simulator
        self._max_turns = max_turns

    async def run(self, run: RunContext, scenario: Scenario) -> ConversationState:
        """Execute the conversation for one run.

        Raises:
            AgentExecutionError: If the agent entrypoint fails
        """
        state = ConversationState(
            scenario_id=scenario.scenario_id,
            max_turns=min(self._max_turns, scenario.max_turns),
        )
        scenario_text = scenario.get_initial_message()
        message = scenario_text
        simulated = False

        if self._simulator is not None:
            await self._simulator.initialize()
        try:
            while True:
                # Agent turn
                run.turn = state.current_turn
                history = state.get_messages()
                run.record_user_message(message, simulated=simulated)
                state.add(ConversationRole.USER, HumanMessage(content=message))

                context = AgentContext(
                    user_message=message,
                    scenario_text=scenario_text,
                    run_id=run.run_id,
                    scenario_id=run.scenario_id,
                    trial_index=run.trial_index,
                    turn=state.current_turn,
                    conversation_history=history,
                )
                response = await invoke_agent(self._agent, context)
                run.record_agent_response(response)
                agent_message = AIMessage(content=response)
                state.add(ConversationRole.AGENT, agent_message)
                state.current_turn += 1

                if run.aborted:
                    state.finish("run_aborted", status="terminated")
                    break
                if self._simulator is None:
                    state.finish("single_turn")
                    break
                if state.current_turn >= state.max_turns:
                    state.finish("max_turns_reached", status="terminated")
                    break

                # User turn
                should_stop, reason = await self._simulator.should_terminate(state)
                if should_stop:
                    state.finish(reason or "terminated")
                    break
                user_message = await self._simulator.generate_response(agent_message, state)
                if user_message is None:
                    state.finish("user_finished")
                    break
                message = str(user_message.content)
                simulated = True
                logger.debug(
                    f"Run {run.run_id} turn {state.current_turn}: simulated user replied"
                )
        finally:
            if self._simulator is not None:
                await self._simulator.cleanup()

        return state
