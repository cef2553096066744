"""Agent entrypoints for common frameworks."""

import asyncio
from typing import Any, Callable, Optional

from langchain_core.messages import BaseMessage, HumanMessage

from multiverse.harness.context import AgentContext


class LangGraphEntrypoint:
    """Entrypoint for compiled LangGraph agents.

    Each run uses its run id as the LangGraph ``thread_id``, so checkpointed
    graphs keep per-run conversation memory and never share it across runs.

    Example usage:
        from my_agent import build_graph

        entrypoint = LangGraphEntrypoint(build_graph())
        report = await client.test(name="booking", agent=entrypoint, ...)
    """

    def __init__(
        self,
        graph: Any,
        messages_key: str = "messages",
        output_key: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
        state_builder: Optional[Callable[[AgentContext], dict[str, Any]]] = None,
        send_history: bool = True,
    ):
        """Initialize the entrypoint.

        Args:
            graph: Compiled LangGraph StateGraph
            messages_key: State key holding the conversation messages
            output_key: State key holding the reply (defaults to the last message)
            config: Extra LangGraph config merged into every invocation
            state_builder: Optional custom function building the input state
            send_history: Include earlier turns in the input messages; disable
                for checkpointed graphs that already remember them
        """
        self._graph = graph
        self._messages_key = messages_key
        self._output_key = output_key
        self._config = config or {}
        self._state_builder = state_builder
        self._send_history = send_history

    async def __call__(self, context: AgentContext) -> str:
        if self._state_builder:
            input_state = self._state_builder(context)
        else:
            input_state = self._build_default_state(context)

        config = dict(self._config)
        configurable = dict(config.get("configurable", {}))
        configurable.setdefault("thread_id", context.run_id)
        config["configurable"] = configurable

        result = await self._invoke_graph(input_state, config)
        return self._extract_response(result)

    def _build_default_state(self, context: AgentContext) -> dict[str, Any]:
        messages: list[BaseMessage] = []
        if self._send_history:
            messages.extend(context.conversation_history)
        messages.append(HumanMessage(content=context.user_message))
        return {self._messages_key: messages}

    async def _invoke_graph(self, input_state: dict, config: dict) -> dict:
        """Invoke the graph, handling sync/async."""
        if hasattr(self._graph, "ainvoke"):
            return await self._graph.ainvoke(input_state, config=config)
        return await asyncio.to_thread(self._graph.invoke, input_state, config=config)

    def _extract_response(self, result: Any) -> str:
        if not isinstance(result, dict):
            return str(result) if result is not None else ""

        if self._output_key is not None:
            value = result.get(self._output_key, "")
        else:
            messages = result.get(self._messages_key) or []
            value = messages[-1] if messages else ""

        if isinstance(value, BaseMessage):
            value = value.content
        if isinstance(value, list):
            # Content blocks
            return "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in value
            )
        return str(value) if value else ""
