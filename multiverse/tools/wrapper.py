"""Tool wrapping: route every agent tool call through the simulated world.

A wrapped tool keeps the calling interface of the function it wraps. On
each call it runs the real tool, validates the result against the output
contract, derives effects from it, applies them atomically to the active
run's world, checks invariants and finally returns the raw result.

Usage:
    book_flight = wrap(
        book_flight_impl,
        output=Booking,
        effects=lambda booking, world: [
            Effect.create("bookings", booking.booking_id, booking.model_dump()),
        ],
        invariants=[Invariant(collection="flights", field="seatsAvailable",
                              condition="gte", value=0)],
    )

    # Inside an agent run by the TrialScheduler:
    result = await book_flight(flight_id="F1", passenger_name="Ada")
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from langchain_core.tools import (
    BaseTool,
    StructuredTool,
    ToolException,
    create_schema_from_function,
)

from multiverse.core.effects import Effect, EffectApplier, EffectLike
from multiverse.core.invariants import Invariant, InvariantChecker
from multiverse.core.world import WorldView
from multiverse.exceptions import (
    EffectApplicationError,
    EffectDerivationError,
    InvariantViolationError,
    MultiverseError,
    OutputContractViolationError,
)
from multiverse.harness.context import RunContext
from multiverse.tools.contract import SchemaValidator, as_validator

logger = logging.getLogger(__name__)

EffectDeriver = Callable[
    [Any, WorldView],
    Union[Optional[Iterable[EffectLike]], Awaitable[Optional[Iterable[EffectLike]]]],
]


class WrappedTool:
    """A tool whose calls are applied to the active run's world.

    Attributes:
        name: Tool name (shown to the agent)
        description: Tool description
        contract: Validator for the tool's return value
        invariants: Invariants registered with every run that calls the tool
    """

    def __init__(
        self,
        tool: Union[Callable[..., Any], BaseTool],
        output: Any,
        effects: Optional[EffectDeriver] = None,
        invariants: Optional[Iterable[Invariant]] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        args_schema: Optional[type] = None,
    ):
        """Wrap a tool.

        Args:
            tool: Sync or async callable, or a LangChain BaseTool
            output: Pydantic model / type, or a SchemaValidator
            effects: Function (validated output, world view) -> effects
            invariants: Invariants checked after each effect batch
            name: Override the tool name
            description: Override the tool description
            args_schema: Pydantic model for the tool's arguments (used by
                as_langchain_tool; inferred when omitted)
        """
        self._tool = tool
        self._effects = effects
        self.contract: SchemaValidator = as_validator(output)
        self.invariants: tuple[Invariant, ...] = tuple(invariants or ())

        if isinstance(tool, BaseTool):
            self.name = name or tool.name
            self.description = description or tool.description
            self._args_schema = args_schema or tool.args_schema
        else:
            self.name = name or getattr(tool, "__name__", "tool")
            self.description = description or inspect.getdoc(tool) or f"Tool {self.name}"
            self._args_schema = args_schema

    def bind(self, run: RunContext) -> "BoundTool":
        """Return this tool bound to an explicit run."""
        return BoundTool(self, run)

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        """Invoke the tool within the active run.

        Raises:
            NoActiveRunError: If no run is active in the current context
        """
        return await self.bind(RunContext.current()).invoke(*args, **kwargs)

    def call_sync(self, *args: Any, **kwargs: Any) -> Any:
        """Invoke the tool from a synchronous agent running in a worker thread."""
        return self.bind(RunContext.current()).invoke_sync(*args, **kwargs)

    def as_langchain_tool(self) -> StructuredTool:
        """Expose the wrapper as a LangChain tool.

        Harness errors are converted into ToolException so LangChain agents
        receive them as tool failure messages.
        """

        async def _arun(**kwargs: Any) -> Any:
            try:
                return await self(**kwargs)
            except MultiverseError as e:
                raise ToolException(str(e)) from e

        def _run(**kwargs: Any) -> Any:
            try:
                return self.call_sync(**kwargs)
            except MultiverseError as e:
                raise ToolException(str(e)) from e

        args_schema = self._args_schema
        if args_schema is None and not isinstance(self._tool, BaseTool):
            args_schema = create_schema_from_function(self.name, self._tool)

        return StructuredTool.from_function(
            func=_run,
            coroutine=_arun,
            name=self.name,
            description=self.description,
            args_schema=args_schema,
            handle_tool_error=True,
        )

    async def call_underlying(self, args: tuple, kwargs: dict[str, Any]) -> Any:
        """Call the wrapped tool itself, without touching any world."""
        if isinstance(self._tool, BaseTool):
            if args:
                raise TypeError(f"Tool '{self.name}' only accepts keyword arguments")
            return await self._tool.ainvoke(kwargs)
        if inspect.iscoroutinefunction(self._tool):
            return await self._tool(*args, **kwargs)
        result = await asyncio.to_thread(self._tool, *args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def derive_effects(self, value: Any, world: WorldView) -> list[Any]:
        """Run the effect-derivation function on a validated output.

        Raises:
            EffectDerivationError: If the derivation function raises or
                returns something that is not a sequence of effects
        """
        if self._effects is None:
            return []
        try:
            derived = self._effects(value, world)
            if inspect.isawaitable(derived):
                derived = await derived
            if derived is None:
                return []
            if isinstance(derived, (Effect, dict, str, bytes)):
                raise TypeError(
                    f"expected a sequence of effects, got {type(derived).__name__}"
                )
            return list(derived)
        except EffectDerivationError:
            raise
        except Exception as e:
            raise EffectDerivationError(self.name, f"{type(e).__name__}: {e}") from e

    def __repr__(self) -> str:
        return f"WrappedTool(name={self.name!r}, contract={self.contract!r})"


class BoundTool:
    """A wrapped tool bound to one run's world and trace."""

    def __init__(self, tool: WrappedTool, run: RunContext):
        self._tool = tool
        self._run = run

    @property
    def name(self) -> str:
        return self._tool.name

    @property
    def run(self) -> RunContext:
        return self._run

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return await self.invoke(*args, **kwargs)

    async def invoke(self, *args: Any, **kwargs: Any) -> Any:
        """Call the tool and commit its effects to the bound run's world.

        Returns:
            The tool's raw result, unchanged

        Raises:
            OutputContractViolationError: The result failed the contract;
                the world is untouched
            EffectApplicationError: An effect failed; the batch was rolled back
            InvariantViolationError: The batch broke an invariant; it was
                rolled back and the run is aborted
            EffectDerivationError: The derivation function failed; the run
                is aborted
        """
        run = self._run
        tool = self._tool
        arguments = dict(kwargs)
        if args:
            arguments["args"] = list(args)

        run.raise_if_aborted()
        run.register_invariants(tool.invariants)
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        try:
            raw = await tool.call_underlying(args, kwargs)
        except Exception as e:
            logger.debug(f"Tool '{tool.name}' raised in run {run.run_id}: {e}")
            run.record_tool_call(tool.name, arguments, error=e, latency_ms=elapsed_ms())
            raise

        result = tool.contract.validate(raw)
        if not result.valid:
            error = OutputContractViolationError(tool.name, result.errors)
            logger.debug(f"Run {run.run_id}: {error}")
            run.record_tool_call(
                tool.name, arguments, output=raw, error=error, latency_ms=elapsed_ms()
            )
            raise error

        try:
            applied = await self._commit(result.value)
        except (InvariantViolationError, EffectDerivationError) as e:
            run.abort(e)
            run.record_tool_call(
                tool.name, arguments, output=raw, error=e, latency_ms=elapsed_ms()
            )
            raise
        except EffectApplicationError as e:
            logger.debug(f"Run {run.run_id}: {e}")
            run.record_tool_call(
                tool.name, arguments, output=raw, error=e, latency_ms=elapsed_ms()
            )
            raise

        run.record_tool_call(
            tool.name, arguments, output=raw, effects=applied, latency_ms=elapsed_ms()
        )
        return raw

    def invoke_sync(self, *args: Any, **kwargs: Any) -> Any:
        """Blocking variant of invoke for agents running in a worker thread."""
        loop = self._run.loop
        if loop is None or not loop.is_running():
            raise RuntimeError("The run's event loop is not running")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            raise RuntimeError(
                "invoke_sync cannot be called from the event loop thread; await invoke()"
            )
        future = asyncio.run_coroutine_threadsafe(self.invoke(*args, **kwargs), loop)
        return future.result()

    async def _commit(self, value: Any) -> list[Effect]:
        run = self._run
        async with run.world.lock:
            # The run may have been aborted while the tool was executing
            run.raise_if_aborted()
            effects = await self._tool.derive_effects(value, run.world.view())
            with run.world.transaction():
                applied = EffectApplier(run.world).apply(effects)
                InvariantChecker().check(run.invariants, run.world)
        return applied

    def __repr__(self) -> str:
        return f"BoundTool(name={self.name!r}, run_id={self._run.run_id!r})"


def wrap(
    tool: Union[Callable[..., Any], BaseTool],
    output: Any,
    effects: Optional[EffectDeriver] = None,
    invariants: Optional[Iterable[Invariant]] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    args_schema: Optional[type] = None,
) -> WrappedTool:
    """Wrap a tool for simulation testing. See WrappedTool."""
    return WrappedTool(
        tool,
        output=output,
        effects=effects,
        invariants=invariants,
        name=name,
        description=description,
        args_schema=args_schema,
    )
