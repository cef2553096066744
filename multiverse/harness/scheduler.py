"""Trial scheduler: run every (scenario, trial) pair with bounded concurrency.

Each run gets a fresh world store and its own RunContext, activated inside
the run's task so wrapped tools resolve that run's store. A run ends in
exactly one terminal status:

- succeeded: the success predicate returned True
- failed: the success predicate returned False
- errored: invariant violation, effect derivation failure, timeout, agent
  exception, predicate exception, or cancellation
"""

import asyncio
import inspect
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

from multiverse.core.invariants import Invariant, InvariantChecker
from multiverse.core.trace import RunTrace
from multiverse.core.types import RunStatus
from multiverse.core.world import WorldStore, WorldView
from multiverse.exceptions import (
    ConfigurationError,
    MultiverseError,
    RunTimeoutError,
    SchedulerAbortedError,
)
from multiverse.harness.context import RunContext
from multiverse.harness.conversation import AgentEntrypoint, ConversationLoop
from multiverse.harness.user_simulator.llm import OllamaConfig
from multiverse.harness.user_simulator.models import ConversationState
from multiverse.harness.user_simulator.scenario import Scenario, ScriptedScenario
from multiverse.harness.user_simulator.simulator import (
    LLMUserSimulator,
    ScriptedUserSimulator,
    UserSimulator,
)
from multiverse.reporting.report import RunResult

logger = logging.getLogger(__name__)

SuccessPredicate = Callable[[WorldView, RunTrace], Union[bool, Awaitable[bool]]]
SimulatorFactory = Callable[[Scenario], Optional[UserSimulator]]


class Progress(BaseModel):
    """Snapshot of scheduler progress, passed to ``on_progress``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    completed: int
    total: int
    succeeded: int = 0
    failed: int = 0
    errored: int = 0
    last: Optional[RunResult] = None


ProgressCallback = Callable[[Progress], Any]


class TrialScheduler:
    """Executes scenarios x trials against an agent entrypoint.

    Example usage:
        scheduler = TrialScheduler(max_concurrency=4, run_timeout=120)
        results = await scheduler.run(
            agent=run_agent,
            scenarios=scenarios,
            trials_per_scenario=4,
            success=lambda world, trace: world.get_collection("bookings").size > 0,
        )
    """

    def __init__(
        self,
        max_concurrency: int = 4,
        run_timeout: Optional[float] = None,
        simulate_user: bool = False,
        max_turns: int = 10,
        on_progress: Optional[ProgressCallback] = None,
        simulator_factory: Optional[SimulatorFactory] = None,
        ollama_config: Optional[OllamaConfig] = None,
        schemas: Optional[dict[str, type[BaseModel]]] = None,
    ):
        """Initialize the scheduler.

        Args:
            max_concurrency: Maximum runs executing at once
            run_timeout: Per-run timeout in seconds (None disables it)
            simulate_user: Continue generative scenarios with an LLM user
            max_turns: Agent turns allowed per run
            on_progress: Called after every run reaches a terminal status
            simulator_factory: Custom simulator per scenario (overrides simulate_user)
            ollama_config: Configuration for the default LLM user simulator
            schemas: Per-collection payload schemas for every run's store
        """
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self._max_concurrency = max_concurrency
        self._run_timeout = run_timeout
        self._simulate_user = simulate_user
        self._max_turns = max_turns
        self._on_progress = on_progress
        self._simulator_factory = simulator_factory
        self._ollama_config = ollama_config
        self._schemas = schemas
        self._cancelled = False
        self._in_flight: set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Abort the test.

        Runs that have not started never start; runs in flight are cancelled
        and recorded as errored. ``run()`` then raises SchedulerAbortedError.
        """
        if self._cancelled:
            return
        logger.info(f"Cancelling scheduler ({len(self._in_flight)} runs in flight)")
        self._cancelled = True
        for task in list(self._in_flight):
            task.cancel()

    async def run(
        self,
        agent: AgentEntrypoint,
        scenarios: list[Scenario],
        trials_per_scenario: int,
        success: SuccessPredicate,
        invariants: Optional[Iterable[Invariant]] = None,
        tools: Optional[Iterable[Any]] = None,
    ) -> list[RunResult]:
        """Run every trial of every scenario.

        Invariants declared on ``tools`` are registered before the agent
        starts, so they guard every effect batch of the run and not only
        batches committed after the declaring tool was first called.

        Args:
            agent: Agent entrypoint under test
            scenarios: Scenarios to execute
            trials_per_scenario: Independent runs per scenario
            success: Predicate over the final world and trace
            invariants: Invariants checked after every effect batch of every run
            tools: Wrapped tools the agent may call

        Returns:
            One terminal RunResult per (scenario, trial), in scenario order

        Raises:
            ConfigurationError: If there are no scenarios or no trials
            SchedulerAbortedError: If cancel() was called; carries the
                results that reached a terminal status
        """
        if not scenarios:
            raise ConfigurationError("At least one scenario is required")
        if trials_per_scenario < 1:
            raise ConfigurationError(
                f"trials_per_scenario must be at least 1, got {trials_per_scenario}"
            )

        self._cancelled = False
        invariants = list(invariants or [])
        for tool in tools or []:
            invariants.extend(getattr(tool, "invariants", ()))
        semaphore = asyncio.Semaphore(self._max_concurrency)
        total = len(scenarios) * trials_per_scenario
        counts = {RunStatus.SUCCEEDED: 0, RunStatus.FAILED: 0, RunStatus.ERRORED: 0}
        completed: list[RunResult] = []

        logger.info(
            f"Starting {total} runs ({len(scenarios)} scenarios x "
            f"{trials_per_scenario} trials, concurrency {self._max_concurrency})"
        )

        async def run_with_semaphore(scenario: Scenario, trial_index: int) -> Optional[RunResult]:
            async with semaphore:
                if self._cancelled:
                    return None
                task = asyncio.current_task()
                self._in_flight.add(task)
                try:
                    result = await self._execute(agent, scenario, trial_index, success, invariants)
                finally:
                    self._in_flight.discard(task)

            completed.append(result)
            counts[result.status] += 1
            if self._on_progress is not None:
                notified = self._on_progress(Progress(
                    completed=len(completed),
                    total=total,
                    succeeded=counts[RunStatus.SUCCEEDED],
                    failed=counts[RunStatus.FAILED],
                    errored=counts[RunStatus.ERRORED],
                    last=result,
                ))
                if inspect.isawaitable(notified):
                    await notified
            return result

        tasks = [
            run_with_semaphore(scenario, trial_index)
            for scenario in scenarios
            for trial_index in range(trials_per_scenario)
        ]
        results = [r for r in await asyncio.gather(*tasks) if r is not None]

        if self._cancelled:
            logger.info(f"Scheduler aborted after {len(results)} of {total} runs")
            raise SchedulerAbortedError(
                f"Test aborted after {len(results)} of {total} runs",
                results=results,
            )

        logger.info(
            f"Finished {total} runs: {counts[RunStatus.SUCCEEDED]} succeeded, "
            f"{counts[RunStatus.FAILED]} failed, {counts[RunStatus.ERRORED]} errored"
        )
        return results

    async def _execute(
        self,
        agent: AgentEntrypoint,
        scenario: Scenario,
        trial_index: int,
        success: SuccessPredicate,
        invariants: list[Invariant],
    ) -> RunResult:
        """Execute one run and convert every outcome into a terminal result."""
        run_id = f"{scenario.scenario_id}-{trial_index}-{uuid.uuid4().hex[:8]}"
        run = RunContext(
            run_id=run_id,
            scenario_id=scenario.scenario_id,
            trial_index=trial_index,
            world=WorldStore(schemas=self._schemas),
            invariants=invariants,
        )
        result = RunResult(
            scenario_id=scenario.scenario_id,
            trial_index=trial_index,
            run_id=run_id,
            status=RunStatus.RUNNING,
        )
        logger.debug(f"Run {run_id} started")

        error: Optional[BaseException] = None
        try:
            with run.activate():
                state = await self._with_timeout(self._converse(agent, run, scenario), run)
                result.conversation = state.to_dict()
                run.raise_if_aborted()
                self._check_final_state(run)
                result.verdict = await self._evaluate(success, run)
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            error = SchedulerAbortedError(f"Run {run_id} cancelled before completion")
            run.abort(error)
        except MultiverseError as e:
            error = e
        except Exception as e:
            # Success predicate failures
            error = e

        # Agent threads may outlive a timed-out or cancelled run; the result
        # keeps copies so their late tool calls cannot reach it.
        run.finish()
        result.trace = run.trace.model_copy(deep=True)
        result.world = run.world.snapshot()
        result.ended_at = datetime.now(timezone.utc)

        if error is not None:
            result.status = RunStatus.ERRORED
            result.error_type = type(error).__name__
            result.error_message = str(error)
            result.error_details = (
                error.to_dict() if isinstance(error, MultiverseError) else {"message": str(error)}
            )
            logger.debug(f"Run {run_id} errored: {result.error_type}: {error}")
        else:
            result.status = RunStatus.SUCCEEDED if result.verdict else RunStatus.FAILED
            logger.debug(f"Run {run_id} {result.status.value}")
        return result

    async def _converse(
        self, agent: AgentEntrypoint, run: RunContext, scenario: Scenario
    ) -> ConversationState:
        loop = ConversationLoop(
            agent,
            simulator=self._create_simulator(scenario),
            max_turns=self._max_turns,
        )
        return await loop.run(run, scenario)

    async def _with_timeout(self, coro: Awaitable[Any], run: RunContext) -> Any:
        if self._run_timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self._run_timeout)
        except asyncio.TimeoutError:
            error = RunTimeoutError(run.run_id, self._run_timeout)
            run.abort(error)
            raise error from None

    def _check_final_state(self, run: RunContext) -> None:
        """Check every registered invariant against the final world."""
        try:
            InvariantChecker().check(run.invariants, run.world)
        except MultiverseError as e:
            run.abort(e)
            raise

    async def _evaluate(self, success: SuccessPredicate, run: RunContext) -> bool:
        verdict = success(run.world.view(), run.trace)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        return bool(verdict)

    def _create_simulator(self, scenario: Scenario) -> Optional[UserSimulator]:
        """Create the simulator for a scenario, or None for a single agent turn."""
        if self._simulator_factory is not None:
            return self._simulator_factory(scenario)
        if isinstance(scenario, ScriptedScenario):
            return ScriptedUserSimulator(scenario)
        if self._simulate_user:
            return LLMUserSimulator(scenario, ollama_config=self._ollama_config)
        return None
