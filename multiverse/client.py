"""Multiverse client: the entry point for running agent tests.

Usage:
    from multiverse import Multiverse, MultiverseSettings

    client = Multiverse(MultiverseSettings())
    report = await client.test(
        name="flight-booking-agent",
        agent=run_agent,
        task="Help the user book a flight",
        success=lambda world, trace: world.get_collection("bookings").size > 0,
        scenario_count=5,
        trials_per_scenario=4,
        simulate_user=True,
        quality_threshold=70,
    )
    sys.exit(report.exit_code)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from multiverse.config import MultiverseSettings, TestConfig
from multiverse.core.invariants import Invariant
from multiverse.exceptions import ConfigurationError, SchedulerAbortedError
from multiverse.harness.conversation import AgentEntrypoint
from multiverse.harness.scenarios import (
    OllamaScenarioBackend,
    ScenarioBackend,
    ScenarioGenerator,
    ScenarioSet,
)
from multiverse.harness.scheduler import (
    ProgressCallback,
    SimulatorFactory,
    SuccessPredicate,
    TrialScheduler,
)
from multiverse.harness.user_simulator.llm import OllamaConfig
from multiverse.harness.user_simulator.scenario import Scenario
from multiverse.reporting.report import TestReport, summarize
from multiverse.reporting.sinks import HttpReportSink, JsonFileReportSink, ReportSink

logger = logging.getLogger(__name__)


class Multiverse:
    """Runs simulation tests and publishes their reports.

    Constructed explicitly by the caller; there is no module-level instance.
    """

    def __init__(
        self,
        settings: Optional[MultiverseSettings] = None,
        scenario_backend: Optional[ScenarioBackend] = None,
        sinks: Optional[list[ReportSink]] = None,
    ):
        """Initialize the client.

        Args:
            settings: Process-level settings (read from the environment if omitted)
            scenario_backend: Backend for scenario generation (Ollama by default)
            sinks: Report sinks; derived from settings when omitted
        """
        self._settings = settings or MultiverseSettings()
        self._scenario_backend = scenario_backend
        self._sinks = sinks if sinks is not None else self._default_sinks()
        self._schedulers: set[TrialScheduler] = set()

    @property
    def settings(self) -> MultiverseSettings:
        return self._settings

    def _default_sinks(self) -> list[ReportSink]:
        sinks: list[ReportSink] = []
        if self._settings.dashboard_url:
            sinks.append(HttpReportSink(self._settings.dashboard_url, api_key=self._settings.api_key))
        if self._settings.report_dir:
            sinks.append(JsonFileReportSink(self._settings.report_dir))
        return sinks

    def _ollama_config(self, seed: Optional[int]) -> OllamaConfig:
        return OllamaConfig(
            base_url=self._settings.ollama_base_url,
            model=self._settings.ollama_model,
            seed=seed,
        )

    def scenario_generator(self, max_turns: int = 10) -> ScenarioGenerator:
        backend = self._scenario_backend or OllamaScenarioBackend(
            model=self._settings.ollama_model,
            host=self._settings.ollama_base_url,
        )
        return ScenarioGenerator(backend, max_turns=max_turns)

    async def generate_scenarios(
        self,
        task: str,
        count: int,
        seed: Optional[int] = None,
        max_turns: int = 10,
    ) -> ScenarioSet:
        """Generate a reusable scenario set for a task."""
        scenarios = await self.scenario_generator(max_turns).generate(task, count, seed=seed)
        return ScenarioSet(task=task, seed=seed, scenarios=scenarios)

    def cancel(self) -> None:
        """Cooperatively cancel every test currently running on this client."""
        for scheduler in list(self._schedulers):
            scheduler.cancel()

    async def test(
        self,
        name: str,
        agent: AgentEntrypoint,
        task: str,
        success: SuccessPredicate,
        config: Optional[TestConfig] = None,
        scenarios: Optional[Union[ScenarioSet, list[Scenario]]] = None,
        invariants: Optional[Iterable[Invariant]] = None,
        tools: Optional[Iterable[Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        schemas: Optional[dict[str, type[BaseModel]]] = None,
        simulator_factory: Optional[SimulatorFactory] = None,
        raise_on_threshold: bool = False,
        **overrides: Any,
    ) -> TestReport:
        """Run a simulation test and return its report.

        Args:
            name: Test name
            agent: Agent entrypoint under test
            task: Natural-language task the scenarios are generated from
            success: Predicate over the final world and trace of each run
            config: Test configuration; keyword overrides are applied on top
            scenarios: Pre-built scenarios; skips generation
            invariants: Invariants checked in every run besides those declared
                on wrapped tools
            tools: Wrapped tools the agent may call; their invariants guard
                the whole run from its first effect batch
            on_progress: Called after every run reaches a terminal status
            schemas: Per-collection entity schemas
            simulator_factory: Custom user simulator per scenario
            raise_on_threshold: Raise QualityThresholdError below threshold
            **overrides: TestConfig fields (scenario_count=5, ...)

        Raises:
            ConfigurationError: If the configuration is invalid
            ScenarioGenerationError: If scenarios could not be generated
            SchedulerAbortedError: If the test was cancelled; its ``report``
                summarizes the runs that finished
            QualityThresholdError: If raise_on_threshold is set and the pass
                rate is below the threshold
        """
        config = self._resolve_config(config, overrides)

        if isinstance(scenarios, ScenarioSet):
            scenarios = scenarios.scenarios
        if scenarios is None:
            scenarios = await self.scenario_generator(config.max_turns).generate(
                task, config.scenario_count, seed=config.seed
            )
        scenarios = list(scenarios)

        scheduler = TrialScheduler(
            max_concurrency=config.max_concurrency,
            run_timeout=config.run_timeout,
            simulate_user=config.simulate_user,
            max_turns=config.max_turns,
            on_progress=on_progress,
            simulator_factory=simulator_factory,
            ollama_config=self._ollama_config(config.seed),
            schemas=schemas,
        )

        logger.info(f"Running test '{name}': {len(scenarios)} scenarios")
        self._schedulers.add(scheduler)
        started_at = datetime.now(timezone.utc)
        try:
            results = await scheduler.run(
                agent,
                scenarios,
                config.trials_per_scenario,
                success,
                invariants=invariants,
                tools=tools,
            )
        except SchedulerAbortedError as e:
            if e.results:
                e.report = summarize(
                    name,
                    e.results,
                    started_at=started_at,
                    finished_at=datetime.now(timezone.utc),
                    quality_threshold=config.quality_threshold,
                )
                logger.info(f"Test '{name}' aborted: {e.report}")
            raise
        finally:
            self._schedulers.discard(scheduler)

        report = summarize(
            name,
            results,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            quality_threshold=config.quality_threshold,
        )
        report.url = await self._publish(report)

        logger.info(str(report))
        if config.print_report:
            report.print_report()
        if raise_on_threshold:
            report.raise_for_threshold()
        return report

    def describe(
        self,
        name: str,
        task: str,
        agent: AgentEntrypoint,
        **defaults: Any,
    ) -> "TestSuite":
        """Declare a test once and run it later, possibly several times."""
        return TestSuite(self, name=name, task=task, agent=agent, defaults=defaults)

    async def _publish(self, report: TestReport) -> Optional[str]:
        url = None
        for sink in self._sinks:
            try:
                published = await sink.publish(report)
            except Exception as e:
                logger.warning(f"Report sink {sink!r} failed: {e}")
                continue
            url = url or published
        return url

    def _resolve_config(
        self, config: Optional[TestConfig], overrides: dict[str, Any]
    ) -> TestConfig:
        base = config.model_dump() if config is not None else {}
        try:
            return TestConfig(**{**base, **overrides})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid test configuration: {e}") from e

    def __repr__(self) -> str:
        return f"Multiverse(sinks={self._sinks!r})"


class TestSuite:
    """A test declared with ``Multiverse.describe``."""

    __test__ = False

    def __init__(
        self,
        client: Multiverse,
        name: str,
        task: str,
        agent: AgentEntrypoint,
        defaults: Optional[dict[str, Any]] = None,
    ):
        self.client = client
        self.name = name
        self.task = task
        self.agent = agent
        self._defaults = defaults or {}

    async def run(self, success: SuccessPredicate, **kwargs: Any) -> TestReport:
        """Run the declared test; keyword arguments are passed to ``Multiverse.test``."""
        return await self.client.test(
            name=self.name,
            agent=self.agent,
            task=self.task,
            success=success,
            **{**self._defaults, **kwargs},
        )
