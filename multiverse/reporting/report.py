"""Run results and the aggregated test report.

Key rules:
- Pass rate is the integer percentage of succeeded runs over all terminal
  runs, rounded half up
- Errored and failed runs both count against the pass rate
- A report over zero runs is a configuration error, never a 0% or 100% pass
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from multiverse.core.trace import RunTrace
from multiverse.core.types import RunStatus
from multiverse.core.world import WorldSnapshot
from multiverse.exceptions import ConfigurationError, QualityThresholdError


class RunResult(BaseModel):
    """Outcome of one (scenario, trial) run.

    Attributes:
        scenario_id: Scenario the run executed
        trial_index: Trial number within the scenario
        run_id: Unique run identifier
        status: Terminal status of the run
        verdict: Success predicate result (None if the run errored before it)
        trace: Ordered trace of the run
        world: Final world state
        error_type: Exception class name for errored runs
        error_message: Human-readable error
        error_details: Structured error attributes
        conversation: Conversation summary (turns and termination reason)
    """

    model_config = ConfigDict(use_enum_values=False)

    scenario_id: str
    trial_index: int
    run_id: str
    status: RunStatus
    verdict: Optional[bool] = None
    trace: Optional[RunTrace] = None
    world: Optional[WorldSnapshot] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    conversation: Optional[dict[str, Any]] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def duration_ms(self) -> Optional[int]:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["duration_ms"] = self.duration_ms
        return data


@dataclass
class ScenarioSummary:
    """Pass rate of the trials of one scenario."""

    scenario_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errored: int = 0

    @property
    def pass_rate(self) -> int:
        return pass_rate(self.succeeded, self.total)


@dataclass
class TestReport:
    """Aggregated outcome of a test.

    Attributes:
        name: Test name
        pass_rate: Integer percent of succeeded runs (0-100)
        total_runs: Number of terminal runs
        succeeded: Runs whose success predicate held
        failed: Runs whose success predicate did not hold
        errored: Runs that hit an unrecoverable error
        duration_ms: Wall-clock duration of the whole test
        quality_threshold: Minimum acceptable pass rate
        scenarios: Per-scenario breakdown, in scenario order
        runs: Every run result
        url: Dashboard link, when a report sink provided one
    """

    __test__ = False

    name: str
    pass_rate: int
    total_runs: int
    succeeded: int
    failed: int
    errored: int
    duration_ms: int
    quality_threshold: int = 0
    scenarios: list[ScenarioSummary] = field(default_factory=list)
    runs: list[RunResult] = field(default_factory=list)
    url: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not 0 <= self.pass_rate <= 100:
            raise ValueError(f"Pass rate must be between 0 and 100, got {self.pass_rate}")

    @property
    def meets_threshold(self) -> bool:
        return self.pass_rate >= self.quality_threshold

    @property
    def exit_code(self) -> int:
        """Process exit code for CI: 0 when the threshold is met, 1 otherwise."""
        return 0 if self.meets_threshold else 1

    @property
    def errored_runs(self) -> list[RunResult]:
        return [r for r in self.runs if r.status == RunStatus.ERRORED]

    @property
    def failed_runs(self) -> list[RunResult]:
        return [r for r in self.runs if r.status == RunStatus.FAILED]

    def raise_for_threshold(self) -> None:
        """Raise QualityThresholdError if the pass rate is below the threshold."""
        if not self.meets_threshold:
            raise QualityThresholdError(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "name": self.name,
            "pass_rate": self.pass_rate,
            "total_runs": self.total_runs,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errored": self.errored,
            "duration_ms": self.duration_ms,
            "quality_threshold": self.quality_threshold,
            "meets_threshold": self.meets_threshold,
            "scenarios": [
                {
                    "scenario_id": s.scenario_id,
                    "total": s.total,
                    "succeeded": s.succeeded,
                    "failed": s.failed,
                    "errored": s.errored,
                    "pass_rate": s.pass_rate,
                }
                for s in self.scenarios
            ],
            "runs": [r.to_dict() for r in self.runs],
            "url": self.url,
            "timestamp": self.timestamp.isoformat(),
        }

    def format_report(self, verbose: bool = False) -> str:
        """Format the report as human-readable text.

        Args:
            verbose: Include structured error details and every failed run
        """
        lines = []

        lines.append("")
        lines.append("=" * 60)
        lines.append(f"TEST REPORT: {self.name}")
        lines.append("=" * 60)

        status_icon = "[OK]" if self.meets_threshold else "[FAIL]"
        lines.append("")
        lines.append(
            f"Result:    {status_icon} {self.pass_rate}% pass rate "
            f"(threshold {self.quality_threshold}%)"
        )
        lines.append(
            f"Runs:      {self.total_runs} total, {self.succeeded} succeeded, "
            f"{self.failed} failed, {self.errored} errored"
        )
        lines.append(f"Duration:  {self.duration_ms / 1000:.1f}s")

        if len(self.scenarios) > 1 or verbose:
            lines.append("")
            lines.append("SCENARIOS:")
            for s in self.scenarios:
                lines.append(
                    f"  {s.scenario_id:<24} {s.pass_rate:>3}%  "
                    f"({s.succeeded}/{s.total})"
                )

        errored = self.errored_runs
        if errored:
            lines.append("")
            lines.append(f"ERRORS ({len(errored)}):")
            for r in errored:
                lines.append(f"  [ERROR] {r.scenario_id} trial {r.trial_index}: {r.error_type}")
                lines.append(f"          {r.error_message}")
                if verbose and r.error_details:
                    for k, v in r.error_details.items():
                        if k != "message":
                            lines.append(f"          {k}: {v}")

        failed = self.failed_runs
        if failed:
            lines.append("")
            lines.append(f"FAILED ({len(failed)}):")
            shown = failed if verbose else failed[:5]
            for r in shown:
                final = r.trace.final_response if r.trace else None
                lines.append(f"  [FAIL]  {r.scenario_id} trial {r.trial_index}")
                if final:
                    lines.append(f"          last response: {final[:100]}")
            if len(shown) < len(failed):
                lines.append(f"  ... and {len(failed) - len(shown)} more")

        if self.url:
            lines.append("")
            lines.append(f"Details: {self.url}")

        lines.append("")
        lines.append("-" * 60)

        return "\n".join(lines)

    def print_report(self, verbose: bool = False) -> None:
        print(self.format_report(verbose=verbose))

    def __str__(self) -> str:
        status = "PASSED" if self.meets_threshold else "FAILED"
        return (
            f"TestReport({self.name}: {status}, pass_rate={self.pass_rate}%, "
            f"runs={self.total_runs})"
        )


def pass_rate(succeeded: int, total: int) -> int:
    """Integer percentage of ``succeeded`` over ``total``, rounded half up.

    Raises:
        ConfigurationError: If total is zero
    """
    if total <= 0:
        raise ConfigurationError("Cannot compute a pass rate over zero runs")
    if not 0 <= succeeded <= total:
        raise ValueError(f"Succeeded count {succeeded} out of range for {total} runs")
    return (200 * succeeded + total) // (2 * total)


def summarize(
    name: str,
    results: Iterable[RunResult],
    started_at: datetime,
    finished_at: datetime,
    quality_threshold: int = 0,
) -> TestReport:
    """Aggregate terminal run results into a TestReport.

    Non-terminal results are ignored.

    Raises:
        ConfigurationError: If there is no terminal run to aggregate
    """
    runs = [r for r in results if r.status.is_terminal]
    if not runs:
        raise ConfigurationError(f"Test '{name}' produced no completed runs")

    by_scenario: dict[str, ScenarioSummary] = {}
    for run in runs:
        summary = by_scenario.setdefault(run.scenario_id, ScenarioSummary(run.scenario_id))
        summary.total += 1
        if run.status == RunStatus.SUCCEEDED:
            summary.succeeded += 1
        elif run.status == RunStatus.FAILED:
            summary.failed += 1
        else:
            summary.errored += 1

    succeeded = sum(s.succeeded for s in by_scenario.values())
    return TestReport(
        name=name,
        pass_rate=pass_rate(succeeded, len(runs)),
        total_runs=len(runs),
        succeeded=succeeded,
        failed=sum(s.failed for s in by_scenario.values()),
        errored=sum(s.errored for s in by_scenario.values()),
        duration_ms=max(0, int((finished_at - started_at).total_seconds() * 1000)),
        quality_threshold=quality_threshold,
        scenarios=list(by_scenario.values()),
        runs=runs,
    )
