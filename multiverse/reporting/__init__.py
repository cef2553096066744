"""Aggregation of run results into test reports, and report publishing."""

from multiverse.reporting.report import (
    RunResult,
    ScenarioSummary,
    TestReport,
    pass_rate,
    summarize,
)
from multiverse.reporting.sinks import HttpReportSink, JsonFileReportSink, ReportSink

__all__ = [
    # Results
    "RunResult",
    "ScenarioSummary",
    "TestReport",
    "pass_rate",
    "summarize",
    # Sinks
    "ReportSink",
    "HttpReportSink",
    "JsonFileReportSink",
]
