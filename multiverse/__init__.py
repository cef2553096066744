"""Multiverse: world-state simulation testing for tool-using agents."""

__version__ = "0.1.0"

# Client and configuration
from multiverse.client import Multiverse, TestSuite
from multiverse.config import MultiverseSettings, TestConfig, load_test_config

# Core world-state engine
from multiverse.core import (
    CollectionView,
    Effect,
    EffectApplier,
    EffectOperation,
    Entity,
    Invariant,
    InvariantChecker,
    InvariantCondition,
    RunStatus,
    RunTrace,
    ToolCallStep,
    WorldSnapshot,
    WorldStore,
    WorldView,
)

# Harness
from multiverse.harness import (
    AgentContext,
    GenerativeScenario,
    LangGraphEntrypoint,
    Persona,
    Progress,
    RunContext,
    ScenarioGenerator,
    ScenarioSet,
    ScriptedScenario,
    ScriptedTurn,
    TrialScheduler,
)

# Reporting
from multiverse.reporting import (
    HttpReportSink,
    JsonFileReportSink,
    ReportSink,
    RunResult,
    TestReport,
)

# Tools
from multiverse.tools import OutputContract, WrappedTool, wrap

__all__ = [
    "__version__",
    # Client
    "Multiverse",
    "TestSuite",
    "MultiverseSettings",
    "TestConfig",
    "load_test_config",
    # Core
    "Entity",
    "CollectionView",
    "WorldSnapshot",
    "WorldStore",
    "WorldView",
    "Effect",
    "EffectApplier",
    "EffectOperation",
    "Invariant",
    "InvariantChecker",
    "InvariantCondition",
    "RunStatus",
    "RunTrace",
    "ToolCallStep",
    # Harness
    "AgentContext",
    "RunContext",
    "LangGraphEntrypoint",
    "Persona",
    "GenerativeScenario",
    "ScriptedScenario",
    "ScriptedTurn",
    "ScenarioGenerator",
    "ScenarioSet",
    "Progress",
    "TrialScheduler",
    # Reporting
    "RunResult",
    "TestReport",
    "ReportSink",
    "HttpReportSink",
    "JsonFileReportSink",
    # Tools
    "OutputContract",
    "WrappedTool",
    "wrap",
]
