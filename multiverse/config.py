"""Configuration for Multiverse tests.

- TestConfig: per-test knobs (scenario count, trials, threshold, ...)
- MultiverseSettings: process-level settings from environment / .env
- load_test_config: TestConfig from a YAML file
"""

from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from multiverse.exceptions import ConfigurationError


class TestConfig(BaseModel):
    """Per-test configuration.

    Attributes:
        scenario_count: Distinct scenarios generated from the task
        trials_per_scenario: Independent runs per scenario
        simulate_user: Continue generative scenarios with a simulated user
        quality_threshold: Minimum pass rate (integer percent)
        max_concurrency: Runs executing at the same time
        run_timeout: Per-run timeout in seconds (None disables it)
        max_turns: Agent turns allowed per run
        seed: Seed forwarded to scenario generation and the simulated user
        print_report: Print the formatted report when the test ends
    """

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    scenario_count: int = Field(default=5, ge=1)
    trials_per_scenario: int = Field(default=4, ge=1)
    simulate_user: bool = False
    quality_threshold: int = Field(default=70, ge=0, le=100)
    max_concurrency: int = Field(default=4, ge=1)
    run_timeout: Optional[float] = Field(default=300.0, gt=0)
    max_turns: int = Field(default=10, ge=1)
    seed: Optional[int] = None
    print_report: bool = False

    @property
    def total_runs(self) -> int:
        return self.scenario_count * self.trials_per_scenario


class MultiverseSettings(BaseSettings):
    """Process-level settings, read from ``MULTIVERSE_*`` variables and ``.env``.

    Example .env:
        MULTIVERSE_DASHBOARD_URL=http://localhost:3000
        MULTIVERSE_API_KEY=...
        MULTIVERSE_OLLAMA_MODEL=llama3.2
    """

    model_config = SettingsConfigDict(
        env_prefix="MULTIVERSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dashboard_url: Optional[str] = None
    api_key: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    report_dir: Optional[str] = None


def load_test_config(path: Union[str, Path], **overrides: Any) -> TestConfig:
    """Load a TestConfig from a YAML file.

    Keys may be nested under a top-level ``test:`` section. Keyword
    overrides take precedence over file values.

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML, or
            holds invalid values
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Test config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Test config file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Test config file {path} must contain a mapping")
    if "test" in data:
        # An empty ``test:`` section means defaults
        data = data["test"] or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"The test section of {path} must be a mapping")
    data = {**data, **overrides}

    try:
        return TestConfig(**data)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid test config in {path}: {e}") from e
