"""Scenario generation: turn one task description into distinct variants.

Variants are generated by an LLM backend with structured output validated
by pydantic. Generation is not deterministic; to re-run the same scenarios
for debugging, save the ScenarioSet and pass its scenarios explicitly.

Usage:
    generator = ScenarioGenerator(OllamaScenarioBackend(model="llama3.2"))
    scenarios = await generator.generate("Help the user book a flight", count=5)

    ScenarioSet(task="Help the user book a flight", scenarios=scenarios).save(
        "scenarios/flight-booking.json"
    )
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional, Protocol, Union

import ollama
from pydantic import BaseModel, Field, ValidationError

from multiverse.exceptions import ConfigurationError, ScenarioGenerationError
from multiverse.harness.user_simulator.persona import (
    Behavior,
    CommunicationStyle,
    Goal,
    Persona,
    TechnicalLevel,
)
from multiverse.harness.user_simulator.scenario import GenerativeScenario, Scenario

logger = logging.getLogger(__name__)


class GeneratedPersona(BaseModel):
    """Persona fields the LLM fills in for one variant."""

    name: str = Field(description="First name of the simulated user")
    background: str = Field(default="", description="Who the user is")
    situation: str = Field(default="", description="Why they need help right now")
    communication_style: CommunicationStyle = CommunicationStyle.CASUAL
    technical_level: TechnicalLevel = TechnicalLevel.INTERMEDIATE
    details: dict[str, str] = Field(
        default_factory=dict,
        description="Concrete facts the user knows (dates, cities, names, ids)",
    )


class GeneratedScenario(BaseModel):
    """One task variant produced by the LLM."""

    title: str = Field(description="Short label for the variant")
    initial_message: str = Field(description="The user's first message to the assistant")
    goal: str = Field(description="What the user wants to get done")
    persona: GeneratedPersona


class GeneratedScenarios(BaseModel):
    """Structured response expected from the scenario backend."""

    scenarios: list[GeneratedScenario] = Field(default_factory=list)


class ScenarioBackend(Protocol):
    """Protocol for LLM backends that propose scenario variants."""

    async def propose(
        self,
        task: str,
        count: int,
        seed: Optional[int] = None,
        avoid: Optional[list[str]] = None,
    ) -> list[GeneratedScenario]:
        """Propose up to ``count`` variants of ``task``, avoiding listed openers."""
        ...


class OllamaScenarioBackend:
    """Scenario backend on the Ollama SDK with schema-enforced JSON output.

    Requires Ollama to be running at the configured host.
    """

    def __init__(
        self,
        model: str = "llama3.2",
        host: str = "http://localhost:11434",
        temperature: float = 0.9,
        timeout: float = 120.0,
    ):
        self.model = model
        self.host = host
        self.temperature = temperature
        self._client = ollama.AsyncClient(host=host, timeout=timeout)

    @property
    def model_id(self) -> str:
        return f"ollama/{self.model}"

    async def propose(
        self,
        task: str,
        count: int,
        seed: Optional[int] = None,
        avoid: Optional[list[str]] = None,
    ) -> list[GeneratedScenario]:
        options: dict = {"temperature": self.temperature}
        if seed is not None:
            options["seed"] = seed

        try:
            response = await self._client.generate(
                model=self.model,
                prompt=build_scenario_prompt(task, count, avoid or []),
                format=GeneratedScenarios.model_json_schema(),
                options=options,
            )
        except ollama.ResponseError as e:
            logger.error(f"Ollama request failed: {e}")
            raise ScenarioGenerationError(f"Ollama request failed: {e}") from e
        except (ConnectionError, OSError) as e:
            logger.error(f"Failed to connect to Ollama at {self.host}: {e}")
            raise ScenarioGenerationError(
                f"Cannot connect to Ollama at {self.host}. "
                "Is Ollama running? Start it with: ollama serve"
            ) from e

        try:
            return GeneratedScenarios.model_validate_json(
                response.get("response", "")
            ).scenarios
        except ValidationError as e:
            logger.warning(f"Structured output failed: {e}")
            return []

    def __repr__(self) -> str:
        return f"OllamaScenarioBackend(model={self.model!r}, host={self.host!r})"


def build_scenario_prompt(task: str, count: int, avoid: list[str]) -> str:
    """Prompt asking for ``count`` distinct, concrete variants of a task."""
    lines = [
        "You design test scenarios for an AI assistant.",
        f"Task the assistant must handle: {task}",
        "",
        f"Write {count} distinct scenarios. Each one is a different user with a "
        "different concrete request (different names, dates, places, amounts, "
        "constraints, and level of detail). Vary difficulty: include users who "
        "omit information, change their mind, or make unusual requests.",
        "For each scenario give the user's first message, their goal, and a "
        "persona with the concrete details they know.",
    ]
    if avoid:
        lines.append("")
        lines.append("Do not repeat these opening messages:")
        lines.extend(f"- {message}" for message in avoid)
    lines.append("")
    lines.append("Respond with JSON only.")
    return "\n".join(lines)


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().casefold()


class ScenarioGenerator:
    """Produces ``count`` distinct scenarios for a task description."""

    def __init__(
        self,
        backend: Optional[ScenarioBackend] = None,
        max_attempts: int = 3,
        max_turns: int = 10,
    ):
        """Initialize the generator.

        Args:
            backend: LLM backend (defaults to OllamaScenarioBackend)
            max_attempts: Backend calls allowed to reach ``count`` distinct variants
            max_turns: Turn budget given to each generated scenario
        """
        self._backend = backend or OllamaScenarioBackend()
        self._max_attempts = max_attempts
        self._max_turns = max_turns

    async def generate(
        self,
        task: str,
        count: int,
        seed: Optional[int] = None,
    ) -> list[GenerativeScenario]:
        """Generate distinct scenario variants.

        Args:
            task: Natural-language task description
            count: Number of distinct scenarios required
            seed: Optional seed forwarded to the backend

        Raises:
            ConfigurationError: If count < 1
            ScenarioGenerationError: If fewer than ``count`` distinct variants
                could be produced within ``max_attempts`` backend calls
        """
        if count < 1:
            raise ConfigurationError(f"Scenario count must be at least 1, got {count}")

        accepted: list[GeneratedScenario] = []
        seen: set[str] = set()

        for attempt in range(self._max_attempts):
            missing = count - len(accepted)
            if missing <= 0:
                break
            attempt_seed = None if seed is None else seed + attempt
            proposals = await self._backend.propose(
                task,
                missing,
                seed=attempt_seed,
                avoid=[s.initial_message for s in accepted],
            )
            for proposal in proposals:
                key = _normalize(proposal.initial_message)
                if not key or key in seen:
                    logger.warning(f"Dropping duplicate scenario: {proposal.title!r}")
                    continue
                seen.add(key)
                accepted.append(proposal)
                if len(accepted) == count:
                    break

        if len(accepted) < count:
            raise ScenarioGenerationError(
                f"Generated {len(accepted)} distinct scenarios for task {task!r}, "
                f"{count} required"
            )

        logger.info(f"Generated {count} scenarios for task {task!r}")
        return [
            self._to_scenario(task, index, proposal)
            for index, proposal in enumerate(accepted)
        ]

    def _to_scenario(
        self, task: str, index: int, proposal: GeneratedScenario
    ) -> GenerativeScenario:
        scenario_id = f"scenario-{index + 1:02d}"
        generated = proposal.persona
        persona = Persona(
            persona_id=f"{scenario_id}-persona",
            name=generated.name,
            background=generated.background,
            situation=generated.situation,
            behavior=Behavior(
                communication_style=generated.communication_style,
                technical_level=generated.technical_level,
            ),
            goals=[Goal(description=proposal.goal)],
            context=dict(generated.details),
        )
        return GenerativeScenario(
            scenario_id=scenario_id,
            name=proposal.title,
            task=task,
            persona=persona,
            initial_message=proposal.initial_message,
            max_turns=self._max_turns,
        )


class ScenarioSet(BaseModel):
    """A saved set of scenarios, reusable across test runs."""

    task: str
    seed: Optional[int] = None
    scenarios: list[Scenario] = Field(default_factory=list)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ScenarioSet":
        return cls.model_validate(json.loads(Path(path).read_text()))
