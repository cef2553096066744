"""Tests for scenario generation."""

import json

import ollama
import pytest

from multiverse.exceptions import ConfigurationError, ScenarioGenerationError
from multiverse.harness.scenarios import (
    GeneratedScenarios,
    OllamaScenarioBackend,
    ScenarioGenerator,
    ScenarioSet,
    build_scenario_prompt,
)
from multiverse.harness.user_simulator.scenario import (
    GenerativeScenario,
    ScriptedScenario,
    ScriptedTurn,
)

TASK = "Help the user book a flight"


class TestScenarioGenerator:
    """Tests for ScenarioGenerator.generate()."""

    @pytest.mark.asyncio
    async def test_generates_requested_count(self, distinct_backend):
        scenarios = await ScenarioGenerator(distinct_backend, max_turns=6).generate(TASK, 5)

        assert [s.scenario_id for s in scenarios] == [
            "scenario-01", "scenario-02", "scenario-03", "scenario-04", "scenario-05",
        ]
        first = scenarios[0]
        assert isinstance(first, GenerativeScenario)
        assert first.task == TASK
        assert first.max_turns == 6
        assert first.initial_message == "Book me a flight to city 0"
        assert first.persona.persona_id == "scenario-01-persona"
        assert first.persona.context == {"origin": "SFO"}
        assert first.persona.goals[0].description == "Book a flight"

    @pytest.mark.asyncio
    async def test_duplicates_are_dropped_and_retried(self, backend_factory, generated_factory):
        backend = backend_factory([
            [
                generated_factory("A", "Book me a flight to Boston"),
                generated_factory("B", "  book me a FLIGHT to   boston "),
                generated_factory("C", "Flight to Denver please"),
            ],
            [generated_factory("D", "I need to get to Austin on Friday")],
        ])

        scenarios = await ScenarioGenerator(backend).generate(TASK, 3, seed=41)

        assert [s.name for s in scenarios] == ["A", "C", "D"]
        assert backend.calls[0]["count"] == 3
        assert backend.calls[0]["seed"] == 41
        assert backend.calls[1]["count"] == 1
        assert backend.calls[1]["seed"] == 42
        assert backend.calls[1]["avoid"] == [
            "Book me a flight to Boston",
            "Flight to Denver please",
        ]

    @pytest.mark.asyncio
    async def test_stops_once_count_reached(self, backend_factory, generated_factory):
        backend = backend_factory([
            [generated_factory(str(i), f"message {i}") for i in range(4)],
        ])

        scenarios = await ScenarioGenerator(backend).generate(TASK, 2)

        assert len(scenarios) == 2
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_not_enough_distinct_scenarios(self, backend_factory, generated_factory):
        same = generated_factory("A", "Book me a flight")
        backend = backend_factory([[same, same], [same], [same]])

        with pytest.raises(ScenarioGenerationError, match="1 distinct scenarios"):
            await ScenarioGenerator(backend, max_attempts=3).generate(TASK, 2)

        assert len(backend.calls) == 3

    @pytest.mark.asyncio
    async def test_invalid_count(self, distinct_backend):
        with pytest.raises(ConfigurationError):
            await ScenarioGenerator(distinct_backend).generate(TASK, 0)
        assert distinct_backend.calls == []


class TestOllamaScenarioBackend:
    """Tests for OllamaScenarioBackend with the SDK client replaced."""

    @pytest.mark.asyncio
    async def test_parses_structured_output(self, monkeypatch, generated_factory):
        backend = OllamaScenarioBackend(model="llama3.2")
        captured = {}
        payload = GeneratedScenarios(scenarios=[generated_factory("A", "Book me a flight")])

        async def fake_generate(**kwargs):
            captured.update(kwargs)
            return {"response": payload.model_dump_json()}

        monkeypatch.setattr(backend._client, "generate", fake_generate)

        proposals = await backend.propose(TASK, 1, seed=3, avoid=["Earlier opener"])

        assert proposals[0].initial_message == "Book me a flight"
        assert captured["model"] == "llama3.2"
        assert captured["options"] == {"temperature": 0.9, "seed": 3}
        assert captured["format"]["title"] == "GeneratedScenarios"
        assert "- Earlier opener" in captured["prompt"]

    @pytest.mark.asyncio
    async def test_malformed_output_yields_nothing(self, monkeypatch):
        backend = OllamaScenarioBackend()

        async def fake_generate(**kwargs):
            return {"response": "not json"}

        monkeypatch.setattr(backend._client, "generate", fake_generate)

        assert await backend.propose(TASK, 3) == []

    @pytest.mark.asyncio
    async def test_response_error(self, monkeypatch):
        backend = OllamaScenarioBackend()

        async def fake_generate(**kwargs):
            raise ollama.ResponseError("model not found", 404)

        monkeypatch.setattr(backend._client, "generate", fake_generate)

        with pytest.raises(ScenarioGenerationError, match="model not found"):
            await backend.propose(TASK, 3)

    @pytest.mark.asyncio
    async def test_connection_error(self, monkeypatch):
        backend = OllamaScenarioBackend(host="http://localhost:9")

        async def fake_generate(**kwargs):
            raise ConnectionError("refused")

        monkeypatch.setattr(backend._client, "generate", fake_generate)

        with pytest.raises(ScenarioGenerationError, match="Is Ollama running"):
            await backend.propose(TASK, 3)


class TestScenarioPrompt:
    """Tests for build_scenario_prompt."""

    def test_prompt_contents(self):
        prompt = build_scenario_prompt(TASK, 5, [])

        assert TASK in prompt
        assert "Write 5 distinct scenarios" in prompt
        assert "Do not repeat" not in prompt


class TestScenarioSet:
    """Tests for saving and loading scenario sets."""

    def test_save_and_load(self, tmp_path, scenario_factory):
        scripted = ScriptedScenario(
            scenario_id="regression-01",
            turns=[ScriptedTurn(turn_number=0, user_message="Book F1 for Ada")],
        )
        scenario_set = ScenarioSet(task=TASK, seed=7, scenarios=[*scenario_factory(2), scripted])

        path = scenario_set.save(tmp_path / "sets" / "flights.json")
        loaded = ScenarioSet.load(path)

        assert json.loads(path.read_text())["seed"] == 7
        assert loaded == scenario_set
        assert isinstance(loaded.scenarios[2], ScriptedScenario)
