"""Tests for the trial scheduler."""

import asyncio
import time

import pytest
from pydantic import BaseModel

from multiverse.core.effects import Effect
from multiverse.core.invariants import Invariant
from multiverse.core.types import RunStatus
from multiverse.exceptions import (
    ConfigurationError,
    InvariantViolationError,
    SchedulerAbortedError,
)
from multiverse.harness.context import RunContext
from multiverse.harness.scheduler import Progress, TrialScheduler
from multiverse.harness.user_simulator.scenario import ScriptedScenario, ScriptedTurn
from multiverse.tools import wrap


def booked_once(world, trace) -> bool:
    flight = world.get_entity("flights", "F1")
    return (
        world.get_collection("bookings").size == 1
        and flight is not None
        and flight.data["seats_available"] == 0
    )


SEATS = Invariant(collection="flights", field="seats_available", condition="gte", value=0)


class FlightSeats(BaseModel):
    id: str
    seats_available: int


def flight_seat_effects(flight: FlightSeats, world) -> list[Effect]:
    return [Effect.create("flights", flight.id, flight.model_dump())]


def register_flight_tool():
    """A tool that writes flights without declaring any invariant."""

    async def register_flight(flight_id: str, seats: int) -> dict:
        """Register a flight with a seat count."""
        return {"id": flight_id, "seats_available": seats}

    return wrap(register_flight, output=FlightSeats, effects=flight_seat_effects)


def booking_agent(tools):
    """Agent that searches, then books F1 for the passenger."""

    async def agent(ctx):
        await tools.search(origin="SFO", destination="BOS")
        await asyncio.sleep(0)
        booking = await tools.book(flight_id="F1", passenger_name=ctx.scenario_id)
        return f"Booked {booking['booking_id']}"

    return agent


class TestTrialScheduler:
    """Tests for TrialScheduler.run()."""

    @pytest.mark.asyncio
    async def test_runs_every_trial_in_isolation(self, flight_tools, scenarios):
        """Twenty runs of a one-seat flight all succeed in their own worlds."""
        scheduler = TrialScheduler(max_concurrency=4)

        results = await scheduler.run(
            agent=booking_agent(flight_tools),
            scenarios=scenarios,
            trials_per_scenario=4,
            success=booked_once,
        )

        assert len(results) == 20
        assert all(r.status == RunStatus.SUCCEEDED for r in results)
        assert len({r.run_id for r in results}) == 20
        assert [(r.scenario_id, r.trial_index) for r in results[:4]] == [
            ("scenario-01", 0), ("scenario-01", 1), ("scenario-01", 2), ("scenario-01", 3),
        ]

    @pytest.mark.asyncio
    async def test_result_contents(self, flight_tools, scenario_factory):
        results = await TrialScheduler().run(
            agent=booking_agent(flight_tools),
            scenarios=scenario_factory(1),
            trials_per_scenario=1,
            success=booked_once,
        )

        result = results[0]
        assert result.verdict is True
        assert result.trace.final_response.startswith("Booked B")
        assert [c.tool_name for c in result.trace.tool_calls] == ["search_flights", "book_flight"]
        assert result.world.get_entity("flights", "F1").data["seats_available"] == 0
        assert result.conversation["termination_reason"] == "single_turn"
        assert result.ended_at >= result.started_at

    @pytest.mark.asyncio
    async def test_failed_verdict(self, scenario_factory):
        async def agent(ctx):
            return "I can't help with that."

        results = await TrialScheduler().run(
            agent=agent,
            scenarios=scenario_factory(2),
            trials_per_scenario=2,
            success=booked_once,
        )

        assert [r.status for r in results] == [RunStatus.FAILED] * 4
        assert all(r.verdict is False for r in results)

    @pytest.mark.asyncio
    async def test_async_predicate(self, scenario_factory):
        async def agent(ctx):
            return "ok"

        async def success(world, trace):
            return trace.final_response == "ok"

        results = await TrialScheduler().run(agent, scenario_factory(1), 2, success)

        assert all(r.succeeded for r in results)

    @pytest.mark.asyncio
    async def test_invariant_violation_errors_run_even_if_swallowed(self, flight_tools, scenario_factory):
        async def agent(ctx):
            await flight_tools.search(origin="SFO", destination="BOS")
            await flight_tools.book(flight_id="F1", passenger_name="Ada")
            try:
                await flight_tools.book(flight_id="F1", passenger_name="Grace")
            except Exception:
                return "Booked one of you."
            return "Booked both."

        results = await TrialScheduler().run(
            agent, scenario_factory(1), 1, success=lambda world, trace: True
        )

        result = results[0]
        assert result.status == RunStatus.ERRORED
        assert result.error_type == "InvariantViolationError"
        assert result.error_details["entity_id"] == "F1"
        assert result.verdict is None
        assert result.world.get_entity("flights", "F1").data["seats_available"] == 0

    @pytest.mark.asyncio
    async def test_agent_exception_errors_run(self, scenario_factory):
        async def agent(ctx):
            raise ValueError("model unavailable")

        results = await TrialScheduler().run(agent, scenario_factory(1), 1, lambda w, t: True)

        assert results[0].status == RunStatus.ERRORED
        assert results[0].error_type == "AgentExecutionError"

    @pytest.mark.asyncio
    async def test_predicate_exception_errors_run(self, scenario_factory):
        async def agent(ctx):
            return "ok"

        def success(world, trace):
            return world.get_entity("bookings", "B1").data["flight_id"] == "F1"

        results = await TrialScheduler().run(agent, scenario_factory(1), 1, success)

        assert results[0].status == RunStatus.ERRORED
        assert results[0].error_type == "AttributeError"

    @pytest.mark.asyncio
    async def test_timeout(self, scenario_factory):
        async def agent(ctx):
            await asyncio.sleep(5)
            return "too late"

        results = await TrialScheduler(run_timeout=0.05).run(
            agent, scenario_factory(1), 2, lambda w, t: True
        )

        assert [r.status for r in results] == [RunStatus.ERRORED] * 2
        assert results[0].error_type == "RunTimeoutError"
        assert results[0].error_details["timeout"] == 0.05

    @pytest.mark.asyncio
    async def test_timed_out_sync_agent_cannot_touch_result(self, flight_tools, scenario_factory):
        """A worker thread that outlives its run gets the timeout error on its next tool call."""
        late_errors = []

        def agent(ctx):
            time.sleep(0.3)
            try:
                flight_tools.search.call_sync(origin="SFO", destination="BOS")
            except Exception as e:
                late_errors.append(type(e).__name__)
            return "done"

        results = await TrialScheduler(run_timeout=0.1).run(
            agent, scenario_factory(1), 1, lambda w, t: True
        )
        result = results[0]
        steps_at_timeout = len(result.trace.steps)

        # Let the worker thread wake up and attempt its call
        await asyncio.sleep(0.5)

        assert result.status == RunStatus.ERRORED
        assert result.error_type == "RunTimeoutError"
        assert late_errors == ["RunTimeoutError"]
        assert len(result.trace.steps) == steps_at_timeout
        assert result.trace.tool_calls == []
        assert result.world.get_entity("flights", "F1") is None

    @pytest.mark.asyncio
    async def test_declared_tool_invariants_guard_whole_run(self, flight_tools, scenario_factory):
        """Invariants of tools passed up front apply before those tools are called."""
        register = register_flight_tool()

        async def agent(ctx):
            try:
                await register(flight_id="F1", seats=-1)
            except InvariantViolationError:
                return "Could not register the flight."
            return "Registered."

        results = await TrialScheduler().run(
            agent,
            scenario_factory(1),
            1,
            lambda w, t: True,
            tools=[register, flight_tools.search, flight_tools.book],
        )

        result = results[0]
        assert result.status == RunStatus.ERRORED
        assert result.error_type == "InvariantViolationError"
        assert result.error_details["observed"] == -1
        assert result.trace.tool_calls[0].tool_name == "register_flight"
        assert result.world.get_entity("flights", "F1") is None

    @pytest.mark.asyncio
    async def test_final_world_checked_against_registered_invariants(self, scenario_factory):
        """A violation committed before an invariant was registered still errors the run."""
        register = register_flight_tool()

        async def reserve_seat(flight_id: str) -> dict:
            """Reserve a seat on a flight."""
            raise RuntimeError("reservation service unavailable")

        reserve = wrap(reserve_seat, output=FlightSeats, invariants=[SEATS])

        async def agent(ctx):
            await register(flight_id="F1", seats=-1)
            try:
                await reserve(flight_id="F1")
            except RuntimeError:
                return "Please try again later."
            return "Reserved."

        results = await TrialScheduler().run(
            agent, scenario_factory(1), 1, lambda w, t: True
        )

        result = results[0]
        assert result.status == RunStatus.ERRORED
        assert result.error_type == "InvariantViolationError"
        assert result.error_details["entity_id"] == "F1"
        assert result.verdict is None

    @pytest.mark.asyncio
    async def test_each_run_is_active_in_agent(self, scenario_factory):
        seen = []

        def agent(ctx):
            run = RunContext.current()
            seen.append((run.run_id, ctx.run_id))
            return "ok"

        await TrialScheduler(max_concurrency=2).run(agent, scenario_factory(2), 2, lambda w, t: True)

        assert len(seen) == 4
        assert all(active == given for active, given in seen)

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, scenario_factory):
        running = 0
        peak = 0

        async def agent(ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return "ok"

        await TrialScheduler(max_concurrency=3).run(agent, scenario_factory(4), 3, lambda w, t: True)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_scripted_scenarios_replay_script(self):
        scenario = ScriptedScenario(
            scenario_id="scripted",
            turns=[
                ScriptedTurn(turn_number=0, user_message="Book F1"),
                ScriptedTurn(turn_number=1, user_message="For Ada"),
            ],
        )
        messages = []

        async def agent(ctx):
            messages.append(ctx.user_message)
            return "ok"

        results = await TrialScheduler().run(agent, [scenario], 1, lambda w, t: True)

        assert messages == ["Book F1", "For Ada"]
        assert results[0].conversation["termination_reason"] == "script_exhausted"

    @pytest.mark.asyncio
    async def test_progress_callback(self, scenario_factory):
        updates: list[Progress] = []

        async def agent(ctx):
            return "ok"

        await TrialScheduler(on_progress=updates.append).run(
            agent, scenario_factory(2), 2, lambda w, t: t.scenario_id == "scenario-01"
        )

        assert [u.completed for u in updates] == [1, 2, 3, 4]
        assert all(u.total == 4 for u in updates)
        assert (updates[-1].succeeded, updates[-1].failed) == (2, 2)
        assert updates[-1].last is not None


class TestConfigurationErrors:
    """Tests for invalid scheduler inputs."""

    def test_invalid_concurrency(self):
        with pytest.raises(ConfigurationError):
            TrialScheduler(max_concurrency=0)

    @pytest.mark.asyncio
    async def test_no_scenarios(self):
        with pytest.raises(ConfigurationError):
            await TrialScheduler().run(lambda ctx: "ok", [], 4, lambda w, t: True)

    @pytest.mark.asyncio
    async def test_no_trials(self, scenarios):
        with pytest.raises(ConfigurationError):
            await TrialScheduler().run(lambda ctx: "ok", scenarios, 0, lambda w, t: True)


class TestCancellation:
    """Tests for TrialScheduler.cancel()."""

    @pytest.mark.asyncio
    async def test_cancel_aborts_test(self, scenario_factory):
        scheduler = TrialScheduler(max_concurrency=1)
        started = []

        async def agent(ctx):
            started.append(ctx.run_id)
            scheduler.cancel()
            await asyncio.sleep(5)
            return "unreachable"

        with pytest.raises(SchedulerAbortedError) as exc_info:
            await scheduler.run(agent, scenario_factory(2), 2, lambda w, t: True)

        results = exc_info.value.results
        assert len(started) == 1
        assert len(results) == 1
        assert results[0].status == RunStatus.ERRORED
        assert results[0].error_type == "SchedulerAbortedError"
        assert scheduler.cancelled
