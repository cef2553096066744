"""
Shared pytest fixtures for Multiverse tests.

These fixtures provide a small flight-booking domain (search + book tools
wrapped with effects and a seat invariant), run contexts and a fake
scenario backend, so no test needs a network or an LLM.
"""

import itertools
from types import SimpleNamespace
from typing import Optional

import pytest
from pydantic import BaseModel

from multiverse.core.effects import Effect
from multiverse.core.invariants import Invariant
from multiverse.core.world import WorldStore
from multiverse.harness.context import RunContext
from multiverse.harness.scenarios import GeneratedPersona, GeneratedScenario
from multiverse.harness.user_simulator.scenario import GenerativeScenario
from multiverse.tools.wrapper import wrap


# =============================================================================
# Flight booking domain
# =============================================================================

class Flight(BaseModel):
    id: str
    origin: str
    destination: str
    seats_available: int


class SearchResult(BaseModel):
    flights: list[Flight]


class Booking(BaseModel):
    booking_id: str
    flight_id: str
    passenger_name: str


SEATS_NON_NEGATIVE = Invariant(
    collection="flights",
    field="seats_available",
    condition="gte",
    value=0,
    description="A flight cannot be overbooked",
)


def search_effects(result: SearchResult, world) -> list[Effect]:
    """Record flights the world does not know yet."""
    return [
        Effect.create("flights", flight.id, flight.model_dump())
        for flight in result.flights
        if world.get_entity("flights", flight.id) is None
    ]


def booking_effects(booking: Booking, world) -> list[Effect]:
    """Create the booking and take one seat on the flight."""
    effects = [Effect.create("bookings", booking.booking_id, booking.model_dump())]
    flight = world.get_entity("flights", booking.flight_id)
    if flight is not None:
        effects.append(Effect.update(
            "flights",
            booking.flight_id,
            {"seats_available": flight.get("seats_available", 0) - 1},
        ))
    return effects


def make_flight_tools(seats: int = 1):
    """Build wrapped search/book tools; every booking gets a fresh id."""
    booking_ids = itertools.count(1)

    async def search_flights(origin: str, destination: str) -> dict:
        """Search flights between two airports."""
        return {
            "flights": [
                {"id": "F1", "origin": origin, "destination": destination, "seats_available": seats},
            ]
        }

    async def book_flight(flight_id: str, passenger_name: str) -> dict:
        """Book one seat on a flight."""
        return {
            "booking_id": f"B{next(booking_ids)}",
            "flight_id": flight_id,
            "passenger_name": passenger_name,
        }

    return SimpleNamespace(
        search=wrap(search_flights, output=SearchResult, effects=search_effects),
        book=wrap(
            book_flight,
            output=Booking,
            effects=booking_effects,
            invariants=[SEATS_NON_NEGATIVE],
        ),
    )


@pytest.fixture
def flight_tools():
    """Wrapped flight tools with one seat on F1."""
    return make_flight_tools(seats=1)


@pytest.fixture
def store():
    """An empty world store."""
    return WorldStore()


@pytest.fixture
def flight_store():
    """A store holding flight F1 with one seat left."""
    store = WorldStore()
    store.create_entity(
        "flights",
        "F1",
        {"id": "F1", "origin": "SFO", "destination": "BOS", "seats_available": 1},
    )
    return store


@pytest.fixture
def run_context(store):
    """A run context over the empty store."""
    return RunContext(run_id="run-001", scenario_id="scenario-01", world=store)


# =============================================================================
# Scenarios
# =============================================================================

def make_scenarios(count: int, max_turns: int = 10) -> list[GenerativeScenario]:
    return [
        GenerativeScenario(
            scenario_id=f"scenario-{i + 1:02d}",
            name=f"Variant {i + 1}",
            task="Help the user book a flight",
            initial_message=f"I need a flight from SFO to BOS for passenger {i + 1}",
            max_turns=max_turns,
        )
        for i in range(count)
    ]


def make_generated(title: str, message: str) -> GeneratedScenario:
    return GeneratedScenario(
        title=title,
        initial_message=message,
        goal="Book a flight",
        persona=GeneratedPersona(name="Sam", details={"origin": "SFO"}),
    )


class FakeScenarioBackend:
    """Scenario backend returning queued batches instead of calling an LLM."""

    def __init__(self, batches: list[list[GeneratedScenario]]):
        self._batches = list(batches)
        self.calls: list[dict] = []

    async def propose(
        self,
        task: str,
        count: int,
        seed: Optional[int] = None,
        avoid: Optional[list[str]] = None,
    ) -> list[GeneratedScenario]:
        self.calls.append({"task": task, "count": count, "seed": seed, "avoid": list(avoid or [])})
        if not self._batches:
            return []
        return self._batches.pop(0)


@pytest.fixture
def scenarios():
    """Five distinct generative scenarios."""
    return make_scenarios(5)


@pytest.fixture
def distinct_backend():
    """A backend that proposes five distinct variants in one call."""
    return FakeScenarioBackend([
        [make_generated(f"Variant {i}", f"Book me a flight to city {i}") for i in range(5)]
    ])


@pytest.fixture
def scenario_factory():
    """Build N generative scenarios."""
    return make_scenarios


@pytest.fixture
def flight_tools_factory():
    """Build wrapped flight tools with a given seat count."""
    return make_flight_tools


@pytest.fixture
def generated_factory():
    """Build one LLM-proposed scenario variant."""
    return make_generated


@pytest.fixture
def backend_factory():
    """Build a fake scenario backend from queued batches."""
    return FakeScenarioBackend
