"""Tests for the world store and its read-only views."""

import pytest
from pydantic import BaseModel

from multiverse.core.world import CollectionView, WorldSnapshot, WorldStore, WorldView
from multiverse.exceptions import (
    DuplicateEntityError,
    EntityNotFoundError,
    EntitySchemaError,
)


class TestCreateEntity:
    """Tests for WorldStore.create_entity."""

    def test_create_entity(self, store):
        """Created entity is readable and starts at version 1."""
        store.create_entity("flights", "F1", {"seats_available": 3})

        entity = store.get_entity("flights", "F1")
        assert entity is not None
        assert entity.data == {"seats_available": 3}
        assert entity.version == 1
        assert store.version == 1

    def test_duplicate_create_is_rejected(self, store):
        """Creating an existing id fails instead of overwriting."""
        store.create_entity("flights", "F1", {"seats_available": 3})

        with pytest.raises(DuplicateEntityError) as exc_info:
            store.create_entity("flights", "F1", {"seats_available": 9})

        assert exc_info.value.collection == "flights"
        assert exc_info.value.entity_id == "F1"
        assert store.get_entity("flights", "F1").data == {"seats_available": 3}

    def test_same_id_in_different_collections(self, store):
        """Ids are unique per collection only."""
        store.create_entity("flights", "X1", {})
        store.create_entity("bookings", "X1", {})

        assert store.get_collection("flights").size == 1
        assert store.get_collection("bookings").size == 1

    def test_payload_is_copied(self, store):
        """Mutating the caller's dict after create does not change the store."""
        payload = {"passengers": ["Ada"]}
        store.create_entity("bookings", "B1", payload)
        payload["passengers"].append("Grace")

        assert store.get_entity("bookings", "B1").data == {"passengers": ["Ada"]}


class TestUpdateEntity:
    """Tests for WorldStore.update_entity."""

    def test_update_merges_fields(self, flight_store):
        """Update merges field-by-field and bumps the entity version."""
        flight_store.update_entity("flights", "F1", {"seats_available": 0})

        entity = flight_store.get_entity("flights", "F1")
        assert entity.data["seats_available"] == 0
        assert entity.data["origin"] == "SFO"
        assert entity.version == 2

    def test_update_missing_entity(self, store):
        """Update never creates an entity."""
        with pytest.raises(EntityNotFoundError):
            store.update_entity("flights", "F9", {"seats_available": 1})

        assert store.get_entity("flights", "F9") is None
        assert store.version == 0

    def test_update_does_not_resurrect(self, flight_store):
        """Update after delete fails."""
        flight_store.delete_entity("flights", "F1")

        with pytest.raises(EntityNotFoundError):
            flight_store.update_entity("flights", "F1", {"seats_available": 1})


class TestDeleteEntity:
    """Tests for WorldStore.delete_entity."""

    def test_delete_entity(self, flight_store):
        flight_store.delete_entity("flights", "F1")

        assert flight_store.get_entity("flights", "F1") is None
        assert flight_store.get_collection("flights").size == 0

    def test_delete_missing_entity(self, store):
        """Delete on an absent id raises."""
        with pytest.raises(EntityNotFoundError):
            store.delete_entity("flights", "F1")


class TestReads:
    """Tests for read isolation."""

    def test_get_entity_absent(self, store):
        assert store.get_entity("flights", "F1") is None

    def test_returned_entity_is_a_copy(self, flight_store):
        """Mutating a returned entity never changes the store."""
        entity = flight_store.get_entity("flights", "F1")
        entity.data["seats_available"] = 100

        assert flight_store.get_entity("flights", "F1").data["seats_available"] == 1

    def test_get_collection_unknown(self, store):
        """Unknown collections read as empty."""
        view = store.get_collection("nothing")
        assert view.size == 0
        assert list(view) == []

    def test_repeated_reads_are_equal(self, flight_store):
        """Two reads with no effect in between are equal."""
        assert flight_store.get_collection("flights") == flight_store.get_collection("flights")

    def test_collection_view_is_a_snapshot(self, flight_store):
        """A view taken before a change does not see the change."""
        before = flight_store.get_collection("flights")
        flight_store.create_entity("flights", "F2", {"seats_available": 4})

        assert before.size == 1
        assert "F2" not in before
        assert flight_store.get_collection("flights").size == 2

    def test_collection_view_api(self, flight_store):
        view = flight_store.get_collection("flights")

        assert isinstance(view, CollectionView)
        assert len(view) == 1
        assert "F1" in view
        assert view.ids() == ["F1"]
        assert view.get("F1").data["destination"] == "BOS"
        assert view.get("F2") is None


class TestTransaction:
    """Tests for WorldStore.transaction."""

    def test_transaction_restores_on_error(self, flight_store):
        """A failing block leaves the store exactly as before."""
        with pytest.raises(RuntimeError):
            with flight_store.transaction():
                flight_store.update_entity("flights", "F1", {"seats_available": 0})
                flight_store.create_entity("bookings", "B1", {})
                raise RuntimeError("boom")

        assert flight_store.get_entity("flights", "F1").data["seats_available"] == 1
        assert flight_store.get_entity("bookings", "B1") is None
        assert flight_store.version == 1

    def test_transaction_keeps_changes_on_success(self, flight_store):
        with flight_store.transaction():
            flight_store.create_entity("bookings", "B1", {})

        assert flight_store.get_entity("bookings", "B1") is not None


class TestSnapshot:
    """Tests for WorldSnapshot."""

    def test_snapshot_is_independent(self, flight_store):
        snapshot = flight_store.snapshot()
        flight_store.delete_entity("flights", "F1")

        assert isinstance(snapshot, WorldSnapshot)
        assert snapshot.get_entity("flights", "F1") is not None
        assert snapshot.collection_names() == ["flights"]

    def test_snapshot_serializes(self, flight_store):
        """Snapshots round-trip through JSON."""
        snapshot = flight_store.snapshot()
        restored = WorldSnapshot.model_validate_json(snapshot.model_dump_json())

        assert restored.get_collection("flights") == snapshot.get_collection("flights")


class TestWorldView:
    """Tests for the read-only WorldView."""

    def test_view_reflects_live_store(self, store):
        view = store.view()
        store.create_entity("flights", "F1", {"seats_available": 1})

        assert isinstance(view, WorldView)
        assert view.get_collection("flights").size == 1
        assert view.version == 1

    def test_view_has_no_mutators(self, store):
        view = store.view()
        for name in ("create_entity", "update_entity", "delete_entity", "restore"):
            assert not hasattr(view, name)


class TestSchemas:
    """Tests for per-collection payload schemas."""

    class FlightSchema(BaseModel):
        seats_available: int

    def test_valid_payload(self):
        store = WorldStore(schemas={"flights": self.FlightSchema})
        store.create_entity("flights", "F1", {"seats_available": 2})

        assert store.get_collection("flights").size == 1

    def test_invalid_create(self):
        store = WorldStore(schemas={"flights": self.FlightSchema})

        with pytest.raises(EntitySchemaError) as exc_info:
            store.create_entity("flights", "F1", {"seats_available": "many"})

        assert "seats_available" in exc_info.value.errors[0]
        assert store.get_entity("flights", "F1") is None

    def test_rejected_create_leaves_no_collection(self):
        store = WorldStore(schemas={"flights": self.FlightSchema})

        with pytest.raises(EntitySchemaError):
            store.create_entity("flights", "F1", {"seats_available": "many"})

        assert store.collection_names() == []
        assert store.snapshot().collections == {}
        assert store.version == 0

    def test_invalid_update_leaves_entity(self):
        store = WorldStore(schemas={"flights": self.FlightSchema})
        store.create_entity("flights", "F1", {"seats_available": 2})

        with pytest.raises(EntitySchemaError):
            store.update_entity("flights", "F1", {"seats_available": None})

        assert store.get_entity("flights", "F1").data == {"seats_available": 2}
