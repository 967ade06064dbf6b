"""Persistence backends for ledger snapshots."""

from datetime import datetime, timezone

import pytest

from rapport.ledger import EventLedger
from rapport.persistence import (
    InMemoryPersistence,
    JsonPersistence,
    PostgresPersistence,
    validate_save_key,
)


T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def populated_ledger() -> EventLedger:
    ledger = EventLedger(clock=lambda: T0)
    ledger.record_cooperation("morthos", "al", "control-room", "Rerouted power together")
    ledger.record_betrayal("al", "ayla", "archive", "Hid the archive key")
    ledger.record_rescue("ayla", "morthos", "lab", "Pulled Morthos out of the vent")
    return ledger


def assert_same_aggregates(original: EventLedger, restored: EventLedger) -> None:
    assert restored.run_id == original.run_id
    assert [e.id for e in restored.events] == [e.id for e in original.events]
    for record in original.relationships:
        copy = restored.get_relationship(record.agent_a, record.agent_b)
        assert copy.overall_trust_level == pytest.approx(record.overall_trust_level)
        assert copy.cooperation_count == record.cooperation_count
        assert copy.betrayal_count == record.betrayal_count
        assert copy.relationship_trajectory == record.relationship_trajectory
        assert [e.id for e in copy.significant_events] == [e.id for e in record.significant_events]


@pytest.mark.asyncio
async def test_in_memory_round_trip():
    persistence = InMemoryPersistence()
    await persistence.initialize()
    ledger = populated_ledger()

    await persistence.save_snapshot("slot-1", ledger.export_snapshot())
    payload = await persistence.load_snapshot("slot-1")

    restored = EventLedger()
    assert restored.import_snapshot(payload)
    assert_same_aggregates(ledger, restored)


@pytest.mark.asyncio
async def test_in_memory_loads_are_copies():
    persistence = InMemoryPersistence()
    await persistence.save_snapshot("slot-1", populated_ledger().export_snapshot())

    payload = await persistence.load_snapshot("slot-1")
    payload["events"].clear()

    assert len((await persistence.load_snapshot("slot-1"))["events"]) == 3


@pytest.mark.asyncio
async def test_in_memory_list_and_delete():
    persistence = InMemoryPersistence()
    snapshot = populated_ledger().export_snapshot()
    await persistence.save_snapshot("b", snapshot)
    await persistence.save_snapshot("a", snapshot)

    assert await persistence.list_saves() == ["a", "b"]
    assert await persistence.delete_snapshot("a") is True
    assert await persistence.delete_snapshot("a") is False
    assert await persistence.load_snapshot("a") is None


@pytest.mark.asyncio
async def test_json_round_trip(tmp_path):
    persistence = JsonPersistence(tmp_path / "saves")
    await persistence.initialize()
    ledger = populated_ledger()

    await persistence.save_snapshot("autosave", ledger.export_snapshot())

    saved = tmp_path / "saves" / "autosave.json"
    assert saved.exists()
    assert saved.read_text(encoding="utf-8").startswith("{\n  ")

    restored = EventLedger()
    assert restored.import_snapshot(await persistence.load_snapshot("autosave"))
    assert_same_aggregates(ledger, restored)


@pytest.mark.asyncio
async def test_json_overwrite_list_and_delete(tmp_path):
    persistence = JsonPersistence(tmp_path)
    await persistence.initialize()
    ledger = populated_ledger()

    await persistence.save_snapshot("slot-2", ledger.export_snapshot())
    await persistence.save_snapshot("slot-1", ledger.export_snapshot())
    ledger.record_cooperation("morthos", "al", "lab", "Calibrated the lens")
    await persistence.save_snapshot("slot-1", ledger.export_snapshot())

    assert await persistence.list_saves() == ["slot-1", "slot-2"]
    assert len((await persistence.load_snapshot("slot-1"))["events"]) == 4
    assert await persistence.delete_snapshot("slot-2") is True
    assert await persistence.delete_snapshot("slot-2") is False
    assert await persistence.load_snapshot("slot-2") is None


@pytest.mark.asyncio
async def test_json_missing_directory_lists_nothing(tmp_path):
    persistence = JsonPersistence(tmp_path / "never-created")
    assert await persistence.list_saves() == []
    assert await persistence.load_snapshot("autosave") is None


@pytest.mark.parametrize("key", ["", "../escape", ".hidden", "slot 1", "a/b"])
def test_invalid_save_keys(key):
    with pytest.raises(ValueError):
        validate_save_key(key)


@pytest.mark.asyncio
async def test_json_rejects_invalid_key(tmp_path):
    persistence = JsonPersistence(tmp_path)
    with pytest.raises(ValueError):
        await persistence.save_snapshot("../outside", populated_ledger().export_snapshot())


def test_valid_save_key_is_returned():
    assert validate_save_key("run_2.autosave-1") == "run_2.autosave-1"


@pytest.mark.asyncio
async def test_postgres_requires_initialize():
    persistence = PostgresPersistence("postgresql://localhost/unused")

    with pytest.raises(AssertionError):
        await persistence.load_snapshot("autosave")

    # close() before initialize() is a no-op
    await persistence.close()
