"""Tests for chronicle_weaver.saves — slot list persistence and capacity degradation."""

import json
import logging

import pytest

from chronicle_weaver.models import HistoryEntry, NarrativeState, SaveSlot
from chronicle_weaver.saves import SAVES_KEY, SaveStore
from chronicle_weaver.store import LocalStore

IMAGE = "data:image/png;base64," + "A" * 2000


def _slot(slot_id: str, images: int = 0, text: str = "Once upon a time") -> SaveSlot:
    history = [
        HistoryEntry(text=f"{text} {i}", choice=f"choice {i}", image_url=IMAGE)
        for i in range(images)
    ]
    return SaveSlot(
        id=slot_id,
        name=f"Fantasy - {slot_id}",
        genre="Fantasy",
        last_updated=1_700_000_000_000,
        game_state=NarrativeState(story_text=text, inventory=["torch"]),
        history=history,
    )


def _stored(store: LocalStore) -> list[dict]:
    return json.loads(store.get_item(SAVES_KEY))


@pytest.fixture
def saves(store: LocalStore) -> SaveStore:
    return SaveStore(store)


class TestBasics:
    def test_empty(self, saves: SaveStore) -> None:
        assert saves.list() == []
        assert saves.get("x") is None

    def test_upsert_prepends_new(self, saves: SaveStore) -> None:
        saves.upsert(_slot("a"))
        saves.upsert(_slot("b"))
        assert [s.id for s in saves.list()] == ["b", "a"]

    def test_upsert_replaces_in_place(self, saves: SaveStore) -> None:
        saves.upsert(_slot("a"))
        saves.upsert(_slot("b"))
        saves.upsert(_slot("a", text="Later"))
        slots = saves.list()
        assert [s.id for s in slots] == ["b", "a"]
        assert slots[1].game_state.story_text == "Later"

    def test_upsert_applies_lean_history(self, saves: SaveStore, store) -> None:
        saves.upsert(_slot("a", images=3))
        stored = _stored(store)[0]["history"]
        assert stored[0]["imageUrl"] == IMAGE
        assert "imageUrl" not in stored[1]
        assert "imageUrl" not in stored[2]

    def test_written_in_camel_case(self, saves: SaveStore, store) -> None:
        saves.upsert(_slot("a"))
        stored = _stored(store)[0]
        assert stored["gameState"]["storyText"] == "Once upon a time"
        assert stored["lastUpdated"] == 1_700_000_000_000

    def test_delete(self, saves: SaveStore, store) -> None:
        saves.upsert(_slot("a"))
        saves.upsert(_slot("b"))
        assert saves.delete("a") is True
        assert saves.delete("a") is False
        assert [s["id"] for s in _stored(store)] == ["b"]

    def test_reload_from_disk(self, saves: SaveStore, store) -> None:
        saves.upsert(_slot("a", images=1))
        fresh = SaveStore(store)
        assert fresh.get("a") == saves.get("a")

    def test_corrupt_data_reads_as_empty(self, store, caplog) -> None:
        store.set_item(SAVES_KEY, "not json")
        with caplog.at_level(logging.ERROR):
            assert SaveStore(store).list() == []
        assert "Failed to parse saves" in caplog.text

    def test_invalid_slot_reads_as_empty(self, store) -> None:
        store.set_item(SAVES_KEY, json.dumps([{"id": "missing-fields"}]))
        assert SaveStore(store).list() == []


class TestCapacity:
    def _capacity_for(self, slots: list[SaveSlot]) -> int:
        """Room for the slots once stripped of images, but not with them."""
        stripped = json.dumps({SAVES_KEY: json.dumps([s.without_images().to_json_dict() for s in slots])})
        return len(stripped.encode("utf-8")) + 10

    def test_overflow_strips_images_from_every_slot(self, tmp_path, caplog) -> None:
        slots = [_slot("a", images=1), _slot("b", images=1)]
        store = LocalStore(tmp_path, capacity=self._capacity_for(slots))
        saves = SaveStore(store)

        with caplog.at_level(logging.WARNING):
            assert saves.write(slots) is True
        assert "Storage quota exceeded" in caplog.text

        stored = _stored(store)
        assert all("imageUrl" not in h for s in stored for h in s["history"])
        restored = [SaveSlot.model_validate(s) for s in stored]
        assert [s.game_state for s in restored] == [s.game_state for s in slots]
        assert [h.text for h in restored[0].history] == [h.text for h in slots[0].history]

    def test_overflow_leaves_caller_slots_untouched(self, tmp_path) -> None:
        slots = [_slot("a", images=1)]
        saves = SaveStore(LocalStore(tmp_path, capacity=self._capacity_for(slots)))
        saves.write(slots)
        assert slots[0].history[0].image_url == IMAGE

    def test_retry_failure_returns_false(self, tmp_path, caplog) -> None:
        store = LocalStore(tmp_path, capacity=20)
        saves = SaveStore(store)
        with caplog.at_level(logging.WARNING):
            assert saves.write([_slot("a", images=1)]) is False
        assert store.get_item(SAVES_KEY) is None
        assert "not persisted" in caplog.text

    def test_dropped_write_keeps_memory_cache(self, tmp_path) -> None:
        saves = SaveStore(LocalStore(tmp_path, capacity=20))
        saves.upsert(_slot("a"))
        assert saves.get("a") is not None

    def test_fits_without_degrading(self, saves: SaveStore, store) -> None:
        assert saves.write([_slot("a", images=1)]) is True
        assert _stored(store)[0]["history"][0]["imageUrl"] == IMAGE
