"""Save slot persistence.

All slots are stored as one JSON array under CHRONICLE_WEAVER_SAVES_V2 in
the local store, most recently started first. The store has a byte
capacity, and base64 scene images are by far the largest thing in a save,
so writes degrade in two stages:

  1. Normal operation: a slot keeps the image reference of its most
     recent history entry only (applied on every upsert).
  2. On StorageCapacityError: strip every image reference from every slot
     and retry once. If that fails too, the write is dropped with a
     warning. Losing save durability beats crashing the session.

Slots handed to write() are never modified; stripping works on copies.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from chronicle_weaver.errors import StorageCapacityError
from chronicle_weaver.models import SaveSlot
from chronicle_weaver.store import LocalStore

logger = logging.getLogger(__name__)

SAVES_KEY = "CHRONICLE_WEAVER_SAVES_V2"


def _dump(slots: list[SaveSlot]) -> str:
    return json.dumps([slot.to_json_dict() for slot in slots])


class SaveStore:
    """Slot list cached in memory, written through to the local store.

    The cache stays authoritative for the life of the process, so a
    dropped write loses durability but never the running sessions.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._slots: list[SaveSlot] | None = None

    def _load(self) -> list[SaveSlot]:
        raw = self._store.get_item(SAVES_KEY)
        if not raw:
            return []
        try:
            return [SaveSlot.model_validate(s) for s in json.loads(raw)]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.error("Failed to parse saves: %s", e)
            return []

    def list(self) -> list[SaveSlot]:
        if self._slots is None:
            self._slots = self._load()
        return list(self._slots)

    def get(self, slot_id: str) -> SaveSlot | None:
        for slot in self.list():
            if slot.id == slot_id:
                return slot
        return None

    def write(self, slots: list[SaveSlot]) -> bool:
        """Persist the full slot list. Returns False if the write was dropped."""
        self._slots = list(slots)
        try:
            self._store.set_item(SAVES_KEY, _dump(slots))
            return True
        except StorageCapacityError:
            logger.warning(
                "Storage quota exceeded. Purging older scene images to preserve narrative state."
            )
        try:
            self._store.set_item(SAVES_KEY, _dump([s.without_images() for s in slots]))
            return True
        except StorageCapacityError as e:
            logger.warning("Saves not persisted even without images: %s", e)
            return False

    def upsert(self, slot: SaveSlot) -> list[SaveSlot]:
        """Replace the slot with the same id, or prepend it. Returns the new list."""
        lean = slot.with_lean_history()
        slots = self.list()
        for i, existing in enumerate(slots):
            if existing.id == lean.id:
                slots[i] = lean
                break
        else:
            slots.insert(0, lean)
        self.write(slots)
        return slots

    def delete(self, slot_id: str) -> bool:
        slots = self.list()
        remaining = [s for s in slots if s.id != slot_id]
        if len(remaining) == len(slots):
            return False
        self.write(remaining)
        return True
