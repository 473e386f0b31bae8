"""Game session — runs one player action end-to-end.

Turn flow (start / make_choice):
  1. Build the story prompt (new game, or current state + choice).
  2. Facade story call → new NarrativeState; usage folded in at base tier.
  3. Unless text-only mode: facade image call on the new state's visual
     prompt; usage folded in as one standard or one premium image.
  4. Push a history entry (most recent first), image or not.
  5. Upsert the save slot.

Only one turn may run at a time per session; an overlapping call raises
TurnInProgressError. The image call always follows the story call.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Literal

from chronicle_weaver.dispatch import AIService
from chronicle_weaver.errors import TurnInProgressError
from chronicle_weaver.models import (
    ChatMessage,
    HistoryEntry,
    NarrativeState,
    Provider,
    SaveSlot,
    UsageStats,
)
from chronicle_weaver.pricing import accumulate
from chronicle_weaver.prompts import continue_prompt, start_prompt
from chronicle_weaver.saves import SaveStore

logger = logging.getLogger(__name__)

DEFAULT_GENRE = "Fantasy"
BUDGET_WARNING_RATIO = 0.8

BudgetStatus = Literal["ok", "warning", "exceeded"]


def _now_ms() -> int:
    return int(time.time() * 1000)


class GameSession:
    """Holds the active session and drives turns through the facade.

    Args:
        service:     Dispatch facade.
        saves:       Save slot persistence.
        preferences: Config dict as returned by config.get_config().
    """

    def __init__(
        self, service: AIService, saves: SaveStore, preferences: dict[str, Any]
    ) -> None:
        self.service = service
        self._saves = saves
        self.preferences = preferences
        self._busy = False
        self._reset()

    def _reset(self) -> None:
        self.state: NarrativeState | None = None
        self.history: list[HistoryEntry] = []
        self.chat_messages: list[ChatMessage] = []
        self.usage_stats = UsageStats()
        self.save_id: str | None = None
        self.save_name = ""
        self.provider = Provider.GEMINI

    @property
    def started(self) -> bool:
        return self.state is not None and self.save_id is not None

    def _check_idle(self) -> None:
        if self._busy:
            raise TurnInProgressError("A turn is already in progress")

    def _claim(self) -> None:
        self._check_idle()
        self._busy = True

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def start(
        self, genre: str | None = None, provider: str = Provider.GEMINI
    ) -> NarrativeState:
        """Start a new game in a fresh save slot."""
        self._claim()
        try:
            genre = genre or DEFAULT_GENRE
            adapter = self.service.adapter(provider)
            self._reset()
            self.provider = adapter.provider
            self.save_id = uuid.uuid4().hex
            self.save_name = f"{genre} - {datetime.now().strftime('%H:%M')}"

            response = await self.service.generate_story_beat(start_prompt(genre), self.provider)
            self.state = response.data
            self.usage_stats = accumulate(self.usage_stats, response.usage)
            logger.info("started %s game save=%s provider=%s", genre, self.save_id, self.provider.value)

            label = "Arrival" if self.preferences.get("text_only") else "The Beginning"
            await self._illustrate(response.data, label)
            return response.data
        finally:
            self._busy = False

    async def make_choice(self, choice: str) -> NarrativeState:
        """Advance the story with the player's choice."""
        if self.state is None:
            raise ValueError("No game in progress")
        self._claim()
        try:
            prompt = continue_prompt(self.state, choice)
            response = await self.service.generate_story_beat(prompt, self.provider)
            self.state = response.data
            self.usage_stats = accumulate(self.usage_stats, response.usage)
            await self._illustrate(response.data, choice)
            return response.data
        finally:
            self._busy = False

    async def _illustrate(self, state: NarrativeState, choice: str) -> None:
        """Image step, then record the turn. The turn is recorded even if the image fails."""
        image_url: str | None = None
        try:
            if not self.preferences.get("text_only"):
                response = await self.service.generate_image(
                    state.visual_prompt,
                    state.world_style,
                    self.provider,
                    self.preferences.get("image_quality", "standard"),
                    bool(self.preferences.get("high_res")),
                    self.preferences.get("image_size", "1K"),
                )
                image_url = response.data
                if image_url:
                    premium = bool(response.usage.is_premium)
                    self.usage_stats = accumulate(
                        self.usage_stats,
                        response.usage,
                        images=0 if premium else 1,
                        premium_images=1 if premium else 0,
                        tier="elevated" if premium else "base",
                    )
        finally:
            self.history.insert(
                0, HistoryEntry(text=state.story_text, choice=choice, image_url=image_url, state=state)
            )
            self._persist()

    async def send_chat(self, message: str) -> str:
        """Ask the Chronicler something about the current game."""
        if self.state is None:
            raise ValueError("No game in progress")
        self.chat_messages.append(ChatMessage(role="user", text=message))
        try:
            response = await self.service.get_chat_response(message, self.state, self.provider)
        finally:
            self._persist()
        self.chat_messages.append(ChatMessage(role="model", text=response.data))
        self.usage_stats = accumulate(self.usage_stats, response.usage, tier="elevated")
        self._persist()
        return response.data

    # ------------------------------------------------------------------
    # Saves
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if not self.started:
            return
        assert self.state is not None and self.save_id is not None
        existing = self._saves.get(self.save_id)
        self._saves.upsert(
            SaveSlot(
                id=self.save_id,
                name=existing.name if existing else self.save_name,
                genre=self.state.genre,
                last_updated=_now_ms(),
                game_state=self.state,
                history=list(self.history),
                chat_messages=list(self.chat_messages),
                usage_stats=self.usage_stats,
                provider=self.provider,
            )
        )

    def load(self, slot_id: str) -> SaveSlot | None:
        """Make a saved game the active session. Not allowed mid-turn."""
        self._check_idle()
        slot = self._saves.get(slot_id)
        if slot is None:
            return None
        self.state = slot.game_state
        self.history = list(slot.history)
        self.chat_messages = list(slot.chat_messages)
        self.usage_stats = slot.usage_stats or UsageStats()
        self.save_id = slot.id
        self.save_name = slot.name
        self.provider = slot.provider
        return slot

    def delete_save(self, slot_id: str) -> bool:
        """Delete a slot; deleting the active one ends the session."""
        self._check_idle()
        deleted = self._saves.delete(slot_id)
        if deleted and slot_id == self.save_id:
            self._reset()
        return deleted

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def reset_usage(self) -> UsageStats:
        """Zero the running totals and save them with the active slot."""
        self._check_idle()
        self.usage_stats = UsageStats()
        self._persist()
        return self.usage_stats

    def budget_status(self) -> BudgetStatus:
        threshold = float(self.preferences.get("budget_threshold", 5.0))
        cost = self.usage_stats.estimated_cost
        if cost >= threshold:
            return "exceeded"
        if cost >= threshold * BUDGET_WARNING_RATIO:
            return "warning"
        return "ok"
