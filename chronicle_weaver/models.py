"""Core domain models.

Every adapter, the facade, the accountant and the save store operate on
these types. Attributes are snake_case in Python; the JSON form used for
persistence and the HTTP API is camelCase, matching the provider replies
the narrative state is parsed from.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")

ImageQuality = Literal["standard", "fast"]
ImageSize = Literal["1K", "2K", "4K"]
Tier = Literal["base", "elevated"]


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    CLAUDE = "claude"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Narrative state
# ---------------------------------------------------------------------------

DEFAULT_STORY_TEXT = "The story begins..."
DEFAULT_CHOICES = ("Continue",)
DEFAULT_QUEST = "Unknown quest"
DEFAULT_VISUAL_PROMPT = "A mysterious scene"
DEFAULT_WORLD_STYLE = "fantasy"
DEFAULT_GENRE = "Fantasy"


class NarrativeState(_CamelModel):
    """One turn of the story. Frozen; the next turn supersedes it."""

    model_config = ConfigDict(frozen=True)

    story_text: str = DEFAULT_STORY_TEXT
    choices: list[str] = Field(default_factory=lambda: list(DEFAULT_CHOICES))
    inventory: list[str] = Field(default_factory=list)
    current_quest: str = DEFAULT_QUEST
    visual_prompt: str = DEFAULT_VISUAL_PROMPT
    world_style: str = DEFAULT_WORLD_STYLE
    genre: str = DEFAULT_GENRE

    @field_validator("inventory", mode="before")
    @classmethod
    def _inventory_never_null(cls, value: Any) -> Any:
        return [] if value is None else value

    @classmethod
    def from_reply(cls, parsed: dict[str, Any]) -> NarrativeState:
        """Build a state from a decoded provider reply, defaulting field by field.

        Missing, empty or wrongly-typed fields fall back to the defaults, so
        a partial reply still yields all seven fields.
        """

        def text(key: str, default: str) -> str:
            value = parsed.get(key)
            return value if isinstance(value, str) and value else default

        def strings(key: str) -> list[str] | None:
            value = parsed.get(key)
            if not isinstance(value, list):
                return None
            return [str(item) for item in value]

        choices = strings("choices")
        return cls(
            story_text=text("storyText", DEFAULT_STORY_TEXT),
            choices=choices or list(DEFAULT_CHOICES),
            inventory=strings("inventory") or [],
            current_quest=text("currentQuest", DEFAULT_QUEST),
            visual_prompt=text("visualPrompt", DEFAULT_VISUAL_PROMPT),
            world_style=text("worldStyle", DEFAULT_WORLD_STYLE),
            genre=text("genre", DEFAULT_GENRE),
        )


# ---------------------------------------------------------------------------
# Envelope returned by every adapter operation
# ---------------------------------------------------------------------------

class Usage(_CamelModel):
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    is_premium: bool | None = None
    provider: Provider


class ServiceResponse(_CamelModel, Generic[T]):
    data: T
    usage: Usage


# ---------------------------------------------------------------------------
# Session data
# ---------------------------------------------------------------------------

class UsageStats(_CamelModel):
    """Running totals for one session. Only ever replaced by a larger copy."""

    input_tokens: int = 0
    output_tokens: int = 0
    image_count: int = 0
    premium_image_count: int = 0
    estimated_cost: float = 0.0


class ChatMessage(_CamelModel):
    role: Literal["user", "model"]
    text: str


class HistoryEntry(_CamelModel):
    text: str
    choice: str
    image_url: str | None = None
    state: NarrativeState | None = None


class SaveSlot(_CamelModel):
    id: str
    name: str
    genre: str
    last_updated: int  # epoch milliseconds
    game_state: NarrativeState
    history: list[HistoryEntry] = Field(default_factory=list)
    chat_messages: list[ChatMessage] = Field(default_factory=list)
    usage_stats: UsageStats = Field(default_factory=UsageStats)
    provider: Provider = Provider.GEMINI

    def with_lean_history(self) -> SaveSlot:
        """Copy keeping only the most recent entry's image reference."""
        lean = [
            entry if i == 0 else entry.model_copy(update={"image_url": None})
            for i, entry in enumerate(self.history)
        ]
        return self.model_copy(update={"history": lean})

    def without_images(self) -> SaveSlot:
        bare = [entry.model_copy(update={"image_url": None}) for entry in self.history]
        return self.model_copy(update={"history": bare})
