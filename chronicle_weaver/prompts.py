"""Prompt text shared by the adapters and the game session."""

from __future__ import annotations

import json

from chronicle_weaver.models import ImageQuality, NarrativeState

RETRO_GENRE = "80s Sci-Fi Horror"

CHAT_FALLBACK = "I apologize, my vision is clouded..."

NARRATIVE_FIELDS = (
    "storyText",
    "choices",
    "inventory",
    "currentQuest",
    "visualPrompt",
    "worldStyle",
    "genre",
)

# Used by providers without schema-constrained output.
NARRATIVE_JSON_DIRECTIVE = (
    "You are the narrator of a choose-your-own-adventure game. "
    "Reply with a single JSON object and nothing else, with exactly these keys: "
    '"storyText" (string), "choices" (array of strings), "inventory" (array of strings), '
    '"currentQuest" (string), "visualPrompt" (string), "worldStyle" (string), "genre" (string).'
)


def chronicler_persona(genre: str, quest: str, inventory: list[str] | None) -> str:
    """System directive for the sidekick chat.

    A missing inventory renders as an empty list.
    """
    items = ", ".join(inventory or [])
    persona = (
        "You are the Chronicler, a wise and helpful sidekick in this infinite adventure game.\n"
        f"The current genre is {genre}. The player's quest is: {quest}.\n"
        f"Their inventory includes: {items}."
    )
    if genre == RETRO_GENRE:
        persona += "\nSpeak with 80s slang like 'rad', 'bogus', or 'tubular' occasionally."
    return persona


def image_prompt(
    prompt: str, style: str, quality: ImageQuality, palette: str = "basic colors"
) -> str:
    if quality == "fast":
        return f"Simple {style} style: {prompt}. Minimal detail, {palette}."
    return f"Art Style: {style}. Scene: {prompt}. Cinematic lighting, evocative mood."


def genre_directive(genre: str) -> str:
    if genre == RETRO_GENRE:
        return (
            "Visual style MUST be '8-bit pixel art, Atari 2600 aesthetic, grainy CRT "
            "monitor effect, retro 1980s VHS quality'. Narrative: 1980s mystery, analog "
            "tech, synthesizer atmosphere."
        )
    return ""


def start_prompt(genre: str) -> str:
    return (
        f'Start a new choose-your-own-adventure in the "{genre}" genre. '
        f"{genre_directive(genre)} Return output as JSON matching the GameState schema."
    )


def continue_prompt(state: NarrativeState, choice: str) -> str:
    state_json = json.dumps(state.to_json_dict())
    return (
        f'Game State: {state_json}. Choice: "{choice}". Advance the plot. '
        "Maintain the genre consistency. Return new state in JSON."
    )
