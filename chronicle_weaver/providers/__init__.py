"""Provider adapters.

Each adapter turns the generic story / image / chat contract into one
provider's wire format and normalizes the reply into a ServiceResponse
envelope. They all match this protocol:

    class StoryProvider(Protocol):
        provider: Provider
        supports_images: bool
        async def generate_story(self, prompt) -> ServiceResponse[NarrativeState]
        async def generate_image(self, prompt, style, quality, high_res, size)
            -> ServiceResponse[str | None]
        async def get_chat_response(self, message, context) -> ServiceResponse[str]

Three implementations are provided:

    GeminiProvider  — generateContent REST API, x-goog-api-key header,
                      schema-constrained JSON, inline base64 images.
    OpenAIProvider  — chat completions + images API, Bearer token,
                      JSON-object mode, hosted image URLs.
    ClaudeProvider  — messages API, x-api-key header, free-text JSON.
                      Text only: image requests return no data.

Adapters let transport errors escape; the dispatch facade classifies them.
"""

from __future__ import annotations

from typing import Protocol

from chronicle_weaver.models import (
    ImageQuality,
    ImageSize,
    NarrativeState,
    Provider,
    ServiceResponse,
)
from chronicle_weaver.prompts import CHAT_FALLBACK

from .claude import ClaudeProvider
from .gemini import GeminiProvider
from .openai import OpenAIProvider


class StoryProvider(Protocol):
    provider: Provider
    supports_images: bool

    async def generate_story(self, prompt: str) -> ServiceResponse[NarrativeState]: ...

    async def generate_image(
        self,
        prompt: str,
        style: str,
        quality: ImageQuality = "standard",
        high_res: bool = False,
        size: ImageSize = "1K",
    ) -> ServiceResponse[str | None]: ...

    async def get_chat_response(
        self, message: str, context: NarrativeState
    ) -> ServiceResponse[str]: ...


__all__ = [
    "CHAT_FALLBACK",
    "ClaudeProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "StoryProvider",
]
