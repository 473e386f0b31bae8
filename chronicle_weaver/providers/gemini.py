"""Gemini adapter — Google generateContent REST API.

    POST {base}/v1beta/models/{model}:generateContent
    Header:   x-goog-api-key: <key>
    Body:     {"contents": [...], "generationConfig": {...}, "systemInstruction": {...}}
    Response: {"candidates": [{"content": {"parts": [{"text": ...} | {"inlineData": ...}]}}],
               "usageMetadata": {"promptTokenCount": n, "candidatesTokenCount": n}}

Story requests are schema-constrained, so the reply is always a JSON
object; an empty reply is read as "{}" and defaults fill every field.
Images come back inline as base64 and are returned as data URLs.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from chronicle_weaver.config import DEFAULT_BASE_URLS
from chronicle_weaver.credentials import CredentialSource
from chronicle_weaver.errors import ParseError
from chronicle_weaver.models import (
    ImageQuality,
    ImageSize,
    NarrativeState,
    Provider,
    ServiceResponse,
    Usage,
)
from chronicle_weaver.prompts import (
    CHAT_FALLBACK,
    NARRATIVE_FIELDS,
    chronicler_persona,
    image_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, str] = {
    "story": "gemini-2.0-flash-exp",
    "chat": "gemini-2.0-flash-exp",
    "image": "gemini-2.0-flash-exp",
    "image_pro": "gemini-3-pro-image-preview",
}

NARRATIVE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "storyText": {"type": "STRING"},
        "choices": {"type": "ARRAY", "items": {"type": "STRING"}},
        "inventory": {"type": "ARRAY", "items": {"type": "STRING"}},
        "currentQuest": {"type": "STRING"},
        "visualPrompt": {"type": "STRING"},
        "worldStyle": {"type": "STRING"},
        "genre": {"type": "STRING"},
    },
    "required": list(NARRATIVE_FIELDS),
}


class GeminiProvider:
    """Async client for the Gemini generateContent endpoint.

    Args:
        credentials: Source of the API key, looked up on every call.
        models:      Overrides for the "story", "chat", "image" and
                     "image_pro" model ids.
        base_url:    API root, e.g. "https://generativelanguage.googleapis.com".
        timeout:     HTTP timeout in seconds; None waits indefinitely.
    """

    provider = Provider.GEMINI
    supports_images = True

    def __init__(
        self,
        credentials: CredentialSource,
        models: dict[str, str] | None = None,
        base_url: str = DEFAULT_BASE_URLS["gemini"],
        timeout: float | None = None,
    ) -> None:
        self._credentials = credentials
        self._models = {**DEFAULT_MODELS, **(models or {})}
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self._credentials.get(self.provider),
        }

    def _url(self, model: str) -> str:
        return f"{self._base_url}/v1beta/models/{model}:generateContent"

    async def _generate(self, stage: str, model: str, body: dict) -> dict:
        url = self._url(model)
        logger.debug("gemini call stage=%s model=%s", stage, model)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, json=body, headers=self._headers())
            resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseError("Gemini", "response body is not JSON") from e
        if not isinstance(data, dict):
            raise ParseError("Gemini", "response body is not an object")
        return data

    @staticmethod
    def _parts(data: dict) -> list[dict]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return content.get("parts") or []

    def _text(self, data: dict) -> str:
        return "".join(part.get("text", "") for part in self._parts(data))

    def _usage(self, data: dict, is_premium: bool | None = None) -> Usage:
        metadata = data.get("usageMetadata") or {}
        return Usage(
            input_tokens=metadata.get("promptTokenCount") or 0,
            output_tokens=metadata.get("candidatesTokenCount") or 0,
            is_premium=is_premium,
            provider=self.provider,
        )

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def generate_story(self, prompt: str) -> ServiceResponse[NarrativeState]:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": NARRATIVE_SCHEMA,
            },
        }
        data = await self._generate("story", self._models["story"], body)
        text = self._text(data) or "{}"
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError("Gemini", f"story is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ParseError("Gemini", f"story must be a JSON object, got {type(parsed).__name__}")
        return ServiceResponse[NarrativeState](
            data=NarrativeState.from_reply(parsed), usage=self._usage(data)
        )

    async def generate_image(
        self,
        prompt: str,
        style: str,
        quality: ImageQuality = "standard",
        high_res: bool = False,
        size: ImageSize = "1K",
    ) -> ServiceResponse[str | None]:
        generation_config: dict[str, Any] = {"responseModalities": ["TEXT", "IMAGE"]}
        if high_res:
            model = self._models["image_pro"]
            generation_config["imageConfig"] = {"aspectRatio": "16:9", "imageSize": size}
        else:
            model = self._models["image"]
        body = {
            "contents": [{"role": "user", "parts": [{"text": image_prompt(prompt, style, quality)}]}],
            "generationConfig": generation_config,
        }
        data = await self._generate("image", model, body)

        image: str | None = None
        for part in self._parts(data):
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or "image/png"
                image = f"data:{mime};base64,{inline['data']}"
                break
        if image is None:
            logger.warning("gemini image reply contained no inline image")
        return ServiceResponse[str | None](
            data=image, usage=self._usage(data, is_premium=high_res)
        )

    async def get_chat_response(
        self, message: str, context: NarrativeState
    ) -> ServiceResponse[str]:
        persona = chronicler_persona(context.genre, context.current_quest, context.inventory)
        body = {
            "systemInstruction": {"parts": [{"text": persona}]},
            "contents": [{"role": "user", "parts": [{"text": message}]}],
        }
        data = await self._generate("chat", self._models["chat"], body)
        return ServiceResponse[str](
            data=self._text(data) or CHAT_FALLBACK, usage=self._usage(data)
        )
