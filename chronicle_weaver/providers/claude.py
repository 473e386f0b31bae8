"""Claude adapter — Anthropic messages API. Text only.

    POST {base}/v1/messages
    Headers:  x-api-key: <key>, anthropic-version: 2023-06-01
    Body:     {"model": ..., "max_tokens": 1000, "system": ..., "messages": [...]}
    Response: {"content": [{"type": "text", "text": "..."}],
               "usage": {"input_tokens": n, "output_tokens": n}}

The messages API has no schema-constrained output, so the story reply is
free text that must parse as a JSON object (markdown fences tolerated).
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
    NARRATIVE_JSON_DIRECTIVE,
    chronicler_persona,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 1000

DEFAULT_MODELS: dict[str, str] = {
    "story": "claude-3-5-haiku-20241022",
    "chat": "claude-3-5-haiku-20241022",
}


def _load_json(text: str) -> Any:
    """Parse JSON from model output, stripping markdown fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return json.loads(cleaned)


class ClaudeProvider:
    """Async client for the Anthropic messages endpoint.

    Args:
        credentials: Source of the API key, looked up on every call.
        models:      Overrides for the "story" and "chat" model ids.
        base_url:    API root, e.g. "https://api.anthropic.com".
        timeout:     HTTP timeout in seconds; None waits indefinitely.
        max_tokens:  Completion budget sent with every request.
    """

    provider = Provider.CLAUDE
    supports_images = False

    def __init__(
        self,
        credentials: CredentialSource,
        models: dict[str, str] | None = None,
        base_url: str = DEFAULT_BASE_URLS["claude"],
        timeout: float | None = None,
        max_tokens: int = MAX_TOKENS,
    ) -> None:
        self._credentials = credentials
        self._models = {**DEFAULT_MODELS, **(models or {})}
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_tokens = max_tokens

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._credentials.get(self.provider),
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def _messages(self, stage: str, model: str, system: str, message: str) -> dict:
        url = f"{self._base_url}/v1/messages"
        body = {
            "model": model,
            "max_tokens": self._max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": message}],
        }
        logger.debug("claude call stage=%s model=%s", stage, model)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, json=body, headers=self._headers())
            resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseError("Claude", "response body is not JSON") from e
        if not isinstance(data, dict):
            raise ParseError("Claude", "response body is not an object")
        return data

    @staticmethod
    def _text(data: dict) -> str | None:
        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type", "text") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    return text
        return None

    def _usage(self, data: dict) -> Usage:
        usage = data.get("usage") or {}
        return Usage(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
            provider=self.provider,
        )

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def generate_story(self, prompt: str) -> ServiceResponse[NarrativeState]:
        data = await self._messages("story", self._models["story"], NARRATIVE_JSON_DIRECTIVE, prompt)
        text = self._text(data)
        if text is None:
            raise ParseError("Claude", "reply has no text block")
        try:
            parsed = _load_json(text)
        except json.JSONDecodeError as e:
            raise ParseError("Claude", f"story is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ParseError("Claude", f"story must be a JSON object, got {type(parsed).__name__}")
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
        """No image capability: an empty result, not an error, and no request."""
        return ServiceResponse[str | None](
            data=None,
            usage=Usage(input_tokens=0, output_tokens=0, provider=self.provider),
        )

    async def get_chat_response(
        self, message: str, context: NarrativeState
    ) -> ServiceResponse[str]:
        persona = chronicler_persona(context.genre, context.current_quest, context.inventory)
        data = await self._messages("chat", self._models["chat"], persona, message)
        return ServiceResponse[str](
            data=self._text(data) or CHAT_FALLBACK, usage=self._usage(data)
        )
