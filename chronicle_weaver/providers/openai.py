"""OpenAI adapter — chat completions and images APIs.

    POST {base}/v1/chat/completions
    Header:   Authorization: Bearer <key>
    Body:     {"model": ..., "messages": [...], "response_format": {"type": "json_object"}}
    Response: {"choices": [{"message": {"content": "..."}}],
               "usage": {"prompt_tokens": n, "completion_tokens": n}}

    POST {base}/v1/images/generations
    Body:     {"model": "dall-e-3", "prompt": ..., "n": 1, "size": "1024x1024",
               "quality": "standard" | "hd", "style": "vivid" | "natural"}
    Response: {"data": [{"url": "https://..."}]}
"""

from __future__ import annotations

import json
import logging

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
from chronicle_weaver.prompts import CHAT_FALLBACK, chronicler_persona, image_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, str] = {
    "story": "gpt-4o-mini",
    "chat": "gpt-4o-mini",
    "image": "dall-e-3",
}

IMAGE_DIMENSIONS = "1024x1024"


class OpenAIProvider:
    """Async client for the OpenAI REST API.

    Args:
        credentials: Source of the API key, looked up on every call.
        models:      Overrides for the "story", "chat" and "image" model ids.
        base_url:    API root, e.g. "https://api.openai.com".
        timeout:     HTTP timeout in seconds; None waits indefinitely.
    """

    provider = Provider.OPENAI
    supports_images = True

    def __init__(
        self,
        credentials: CredentialSource,
        models: dict[str, str] | None = None,
        base_url: str = DEFAULT_BASE_URLS["openai"],
        timeout: float | None = None,
    ) -> None:
        self._credentials = credentials
        self._models = {**DEFAULT_MODELS, **(models or {})}
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credentials.get(self.provider)}",
            "Content-Type": "application/json",
        }

    async def _post(self, stage: str, path: str, body: dict) -> dict:
        url = f"{self._base_url}{path}"
        logger.debug("openai call stage=%s url=%s", stage, url)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, json=body, headers=self._headers())
            resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseError("OpenAI", "response body is not JSON") from e
        if not isinstance(data, dict):
            raise ParseError("OpenAI", "response body is not an object")
        return data

    @staticmethod
    def _content(data: dict) -> str | None:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return content if isinstance(content, str) else None

    def _usage(self, data: dict, is_premium: bool | None = None) -> Usage:
        usage = data.get("usage") or {}
        return Usage(
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or 0,
            is_premium=is_premium,
            provider=self.provider,
        )

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def generate_story(self, prompt: str) -> ServiceResponse[NarrativeState]:
        body = {
            "model": self._models["story"],
            "messages": [{"role": "user", "content": prompt}],
            "response_format": {"type": "json_object"},
        }
        data = await self._post("story", "/v1/chat/completions", body)
        content = self._content(data)
        if content is None:
            raise ParseError("OpenAI", "reply has no message content")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError("OpenAI", f"story is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ParseError("OpenAI", f"story must be a JSON object, got {type(parsed).__name__}")
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
        # dall-e-3 has a single square size; `size` only applies to Gemini.
        body = {
            "model": self._models["image"],
            "prompt": image_prompt(prompt, style, quality, palette="flat colors"),
            "n": 1,
            "size": IMAGE_DIMENSIONS,
            "quality": "hd" if high_res else "standard",
            "style": "natural" if quality == "fast" else "vivid",
        }
        data = await self._post("image", "/v1/images/generations", body)
        try:
            url = data["data"][0]["url"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("OpenAI", "image reply has no url") from e
        return ServiceResponse[str | None](
            data=url,
            usage=Usage(input_tokens=0, output_tokens=0, is_premium=high_res, provider=self.provider),
        )

    async def get_chat_response(
        self, message: str, context: NarrativeState
    ) -> ServiceResponse[str]:
        persona = chronicler_persona(context.genre, context.current_quest, context.inventory)
        body = {
            "model": self._models["chat"],
            "messages": [
                {"role": "system", "content": persona},
                {"role": "user", "content": message},
            ],
        }
        data = await self._post("chat", "/v1/chat/completions", body)
        return ServiceResponse[str](
            data=self._content(data) or CHAT_FALLBACK, usage=self._usage(data)
        )
