"""Dispatch facade — the one entry point the rest of the app calls.

    generate_story_beat(prompt, provider)
    generate_image(prompt, style, provider, quality, high_res, size)
    get_chat_response(message, context, provider)
    calculate_estimated_cost(input, output, images, premium_images, provider, tier)

Adapters are looked up in a table keyed by Provider. Whatever an adapter
raises is described as an ErrorDetail and run through
is_credential_error(); credential failures come back out as
AuthenticationError, everything else propagates unchanged. No retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from chronicle_weaver import config
from chronicle_weaver.credentials import CredentialSource
from chronicle_weaver.errors import (
    AuthenticationError,
    ChronicleError,
    UnsupportedProviderError,
)
from chronicle_weaver.models import (
    ImageQuality,
    ImageSize,
    NarrativeState,
    Provider,
    ServiceResponse,
    Tier,
)
from chronicle_weaver.pricing import estimate_cost
from chronicle_weaver.providers import (
    ClaudeProvider,
    GeminiProvider,
    OpenAIProvider,
    StoryProvider,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorDetail:
    """What we know about a failed provider call."""

    status: int | None
    message: str


@dataclass(frozen=True)
class CredentialRule:
    statuses: frozenset[int]
    phrases: tuple[str, ...] = ()


# Gemini buries bad keys in generic 400 bodies, hence the phrase list.
CREDENTIAL_RULES: dict[Provider, CredentialRule] = {
    Provider.GEMINI: CredentialRule(
        statuses=frozenset({401, 403, 404}),
        phrases=("permission", "not found", "api_key_invalid"),
    ),
    # No 404 here: on these APIs it means an unknown model, not a bad key.
    Provider.OPENAI: CredentialRule(statuses=frozenset({401, 403})),
    Provider.CLAUDE: CredentialRule(statuses=frozenset({401, 403})),
}


def describe_error(error: BaseException) -> ErrorDetail:
    if isinstance(error, httpx.HTTPStatusError):
        return ErrorDetail(
            status=error.response.status_code, message=f"{error} {error.response.text}".strip()
        )
    return ErrorDetail(status=getattr(error, "status_code", None), message=str(error))


def is_credential_error(provider: Provider, detail: ErrorDetail) -> bool:
    rule = CREDENTIAL_RULES.get(provider)
    if rule is None:
        return False
    if detail.status is not None and detail.status in rule.statuses:
        return True
    message = detail.message.lower()
    return any(phrase in message for phrase in rule.phrases)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class AIService:
    """Provider-agnostic story, image, chat and cost operations.

    Args:
        credentials: Where API keys come from. Injected so tests never touch
                     the real store.
        adapters:    Provider → adapter table. Defaults to one of each
                     built-in adapter sharing `credentials`.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        adapters: dict[Provider, StoryProvider] | None = None,
    ) -> None:
        self._credentials = credentials
        if adapters is None:
            adapters = {
                Provider.GEMINI: GeminiProvider(credentials),
                Provider.OPENAI: OpenAIProvider(credentials),
                Provider.CLAUDE: ClaudeProvider(credentials),
            }
        self._adapters = adapters

    def adapter(self, provider: str) -> StoryProvider:
        try:
            return self._adapters[Provider(provider)]
        except (ValueError, KeyError):
            raise UnsupportedProviderError(provider) from None

    async def _dispatch(
        self,
        provider: str,
        needs_key: bool,
        call: Callable[[StoryProvider], Awaitable[T]],
    ) -> T:
        adapter = self.adapter(provider)
        if needs_key and not self._credentials.get(adapter.provider):
            raise AuthenticationError(adapter.provider.value, "no API key stored")
        try:
            return await call(adapter)
        except ChronicleError:
            raise
        except Exception as e:
            detail = describe_error(e)
            if is_credential_error(adapter.provider, detail):
                logger.error(
                    "%s rejected credentials status=%s", adapter.provider.value, detail.status
                )
                raise AuthenticationError(adapter.provider.value, detail.message) from e
            logger.error("%s call failed: %s", adapter.provider.value, detail.message)
            raise

    async def generate_story_beat(
        self, prompt: str, provider: str = Provider.GEMINI
    ) -> ServiceResponse[NarrativeState]:
        return await self._dispatch(
            provider, True, lambda adapter: adapter.generate_story(prompt)
        )

    async def generate_image(
        self,
        prompt: str,
        style: str,
        provider: str = Provider.GEMINI,
        quality: ImageQuality = "standard",
        high_res: bool = False,
        size: ImageSize = "1K",
    ) -> ServiceResponse[str | None]:
        adapter = self.adapter(provider)
        return await self._dispatch(
            provider,
            adapter.supports_images,
            lambda adapter: adapter.generate_image(prompt, style, quality, high_res, size),
        )

    async def get_chat_response(
        self, message: str, context: NarrativeState, provider: str = Provider.GEMINI
    ) -> ServiceResponse[str]:
        return await self._dispatch(
            provider, True, lambda adapter: adapter.get_chat_response(message, context)
        )

    @staticmethod
    def calculate_estimated_cost(
        input_tokens: int,
        output_tokens: int,
        images: int,
        premium_images: int,
        provider: str = Provider.GEMINI,
        tier: Tier = "base",
    ) -> float:
        return estimate_cost(input_tokens, output_tokens, images, premium_images, provider, tier)


def build_service(credentials: CredentialSource, preferences: dict) -> AIService:
    """Wire the built-in adapters from environment and stored preferences."""
    models = preferences.get("models", {})
    timeout = config.request_timeout()
    adapters: dict[Provider, StoryProvider] = {
        Provider.GEMINI: GeminiProvider(
            credentials, models.get("gemini"), config.base_url("gemini"), timeout
        ),
        Provider.OPENAI: OpenAIProvider(
            credentials, models.get("openai"), config.base_url("openai"), timeout
        ),
        Provider.CLAUDE: ClaudeProvider(
            credentials, models.get("claude"), config.base_url("claude"), timeout
        ),
    }
    return AIService(credentials, adapters)
