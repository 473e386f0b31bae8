"""Per-provider API key storage.

Keys live in the local store under CHRONICLE_WEAVER_API_KEY_<provider>.
There is no encryption and no expiry: a key is either present or not.

The dispatch facade receives a CredentialSource at construction instead
of reaching into storage itself, so tests can hand it a plain dict-backed
fake.
"""

from __future__ import annotations

import os
from typing import Protocol

from chronicle_weaver.models import Provider
from chronicle_weaver.store import LocalStore

API_KEY_STORAGE_PREFIX = "CHRONICLE_WEAVER_API_KEY_"

# Environment fallbacks, usually populated from .env by python-dotenv.
ENV_VARS: dict[Provider, str] = {
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.CLAUDE: "ANTHROPIC_API_KEY",
}


class CredentialSource(Protocol):
    def get(self, provider: str) -> str: ...


def _provider_id(provider: str) -> str:
    return provider.value if isinstance(provider, Provider) else str(provider)


class CredentialStore:
    """Durable provider → secret mapping backed by a LocalStore."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def _key(self, provider: str) -> str:
        return f"{API_KEY_STORAGE_PREFIX}{_provider_id(provider)}"

    def get(self, provider: str) -> str:
        return self._store.get_item(self._key(provider)) or ""

    def set(self, provider: str, secret: str) -> None:
        """Store a key; an empty secret deletes the entry.

        Raises StorageCapacityError if the local store has no room left.
        """
        if secret:
            self._store.set_item(self._key(provider), secret)
        else:
            self._store.remove_item(self._key(provider))

    def has(self, provider: str) -> bool:
        return len(self.get(provider)) > 0

    def clear_all(self) -> None:
        for provider in Provider:
            self._store.remove_item(self._key(provider))


class EnvCredentials:
    """Read-only source over GEMINI_API_KEY / OPENAI_API_KEY / ANTHROPIC_API_KEY."""

    def get(self, provider: str) -> str:
        try:
            var = ENV_VARS[Provider(_provider_id(provider))]
        except ValueError:
            return ""
        return os.getenv(var, "")


class LayeredCredentials:
    """First non-empty key wins, in the order the sources were given."""

    def __init__(self, *sources: CredentialSource) -> None:
        self._sources = sources

    def get(self, provider: str) -> str:
        for source in self._sources:
            key = source.get(provider)
            if key:
                return key
        return ""
