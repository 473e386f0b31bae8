"""Canonical error taxonomy.

Adapters raise ParseError for replies they cannot interpret and let
transport failures (httpx.HTTPError and friends) escape untouched. The
dispatch facade is the only place that turns a raw provider failure into
an AuthenticationError; nothing above or below it reclassifies.
"""

from __future__ import annotations


class ChronicleError(RuntimeError):
    """Base class for every error this package raises on purpose."""


class AuthenticationError(ChronicleError):
    """The provider rejected, or we could not find, a usable API key.

    The only error kind a caller should surface distinctly: retrying is
    futile until a new credential is entered.
    """

    code = "API_KEY_ERROR"

    def __init__(self, provider: str, detail: str = "") -> None:
        self.provider = provider
        self.detail = detail
        message = f"{self.code}: {provider}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnsupportedProviderError(ChronicleError):
    def __init__(self, provider: object) -> None:
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}")


class ParseError(ChronicleError):
    """The upstream reply could not be interpreted as the expected payload."""

    def __init__(self, provider: str, detail: str) -> None:
        self.provider = provider
        super().__init__(f"Invalid response format from {provider}: {detail}")


class StorageCapacityError(ChronicleError):
    """A write would push the local store past its byte capacity."""

    def __init__(self, needed: int, capacity: int) -> None:
        self.needed = needed
        self.capacity = capacity
        super().__init__(
            f"Storage quota exceeded: {needed} bytes needed, capacity is {capacity}"
        )


class TurnInProgressError(ChronicleError):
    """A game session was asked for a new turn while one is still running."""
