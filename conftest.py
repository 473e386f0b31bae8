import pytest

from chronicle_weaver.models import Provider
from chronicle_weaver.store import LocalStore

_ENV_VARS = (
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_BASE_URL",
    "OPENAI_BASE_URL",
    "ANTHROPIC_BASE_URL",
    "CHRONICLE_WEAVER_TIMEOUT",
    "CHRONICLE_WEAVER_STORAGE_CAPACITY",
    "DATA_DIR",
)


class FakeCredentials:
    """Dict-backed credential source for injecting keys into the facade."""

    def __init__(self, keys: dict[str, str] | None = None) -> None:
        self.keys = dict(keys or {})

    def get(self, provider: str) -> str:
        provider = provider.value if isinstance(provider, Provider) else provider
        return self.keys.get(provider, "")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real API keys and overrides from leaking into tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "data")


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials({"gemini": "g-key", "openai": "o-key", "claude": "c-key"})


@pytest.fixture
def no_credentials() -> FakeCredentials:
    return FakeCredentials()
