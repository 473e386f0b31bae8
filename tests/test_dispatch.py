"""Tests for chronicle_weaver.dispatch — adapter selection and error classification."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from chronicle_weaver.dispatch import (
    AIService,
    ErrorDetail,
    build_service,
    describe_error,
    is_credential_error,
)
from chronicle_weaver.errors import AuthenticationError, ParseError, UnsupportedProviderError
from chronicle_weaver.models import NarrativeState, Provider, ServiceResponse, Usage
from chronicle_weaver.pricing import PRICING


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = json.dumps(body)
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            f"Client error '{status}'", request=MagicMock(), response=resp
        )
    )
    return resp


class StubProvider:
    """Adapter double returning canned envelopes."""

    supports_images = True

    def __init__(self, provider: Provider, error: Exception | None = None) -> None:
        self.provider = provider
        self.error = error
        self.story = ServiceResponse[NarrativeState](
            data=NarrativeState(story_text="Stubbed."), usage=Usage(provider=provider)
        )

    async def generate_story(self, prompt):
        if self.error:
            raise self.error
        return self.story

    async def generate_image(self, prompt, style, quality="standard", high_res=False, size="1K"):
        if self.error:
            raise self.error
        return ServiceResponse[str | None](data="img", usage=Usage(provider=self.provider))

    async def get_chat_response(self, message, context):
        if self.error:
            raise self.error
        return ServiceResponse[str](data="reply", usage=Usage(provider=self.provider))


@pytest.fixture
def service(credentials) -> AIService:
    return AIService(credentials)


# ---------------------------------------------------------------------------
# Adapter selection
# ---------------------------------------------------------------------------

class TestSelection:
    async def test_envelope_passes_through_unchanged(self, credentials) -> None:
        stub = StubProvider(Provider.OPENAI)
        service = AIService(credentials, {Provider.OPENAI: stub})
        result = await service.generate_story_beat("prompt", Provider.OPENAI)
        assert result is stub.story

    async def test_accepts_plain_string_ids(self, credentials) -> None:
        stub = StubProvider(Provider.CLAUDE)
        service = AIService(credentials, {Provider.CLAUDE: stub})
        result = await service.get_chat_response("hi", NarrativeState(), "claude")
        assert result.data == "reply"

    @pytest.mark.parametrize("provider", ["mistral", "GEMINI", ""])
    async def test_unknown_provider_story(self, service: AIService, provider: str) -> None:
        with pytest.raises(UnsupportedProviderError) as exc_info:
            await service.generate_story_beat("prompt", provider)
        assert exc_info.value.provider == provider

    async def test_unknown_provider_image(self, service: AIService) -> None:
        with pytest.raises(UnsupportedProviderError, match="mistral"):
            await service.generate_image("p", "s", "mistral")

    async def test_unknown_provider_chat(self, service: AIService) -> None:
        with pytest.raises(UnsupportedProviderError):
            await service.get_chat_response("hi", NarrativeState(), "mistral")

    async def test_provider_missing_from_table(self, credentials) -> None:
        service = AIService(credentials, {Provider.GEMINI: StubProvider(Provider.GEMINI)})
        with pytest.raises(UnsupportedProviderError):
            await service.generate_story_beat("prompt", Provider.OPENAI)

    async def test_default_provider_is_gemini(self, credentials) -> None:
        stub = StubProvider(Provider.GEMINI)
        service = AIService(credentials, {Provider.GEMINI: stub})
        assert (await service.generate_story_beat("prompt")) is stub.story


# ---------------------------------------------------------------------------
# Credential handling
# ---------------------------------------------------------------------------

class TestCredentials:
    async def test_missing_key_raises_before_network(self, no_credentials) -> None:
        service = AIService(no_credentials)
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(AuthenticationError) as exc_info:
                await service.generate_story_beat("prompt", Provider.OPENAI)
        assert exc_info.value.provider == "openai"
        mock_post.assert_not_called()

    async def test_text_only_image_needs_no_key(self, no_credentials) -> None:
        service = AIService(no_credentials)
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            result = await service.generate_image("A castle", "oil", Provider.CLAUDE)
        assert result.data is None
        mock_post.assert_not_called()

    async def test_image_needs_key_when_supported(self, no_credentials) -> None:
        service = AIService(no_credentials)
        with pytest.raises(AuthenticationError):
            await service.generate_image("A castle", "oil", Provider.GEMINI)


# ---------------------------------------------------------------------------
# Upstream failures through the real adapters
# ---------------------------------------------------------------------------

class TestUpstreamErrors:
    async def test_openai_unauthorized_becomes_authentication_error(self, service: AIService) -> None:
        resp = _mock_response({"error": {"message": "Incorrect API key provided"}}, status=401)
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(AuthenticationError) as exc_info:
                await service.generate_story_beat("prompt", Provider.OPENAI)
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)
        assert exc_info.value.code == "API_KEY_ERROR"

    async def test_claude_unauthorized_becomes_authentication_error(self, service: AIService) -> None:
        resp = _mock_response({"type": "error", "error": {"type": "authentication_error"}}, status=401)
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(AuthenticationError):
                await service.get_chat_response("hi", NarrativeState(), Provider.CLAUDE)

    async def test_gemini_forbidden_becomes_authentication_error(self, service: AIService) -> None:
        resp = _mock_response({"error": {"code": 403, "status": "PERMISSION_DENIED"}}, status=403)
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(AuthenticationError):
                await service.generate_image("A castle", "oil", Provider.GEMINI)

    async def test_gemini_invalid_key_in_400_body(self, service: AIService) -> None:
        body = {"error": {
            "code": 400,
            "message": "API key not valid. Please pass a valid API key.",
            "status": "INVALID_ARGUMENT",
            "details": [{"reason": "API_KEY_INVALID"}],
        }}
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response(body, status=400))):
            with pytest.raises(AuthenticationError):
                await service.generate_story_beat("prompt", Provider.GEMINI)

    async def test_server_error_propagates_unchanged(self, service: AIService) -> None:
        resp = _mock_response({"error": "overloaded"}, status=500)
        original = resp.raise_for_status.side_effect
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await service.generate_story_beat("prompt", Provider.OPENAI)
        assert exc_info.value is original

    async def test_rate_limit_propagates_unchanged(self, service: AIService) -> None:
        resp = _mock_response({"error": {"type": "rate_limit_error"}}, status=429)
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(httpx.HTTPStatusError):
                await service.generate_story_beat("prompt", Provider.CLAUDE)

    async def test_connect_error_propagates_unchanged(self, service: AIService) -> None:
        error = httpx.ConnectError("refused")
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=error)):
            with pytest.raises(httpx.ConnectError) as exc_info:
                await service.generate_story_beat("prompt", Provider.OPENAI)
        assert exc_info.value is error

    async def test_parse_error_not_reclassified(self, credentials) -> None:
        # "not found" would match the Gemini phrase list if it were reclassified
        stub = StubProvider(Provider.GEMINI, ParseError("Gemini", "field not found"))
        service = AIService(credentials, {Provider.GEMINI: stub})
        with pytest.raises(ParseError):
            await service.generate_story_beat("prompt", Provider.GEMINI)

    async def test_gemini_text_match_on_plain_exception(self, credentials) -> None:
        stub = StubProvider(Provider.GEMINI, RuntimeError("Permission denied on resource"))
        service = AIService(credentials, {Provider.GEMINI: stub})
        with pytest.raises(AuthenticationError):
            await service.get_chat_response("hi", NarrativeState(), Provider.GEMINI)

    async def test_openai_ignores_gemini_phrases(self, credentials) -> None:
        stub = StubProvider(Provider.OPENAI, RuntimeError("model not found"))
        service = AIService(credentials, {Provider.OPENAI: stub})
        with pytest.raises(RuntimeError, match="model not found"):
            await service.generate_story_beat("prompt", Provider.OPENAI)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class TestClassifier:
    @pytest.mark.parametrize("provider,status,expected", [
        (Provider.GEMINI, 401, True),
        (Provider.GEMINI, 403, True),
        (Provider.GEMINI, 404, True),
        (Provider.GEMINI, 500, False),
        (Provider.OPENAI, 401, True),
        (Provider.OPENAI, 403, True),
        (Provider.OPENAI, 404, False),
        (Provider.OPENAI, 429, False),
        (Provider.CLAUDE, 401, True),
        (Provider.CLAUDE, 403, True),
        (Provider.CLAUDE, 404, False),
        (Provider.CLAUDE, 500, False),
    ])
    def test_status_rules(self, provider, status, expected) -> None:
        assert is_credential_error(provider, ErrorDetail(status=status, message="")) is expected

    @pytest.mark.parametrize("message", [
        "The caller does not have PERMISSION",
        "Requested entity was NOT FOUND.",
        '{"reason": "API_KEY_INVALID"}',
    ])
    def test_gemini_phrases(self, message: str) -> None:
        assert is_credential_error(Provider.GEMINI, ErrorDetail(status=None, message=message))

    def test_gemini_unrelated_message(self) -> None:
        detail = ErrorDetail(status=503, message="The model is overloaded")
        assert not is_credential_error(Provider.GEMINI, detail)

    def test_phrases_only_apply_to_gemini(self) -> None:
        detail = ErrorDetail(status=None, message="permission denied")
        assert not is_credential_error(Provider.CLAUDE, detail)

    def test_describe_http_status_error(self) -> None:
        resp = _mock_response({"error": "API_KEY_INVALID"}, status=400)
        detail = describe_error(resp.raise_for_status.side_effect)
        assert detail.status == 400
        assert "API_KEY_INVALID" in detail.message

    def test_describe_plain_exception(self) -> None:
        detail = describe_error(ValueError("boom"))
        assert detail == ErrorDetail(status=None, message="boom")


# ---------------------------------------------------------------------------
# Cost and wiring
# ---------------------------------------------------------------------------

def test_calculate_estimated_cost_uses_price_table(service: AIService) -> None:
    rates = PRICING[(Provider.CLAUDE, "elevated")]
    cost = service.calculate_estimated_cost(1000, 0, 0, 0, Provider.CLAUDE, "elevated")
    assert cost == pytest.approx(1000 * rates.input)


def test_calculate_estimated_cost_unknown_provider(service: AIService) -> None:
    fallback = service.calculate_estimated_cost(10, 10, 1, 1, Provider.GEMINI, "base")
    assert service.calculate_estimated_cost(10, 10, 1, 1, "mistral", "base") == fallback


async def test_build_service_applies_model_overrides(credentials, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:9000")
    service = build_service(credentials, {"models": {"openai": {"story": "gpt-4o"}}})
    body = {"choices": [{"message": {"content": "{}"}}]}
    mock_post = AsyncMock(return_value=_mock_response(body))
    with patch("httpx.AsyncClient.post", mock_post):
        await service.generate_story_beat("prompt", Provider.OPENAI)
    assert mock_post.call_args[0][0] == "http://localhost:9000/v1/chat/completions"
    assert mock_post.call_args.kwargs["json"]["model"] == "gpt-4o"


async def test_unknown_model_is_not_a_credential_error(service: AIService) -> None:
    resp = _mock_response({"error": {"code": "model_not_found"}}, status=404)
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
        with pytest.raises(httpx.HTTPStatusError):
            await service.generate_story_beat("prompt", Provider.OPENAI)
