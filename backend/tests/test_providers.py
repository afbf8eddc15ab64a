"""
Tests for the completion provider layer.
Validates: config validation, error taxonomy, OpenAI/Ollama providers with a
mocked client, provider factory and singleton, audit logging, secret lookup.
"""
import asyncio
import json
import logging

import httpx
import pytest
from unittest.mock import patch, MagicMock, AsyncMock


def _openai_response(content, finish_reason="stop"):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30
    return response


def _http_response(status):
    return httpx.Response(status, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


# ═══════════════════════════════════════════════════════════════════
#  Config Validation
# ═══════════════════════════════════════════════════════════════════

class TestConfigValidation:
    """Config must raise when the selected provider has no credential."""

    def test_openai_provider_missing_key_raises(self):
        """OpenAI without key or secret ARN is rejected."""
        from pydantic import ValidationError
        from rego_agent.config import Settings
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None, AI_PROVIDER="openai", OPENAI_API_KEY="", OPENAI_SECRET_ARN="")
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_openai_secret_arn_is_enough(self):
        """A secret ARN stands in for the key."""
        from rego_agent.config import Settings
        s = Settings(
            _env_file=None,
            AI_PROVIDER="openai",
            OPENAI_API_KEY="",
            OPENAI_SECRET_ARN="arn:aws:secretsmanager:us-east-1:123:secret:openai",
        )
        assert s.OPENAI_SECRET_ARN.startswith("arn:")

    def test_gemini_provider_missing_key_raises(self):
        """Gemini without a key is rejected."""
        from pydantic import ValidationError
        from rego_agent.config import Settings
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None, AI_PROVIDER="gemini", GEMINI_API_KEY="")
        assert "GEMINI_API_KEY" in str(exc_info.value)

    def test_invalid_provider_raises(self):
        """Unknown provider names are rejected."""
        from pydantic import ValidationError
        from rego_agent.config import Settings
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None, AI_PROVIDER="claude", OPENAI_API_KEY="sk-test")
        assert "AI_PROVIDER must be one of" in str(exc_info.value)

    @pytest.mark.parametrize("field,value", [
        ("AI_TEMPERATURE", 5.0),
        ("AI_TEMPERATURE", -0.1),
        ("AI_TIMEOUT_SECONDS", 0),
        ("AI_MAX_TOKENS_GENERATION", 0),
    ])
    def test_out_of_range_limits_raise(self, field, value):
        """Temperature, timeout and token limits are bounded."""
        from pydantic import ValidationError
        from rego_agent.config import Settings
        with pytest.raises(ValidationError):
            Settings(_env_file=None, AI_PROVIDER="openai", OPENAI_API_KEY="sk-test", **{field: value})

    def test_defaults(self):
        """Default model and limits."""
        from rego_agent.config import Settings
        s = Settings(_env_file=None, AI_PROVIDER="openai", OPENAI_API_KEY="sk-valid")
        assert s.AI_TEMPERATURE == 0.1
        assert s.AI_MAX_TOKENS_GENERATION == 2000
        assert s.AI_TIMEOUT_SECONDS == 29.0
        assert s.active_ai_model == "gpt-4o-mini"

    def test_active_model_follows_provider(self):
        """The active model matches the provider."""
        from rego_agent.config import Settings
        s = Settings(_env_file=None, AI_PROVIDER="ollama", OLLAMA_MODEL="llama3")
        assert s.active_ai_model == "llama3"

    def test_cors_origins_list(self):
        """CORS origins are split and trimmed."""
        from rego_agent.config import Settings
        s = Settings(_env_file=None, OPENAI_API_KEY="sk", CORS_ORIGINS="http://a, http://b ,")
        assert s.cors_origins_list == ["http://a", "http://b"]


# ═══════════════════════════════════════════════════════════════════
#  AICompletion / error taxonomy
# ═══════════════════════════════════════════════════════════════════

class TestAICompletion:
    """The completion result model."""

    def test_prompt_hash(self):
        """Prompt hashes are stable SHA-256 digests."""
        from rego_agent.ai.providers.base import AICompletion
        h1 = AICompletion.hash_prompt("test prompt")
        h2 = AICompletion.hash_prompt("test prompt")
        h3 = AICompletion.hash_prompt("different prompt")
        assert h1 == h2
        assert h1 != h3
        assert len(h1) == 64

    @pytest.mark.parametrize("reason,truncated", [
        ("stop", False),
        (None, False),
        ("length", True),
        ("MAX_TOKENS", True),
    ])
    def test_truncated(self, reason, truncated):
        """Length finish reasons mark truncation."""
        from rego_agent.ai.providers.base import AICompletion
        completion = AICompletion(content="x", provider="openai", model="m", finish_reason=reason)
        assert completion.truncated is truncated


class TestErrorTaxonomy:
    """Provider error classes and their mapping."""

    def test_codes_and_statuses(self):
        """Each error class has its code and status."""
        from rego_agent.ai.providers import AIAuthError, AIProviderError, AIRateLimitError, AITimeoutError
        assert (AIProviderError.code, AIProviderError.status_code) == ("AI_PROVIDER_ERROR", 503)
        assert (AIAuthError.code, AIAuthError.status_code) == ("AI_AUTH_FAILED", 502)
        assert (AIRateLimitError.code, AIRateLimitError.status_code) == ("RATE_LIMITED", 429)
        assert (AITimeoutError.code, AITimeoutError.status_code) == ("AI_TIMEOUT", 504)

    def test_subclasses_share_base(self):
        """Subclasses are AIProviderError and keep context."""
        from rego_agent.ai.providers import AIAuthError, AIProviderError
        err = AIAuthError("bad key", provider="openai", model="gpt-4o-mini")
        assert isinstance(err, AIProviderError)
        assert err.provider == "openai"
        assert str(err) == "bad key"

    def test_map_openai_errors(self):
        """OpenAI SDK errors map onto the taxonomy."""
        import openai
        from rego_agent.ai.providers import AIAuthError, AIProviderError, AIRateLimitError, AITimeoutError
        from rego_agent.ai.providers.openai_provider import map_openai_error

        rate = openai.RateLimitError("slow", response=_http_response(429), body=None)
        auth = openai.AuthenticationError("bad", response=_http_response(401), body=None)
        timeout = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com"))

        assert isinstance(map_openai_error(rate, "openai", "m"), AIRateLimitError)
        assert isinstance(map_openai_error(auth, "openai", "m"), AIAuthError)
        assert isinstance(map_openai_error(timeout, "openai", "m"), AITimeoutError)
        assert isinstance(map_openai_error(asyncio.TimeoutError(), "openai", "m"), AITimeoutError)

        other = map_openai_error(ValueError("weird"), "openai", "m")
        assert type(other) is AIProviderError
        assert other.code == "AI_PROVIDER_ERROR"

    def test_map_gemini_errors(self):
        """Google API errors map onto the taxonomy."""
        from google.api_core import exceptions as google_exceptions
        from rego_agent.ai.providers import AIAuthError, AIRateLimitError, AITimeoutError
        from rego_agent.ai.providers.gemini_provider import map_gemini_error

        assert isinstance(map_gemini_error(google_exceptions.ResourceExhausted("quota"), "g"), AIRateLimitError)
        assert isinstance(map_gemini_error(google_exceptions.PermissionDenied("no"), "g"), AIAuthError)
        assert isinstance(map_gemini_error(google_exceptions.DeadlineExceeded("late"), "g"), AITimeoutError)


# ═══════════════════════════════════════════════════════════════════
#  OpenAI / Ollama providers
# ═══════════════════════════════════════════════════════════════════

class TestOpenAIProvider:
    """OpenAI provider with a mocked client."""

    @pytest.mark.asyncio
    async def test_complete_returns_raw_text(self):
        """The raw message text and usage are returned."""
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(return_value=_openai_response('{"policy": "p"}'))

        completion = await provider.complete("system", "user", max_tokens=123)

        assert completion.content == '{"policy": "p"}'
        assert completion.provider == "openai"
        assert completion.total_tokens == 30
        assert completion.truncated is False
        kwargs = provider._client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 123
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]

    @pytest.mark.asyncio
    async def test_length_finish_reason_marks_truncated(self):
        """A length stop marks the completion truncated."""
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(
            return_value=_openai_response('{"policy": "pack', finish_reason="length")
        )

        completion = await provider.complete("s", "u")

        assert completion.truncated is True

    @pytest.mark.asyncio
    async def test_sdk_errors_are_mapped_and_audited(self):
        """SDK errors are mapped and audited as failures."""
        import openai
        from rego_agent.ai.providers import AIRateLimitError
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(
            side_effect=openai.RateLimitError("slow", response=_http_response(429), body=None)
        )

        with patch("rego_agent.ai.providers.openai_provider.log_llm_call") as audit:
            with pytest.raises(AIRateLimitError):
                await provider.complete("s", "u")

        record = audit.call_args.args[0]
        assert record.success is False
        assert record.error_code == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_single_attempt_only(self):
        """A timeout is not retried."""
        from rego_agent.ai.providers import AITimeoutError
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(side_effect=asyncio.TimeoutError())

        with pytest.raises(AITimeoutError):
            await provider.complete("s", "u")
        assert provider._client.chat.completions.create.await_count == 1

    def test_missing_key_is_auth_error(self):
        """No key at all is an auth error."""
        from rego_agent.ai.providers import AIAuthError
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        with patch("rego_agent.ai.providers.openai_provider.resolve_openai_api_key", return_value=""):
            with pytest.raises(AIAuthError):
                OpenAIProvider()

    def test_secret_failure_is_auth_error(self):
        """A failed secret lookup is an auth error."""
        from rego_agent.ai.providers import AIAuthError
        from rego_agent.ai.providers.openai_provider import OpenAIProvider
        from rego_agent.core.secrets import SecretLookupError
        with patch(
            "rego_agent.ai.providers.openai_provider.resolve_openai_api_key",
            side_effect=SecretLookupError("denied"),
        ):
            with pytest.raises(AIAuthError):
                OpenAIProvider()


class TestOllamaProvider:
    """Ollama through its OpenAI-compatible endpoint."""

    @pytest.mark.asyncio
    async def test_think_block_stripped(self):
        """Think blocks are removed from the reply."""
        from rego_agent.ai.providers.ollama_provider import OllamaProvider
        provider = OllamaProvider()
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(
            return_value=_openai_response('<think>\nhmm\n</think>\n{"policy": "package p"}')
        )

        completion = await provider.complete("s", "u")

        assert completion.content == '{"policy": "package p"}'
        assert completion.provider == "ollama"


# ═══════════════════════════════════════════════════════════════════
#  Factory
# ═══════════════════════════════════════════════════════════════════

class TestFactory:
    """Provider selection and the process-wide instance."""

    def test_singleton_is_reused(self):
        """The same provider is returned each time."""
        from rego_agent.ai.providers import get_ai_provider, set_ai_provider
        set_ai_provider(None)
        try:
            first = get_ai_provider()
            second = get_ai_provider()
            assert first is second
            assert first.provider_name == "openai"
        finally:
            set_ai_provider(None)

    @pytest.mark.asyncio
    async def test_reset_closes_provider(self):
        """Reset closes and drops the instance."""
        from rego_agent.ai.providers import get_ai_provider, reset_ai_provider, set_ai_provider
        provider = MagicMock()
        provider.provider_name = "mock"
        provider.close = AsyncMock()
        set_ai_provider(provider)

        await reset_ai_provider()

        provider.close.assert_awaited_once()
        set_ai_provider(MagicMock(provider_name="other"))
        assert get_ai_provider() is not provider
        set_ai_provider(None)

    def test_unsupported_provider_raises(self):
        """Unknown providers raise."""
        from rego_agent.ai.providers import AIProviderError
        from rego_agent.ai.providers.factory import create_ai_provider
        from rego_agent.config import settings
        with patch.object(settings, "AI_PROVIDER", "claude"):
            with pytest.raises(AIProviderError, match="Unsupported AI provider"):
                create_ai_provider()

    def test_auto_skips_failing_provider(self):
        """Auto mode moves past a provider that fails to build."""
        from rego_agent.ai.providers import AIAuthError
        from rego_agent.ai.providers.factory import create_ai_provider
        from rego_agent.config import settings
        gemini = MagicMock(provider_name="gemini")
        with patch.object(settings, "AI_PROVIDER", "auto"), \
                patch.object(settings, "GEMINI_API_KEY", "g-key"), \
                patch("rego_agent.ai.providers.factory._make_openai", side_effect=AIAuthError("no key")), \
                patch("rego_agent.ai.providers.factory._make_gemini", return_value=gemini):
            assert create_ai_provider() is gemini

    def test_auto_all_failing_raises(self):
        """Auto mode fails when every provider fails."""
        from rego_agent.ai.providers import AIAuthError, AIProviderError
        from rego_agent.ai.providers.factory import create_ai_provider
        from rego_agent.config import settings
        with patch.object(settings, "AI_PROVIDER", "auto"), \
                patch.object(settings, "GEMINI_API_KEY", ""), \
                patch.object(settings, "OLLAMA_BASE_URL", ""), \
                patch("rego_agent.ai.providers.factory._make_openai", side_effect=AIAuthError("no key")):
            with pytest.raises(AIProviderError, match="all providers failed"):
                create_ai_provider()


# ═══════════════════════════════════════════════════════════════════
#  LLM Audit Logger
# ═══════════════════════════════════════════════════════════════════

class TestLLMCallRecord:
    """Audit records for provider calls."""

    def test_creates_valid_record(self):
        """A successful call record validates."""
        from rego_agent.ai.llm_audit_logger import LLMCallRecord
        record = LLMCallRecord(
            provider="openai",
            model="gpt-4o-mini",
            prompt_hash="abc123",
            prompt_length=500,
            system_prompt_length=200,
            success=True,
            latency_ms=150.0,
            total_tokens=300,
            finish_reason="stop",
        )
        assert record.success is True
        assert record.operation == "complete"
        assert record.timestamp is not None

    def test_failure_is_logged_at_error(self, caplog):
        """Failed calls log at ERROR with their code."""
        from rego_agent.ai.llm_audit_logger import LLMCallRecord, log_llm_call
        record = LLMCallRecord(
            provider="gemini",
            model="gemini-1.5-pro",
            prompt_hash="def456",
            prompt_length=1000,
            system_prompt_length=300,
            success=False,
            error="API key invalid",
            error_code="AI_AUTH_FAILED",
        )
        with caplog.at_level(logging.INFO, logger="rego_agent.ai.llm_audit_logger"):
            log_llm_call(record)

        entry = caplog.records[-1]
        assert entry.levelno == logging.ERROR
        assert entry.event == "llm_audit"
        assert entry.error_code == "AI_AUTH_FAILED"


class TestJSONFormatter:
    """Single-line JSON log output."""

    def test_extras_are_merged(self):
        """Extra fields land in the JSON line."""
        from rego_agent.core.logging import JSONFormatter
        record = logging.LogRecord("rego_agent.test", logging.INFO, __file__, 1, "hello", None, None)
        record.event = "ai_call"
        record.strategy = object()

        line = json.loads(JSONFormatter().format(record))

        assert line["message"] == "hello"
        assert line["level"] == "INFO"
        assert line["event"] == "ai_call"
        assert line["strategy"].startswith("<object")


# ═══════════════════════════════════════════════════════════════════
#  Secrets Manager lookup
# ═══════════════════════════════════════════════════════════════════

class TestSecretLookup:
    """OpenAI key lookup in Secrets Manager."""

    def setup_method(self):
        from rego_agent.core.secrets import fetch_secret_api_key
        fetch_secret_api_key.cache_clear()

    def test_reads_api_key_once(self):
        """The secret is fetched once per process."""
        from rego_agent.core.secrets import fetch_secret_api_key
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": '{"api_key": "sk-from-secret"}'}
        with patch("rego_agent.core.secrets.boto3.client", return_value=client) as factory:
            assert fetch_secret_api_key("arn:secret", "us-east-1") == "sk-from-secret"
            assert fetch_secret_api_key("arn:secret", "us-east-1") == "sk-from-secret"
        factory.assert_called_once_with("secretsmanager", region_name="us-east-1")
        client.get_secret_value.assert_called_once_with(SecretId="arn:secret")

    @pytest.mark.parametrize("secret_string", ['{"other": 1}', "not json", "[]"])
    def test_bad_secret_payload(self, secret_string):
        """Malformed secret payloads raise."""
        from rego_agent.core.secrets import SecretLookupError, fetch_secret_api_key
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": secret_string}
        with patch("rego_agent.core.secrets.boto3.client", return_value=client):
            with pytest.raises(SecretLookupError):
                fetch_secret_api_key("arn:bad", "us-east-1")

    def test_client_error(self):
        """AWS client errors raise SecretLookupError."""
        from botocore.exceptions import ClientError
        from rego_agent.core.secrets import SecretLookupError, fetch_secret_api_key
        client = MagicMock()
        client.get_secret_value.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetSecretValue"
        )
        with patch("rego_agent.core.secrets.boto3.client", return_value=client):
            with pytest.raises(SecretLookupError):
                fetch_secret_api_key("arn:denied", "us-east-1")

    def test_settings_key_wins(self):
        """A configured key skips the lookup."""
        from rego_agent.config import settings
        from rego_agent.core.secrets import resolve_openai_api_key
        with patch.object(settings, "OPENAI_API_KEY", "sk-env"), \
                patch("rego_agent.core.secrets.fetch_secret_api_key") as fetch:
            assert resolve_openai_api_key() == "sk-env"
        fetch.assert_not_called()

    def test_falls_back_to_secret(self):
        """An empty key falls back to the secret."""
        from rego_agent.config import settings
        from rego_agent.core.secrets import resolve_openai_api_key
        with patch.object(settings, "OPENAI_API_KEY", ""), \
                patch.object(settings, "OPENAI_SECRET_ARN", "arn:secret"), \
                patch("rego_agent.core.secrets.fetch_secret_api_key", return_value="sk-secret") as fetch:
            assert resolve_openai_api_key() == "sk-secret"
        fetch.assert_called_once_with("arn:secret", settings.AWS_REGION)
