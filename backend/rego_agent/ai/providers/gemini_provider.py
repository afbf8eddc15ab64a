"""
Google Gemini provider — implements AIProvider for gemini-1.5-pro / gemini-2.0-flash.
Temperature and output cap from config, all calls audited.
"""
import asyncio
import time
from typing import Optional

from rego_agent.ai.providers.base import (
    AIAuthError,
    AICompletion,
    AIProvider,
    AIProviderError,
    AIRateLimitError,
    AITimeoutError,
)
from rego_agent.config import settings
from rego_agent.core.logging import get_logger
from rego_agent.ai.llm_audit_logger import log_llm_call, LLMCallRecord

logger = get_logger(__name__)


def map_gemini_error(exc: Exception, model: str) -> AIProviderError:
    """Translate google-api-core exceptions into the provider error taxonomy."""
    from google.api_core import exceptions as google_exceptions

    if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return AIAuthError(f"Gemini rejected credentials: {exc}", provider="gemini", model=model)
    if isinstance(exc, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return AIRateLimitError(f"Gemini rate limit exceeded: {exc}", provider="gemini", model=model)
    if isinstance(exc, (google_exceptions.DeadlineExceeded, asyncio.TimeoutError)):
        return AITimeoutError(
            f"Gemini call timed out after {settings.AI_TIMEOUT_SECONDS}s",
            provider="gemini",
            model=model,
        )
    return AIProviderError(f"Gemini call failed: {exc}", provider="gemini", model=model)


class GeminiProvider(AIProvider):
    """Google Gemini provider returning raw text."""

    provider_name = "gemini"

    def __init__(self):
        try:
            import google.generativeai as genai
        except ImportError:
            raise AIProviderError(
                "google-generativeai package not installed. Run: pip install google-generativeai",
                provider="gemini",
                model=settings.AI_MODEL_GEMINI,
            )

        if not settings.GEMINI_API_KEY:
            raise AIAuthError(
                "GEMINI_API_KEY is not configured",
                provider="gemini",
                model=settings.AI_MODEL_GEMINI,
            )

        genai.configure(api_key=settings.GEMINI_API_KEY)
        self._model_name = settings.AI_MODEL_GEMINI
        self._genai = genai

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> AICompletion:
        start = time.perf_counter()
        prompt_hash = AICompletion.hash_prompt(user_prompt)
        temperature = settings.AI_TEMPERATURE
        audit = dict(
            provider="gemini",
            model=self._model_name,
            prompt_hash=prompt_hash,
            prompt_length=len(user_prompt),
            system_prompt_length=len(system_prompt),
            temperature=temperature,
        )

        try:
            model = self._genai.GenerativeModel(
                model_name=self._model_name,
                system_instruction=system_prompt,
                generation_config=self._genai.GenerationConfig(
                    temperature=temperature,
                    max_output_tokens=max_tokens or settings.AI_MAX_TOKENS_GENERATION,
                ),
            )
            response = await asyncio.wait_for(
                model.generate_content_async(user_prompt),
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
            content = response.text or ""
        except Exception as exc:
            error = map_gemini_error(exc, self._model_name)
            latency = (time.perf_counter() - start) * 1000
            log_llm_call(LLMCallRecord(
                **audit,
                success=False,
                latency_ms=round(latency, 2),
                error=str(error),
                error_code=error.code,
            ))
            raise error from exc

        latency = (time.perf_counter() - start) * 1000

        finish_reason = None
        if getattr(response, "candidates", None):
            reason = getattr(response.candidates[0], "finish_reason", None)
            finish_reason = getattr(reason, "name", None) or (str(reason) if reason else None)

        prompt_tokens = 0
        completion_tokens = 0
        total_tokens = 0
        if getattr(response, "usage_metadata", None):
            prompt_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
            completion_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0
            total_tokens = getattr(response.usage_metadata, "total_token_count", 0) or 0

        log_llm_call(LLMCallRecord(
            **audit,
            success=True,
            latency_ms=round(latency, 2),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            finish_reason=finish_reason,
        ))

        return AICompletion(
            content=content,
            provider="gemini",
            model=self._model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            latency_ms=round(latency, 2),
            finish_reason=finish_reason,
            request_prompt_hash=prompt_hash,
        )
