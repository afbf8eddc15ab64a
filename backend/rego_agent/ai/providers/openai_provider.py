"""
OpenAI provider — implements AIProvider for gpt-4o / gpt-4o-mini.
Fixed low temperature, bounded output, every call audited.
"""
import asyncio
import time
from typing import Optional

import openai
from openai import AsyncOpenAI

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
from rego_agent.core.secrets import SecretLookupError, resolve_openai_api_key
from rego_agent.ai.llm_audit_logger import log_llm_call, LLMCallRecord

logger = get_logger(__name__)


def map_openai_error(exc: Exception, provider: str, model: str) -> AIProviderError:
    """Translate an openai SDK exception into the provider error taxonomy."""
    if isinstance(exc, AIProviderError):
        return exc
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AIAuthError(f"{provider} rejected credentials: {exc}", provider=provider, model=model)
    if isinstance(exc, openai.RateLimitError):
        return AIRateLimitError(f"{provider} rate limit exceeded: {exc}", provider=provider, model=model)
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError)):
        return AITimeoutError(
            f"{provider} call timed out after {settings.AI_TIMEOUT_SECONDS}s",
            provider=provider,
            model=model,
        )
    return AIProviderError(f"{provider} call failed: {exc}", provider=provider, model=model)


class OpenAIProvider(AIProvider):
    """OpenAI ChatCompletion provider returning raw text."""

    provider_name = "openai"

    def __init__(self, api_key: Optional[str] = None):
        try:
            api_key = api_key or resolve_openai_api_key()
        except SecretLookupError as exc:
            raise AIAuthError(str(exc), provider="openai", model=settings.AI_MODEL_OPENAI) from exc

        if not api_key:
            raise AIAuthError(
                "OPENAI_API_KEY is not configured",
                provider="openai",
                model=settings.AI_MODEL_OPENAI,
            )
        self._client = AsyncOpenAI(api_key=api_key, timeout=settings.AI_TIMEOUT_SECONDS, max_retries=0)
        self._model = settings.AI_MODEL_OPENAI

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
            provider=self.provider_name,
            model=self._model,
            prompt_hash=prompt_hash,
            prompt_length=len(user_prompt),
            system_prompt_length=len(system_prompt),
            temperature=temperature,
        )

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=temperature,
                    max_tokens=max_tokens or settings.AI_MAX_TOKENS_GENERATION,
                ),
                timeout=settings.AI_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            error = map_openai_error(exc, self.provider_name, self._model)
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
        choice = response.choices[0]
        content = choice.message.content or ""

        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        total_tokens = usage.total_tokens if usage else 0

        log_llm_call(LLMCallRecord(
            **audit,
            success=True,
            latency_ms=round(latency, 2),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            finish_reason=choice.finish_reason,
        ))

        return AICompletion(
            content=content,
            provider=self.provider_name,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            latency_ms=round(latency, 2),
            finish_reason=choice.finish_reason,
            request_prompt_hash=prompt_hash,
        )

    async def close(self) -> None:
        await self._client.close()
