"""
Ollama provider — local LLMs through Ollama's OpenAI-compatible /v1 endpoint.
"""
import re
from typing import Optional

from openai import AsyncOpenAI

from rego_agent.ai.providers.base import AICompletion
from rego_agent.ai.providers.openai_provider import OpenAIProvider
from rego_agent.config import settings
from rego_agent.core.logging import get_logger

logger = get_logger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)


class OllamaProvider(OpenAIProvider):
    """Same request shape as OpenAI, pointed at a local Ollama server."""

    provider_name = "ollama"

    def __init__(self):
        self._client = AsyncOpenAI(
            base_url=settings.OLLAMA_BASE_URL,
            api_key="ollama",  # Ollama ignores API key but client requires one
            timeout=settings.AI_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self._model = settings.OLLAMA_MODEL

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> AICompletion:
        completion = await super().complete(system_prompt, user_prompt, max_tokens)
        # Reasoning models (Qwen/DeepSeek) prepend <think> blocks
        stripped = _THINK_BLOCK.sub("", completion.content).strip()
        if stripped != completion.content:
            logger.debug(
                "Stripped reasoning block from Ollama output",
                extra={"event": "ollama_think_stripped", "model": self._model},
            )
        return completion.model_copy(update={"content": stripped})
