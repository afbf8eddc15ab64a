"""
Abstract base class for completion providers.
All providers must implement complete(): prompt pair in, raw text out.
"""
import abc
import hashlib
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class AIProviderError(Exception):
    """Raised when a completion provider call fails. Maps to 503 unless subclassed."""

    code = "AI_PROVIDER_ERROR"
    status_code = 503

    def __init__(self, message: str, provider: str = "", model: str = ""):
        self.provider = provider
        self.model = model
        super().__init__(message)


class AIAuthError(AIProviderError):
    """Provider rejected the credential."""

    code = "AI_AUTH_FAILED"
    status_code = 502


class AIRateLimitError(AIProviderError):
    """Provider throttled the request."""

    code = "RATE_LIMITED"
    status_code = 429


class AITimeoutError(AIProviderError):
    """Provider did not answer within AI_TIMEOUT_SECONDS."""

    code = "AI_TIMEOUT"
    status_code = 504


class AICompletion(BaseModel):
    """Raw text completion from any provider, plus usage metadata."""
    content: str
    provider: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
    finish_reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_prompt_hash: str = ""

    @property
    def truncated(self) -> bool:
        return self.finish_reason in ("length", "MAX_TOKENS")

    @staticmethod
    def hash_prompt(prompt: str) -> str:
        """SHA-256 hash of the prompt for audit traceability."""
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


class AIProvider(abc.ABC):
    """Abstract completion provider. Subclasses must implement complete()."""

    provider_name: str = "base"

    @abc.abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> AICompletion:
        """
        Send a prompt pair to the LLM and return its raw text.

        Args:
            system_prompt: System-level instruction.
            user_prompt: User-level prompt content.
            max_tokens: Optional cap on output length (defaults to AI_MAX_TOKENS_GENERATION).

        Returns:
            AICompletion with the unparsed content and usage metadata.

        Raises:
            AIAuthError, AIRateLimitError, AITimeoutError or AIProviderError.
            Exactly one attempt is made; retries belong to the caller.
        """
        ...

    async def close(self) -> None:
        """Release network resources held by the provider."""
        return None
