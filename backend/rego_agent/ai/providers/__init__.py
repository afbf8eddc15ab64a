"""
Completion provider abstraction layer.
Supports OpenAI, Google Gemini, and Ollama behind one raw-text interface.
"""
from rego_agent.ai.providers.base import (
    AIAuthError,
    AICompletion,
    AIProvider,
    AIProviderError,
    AIRateLimitError,
    AITimeoutError,
)
from rego_agent.ai.providers.factory import get_ai_provider, reset_ai_provider, set_ai_provider

__all__ = [
    "AIAuthError",
    "AICompletion",
    "AIProvider",
    "AIProviderError",
    "AIRateLimitError",
    "AITimeoutError",
    "get_ai_provider",
    "reset_ai_provider",
    "set_ai_provider",
]
