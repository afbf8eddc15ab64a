"""
AI provider factory and process-wide provider handle.

The handle is built lazily on first use and reused for every request in the
process. set_ai_provider() injects a replacement (tests, alternative
clients); reset_ai_provider() tears it down on shutdown.

Providers: openai, gemini, ollama, auto.
Auto mode tries OpenAI → Gemini → Ollama and keeps the first one that can be
constructed. It does not fall back between providers per request.
"""
from typing import Optional

from rego_agent.ai.providers.base import AIProvider, AIProviderError
from rego_agent.config import settings
from rego_agent.core.logging import get_logger

logger = get_logger(__name__)

_provider: Optional[AIProvider] = None


def get_ai_provider() -> AIProvider:
    """Return the process-wide provider, constructing it on first call."""
    global _provider
    if _provider is None:
        _provider = create_ai_provider()
        logger.info("AI provider initialized", extra={
            "event": "ai_provider_init",
            "provider": _provider.provider_name,
            "model": settings.active_ai_model,
        })
    return _provider


def set_ai_provider(provider: Optional[AIProvider]) -> None:
    """Replace the process-wide provider (None clears it without closing)."""
    global _provider
    _provider = provider


async def reset_ai_provider() -> None:
    """Close and drop the process-wide provider."""
    global _provider
    provider, _provider = _provider, None
    if provider is not None:
        await provider.close()
        logger.info("AI provider closed", extra={
            "event": "ai_provider_closed", "provider": provider.provider_name,
        })


def create_ai_provider() -> AIProvider:
    """
    Instantiate the provider named by AI_PROVIDER.
    Raises AIProviderError if provider is unsupported or misconfigured.
    """
    provider_name = settings.AI_PROVIDER.lower().strip()

    if provider_name == "openai":
        return _make_openai()

    elif provider_name == "gemini":
        return _make_gemini()

    elif provider_name == "ollama":
        return _make_ollama()

    elif provider_name == "auto":
        return _make_auto()

    else:
        raise AIProviderError(
            f"Unsupported AI provider: '{provider_name}'. "
            f"Must be 'openai', 'gemini', 'ollama', or 'auto'.",
            provider=provider_name,
        )


# ═══════════════════════════════════════════════════════════════════
#  Provider constructors
# ═══════════════════════════════════════════════════════════════════

def _make_openai() -> AIProvider:
    from rego_agent.ai.providers.openai_provider import OpenAIProvider
    return OpenAIProvider()


def _make_gemini() -> AIProvider:
    from rego_agent.ai.providers.gemini_provider import GeminiProvider
    return GeminiProvider()


def _make_ollama() -> AIProvider:
    from rego_agent.ai.providers.ollama_provider import OllamaProvider
    return OllamaProvider()


def _make_auto() -> AIProvider:
    """Return the first provider that can be constructed, in OpenAI → Gemini → Ollama order."""
    candidates = []
    if settings.OPENAI_API_KEY or settings.OPENAI_SECRET_ARN:
        candidates.append(("openai", _make_openai))
    if settings.GEMINI_API_KEY:
        candidates.append(("gemini", _make_gemini))
    if settings.OLLAMA_BASE_URL:
        candidates.append(("ollama", _make_ollama))

    errors = []
    for name, factory in candidates:
        try:
            provider = factory()
        except AIProviderError as exc:
            errors.append(f"{name}: {exc}")
            logger.warning(f"Auto-provider: {name} failed: {exc}", extra={
                "event": "auto_provider_skip", "provider": name,
            })
            continue
        logger.info(f"Auto-provider selected {name}", extra={
            "event": "auto_provider_select", "provider": name,
        })
        return provider

    raise AIProviderError(
        f"Auto-provider: all providers failed. Errors: {'; '.join(errors) or 'none configured'}",
        provider="auto",
    )
