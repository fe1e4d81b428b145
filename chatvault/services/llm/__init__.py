"""LLM provider factory."""

from chatvault.core.config import settings
from chatvault.services.llm.base import BaseLLMProvider
from chatvault.services.llm.resilient import ResilientProvider


def get_llm_provider() -> BaseLLMProvider:
    """Factory function that returns the configured LLM provider."""
    if settings.llm_provider == "gemini":
        from chatvault.services.llm.gemini import GeminiProvider
        inner: BaseLLMProvider = GeminiProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")

    return ResilientProvider(
        inner,
        timeout=settings.provider_timeout,
        max_attempts=settings.provider_max_attempts,
        backoff=settings.provider_retry_backoff,
    )
