"""Timeout and bounded retry around any provider."""

import asyncio
import logging

from chatvault.core.errors import ProviderFailure
from chatvault.services.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)


class ResilientProvider(BaseLLMProvider):
    """Wraps a provider with a per-attempt timeout and exponential backoff.

    Every failure of the last attempt surfaces as ProviderFailure.
    """

    def __init__(
        self,
        inner: BaseLLMProvider,
        timeout: float = 60.0,
        max_attempts: int = 2,
        backoff: float = 0.5,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.inner = inner
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff

    async def generate(self, api_key: str, prompt: str) -> str:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(self.inner.generate(api_key, prompt), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                last_error = ProviderFailure(f"Provider timed out after {self.timeout}s")
                last_error.__cause__ = e
            except ProviderFailure as e:
                last_error = e
            except Exception as e:
                last_error = ProviderFailure(f"Provider error: {e}")
                last_error.__cause__ = e

            logger.warning(f"Provider attempt {attempt}/{self.max_attempts} failed: {last_error}")
            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff * 2 ** (attempt - 1))

        assert last_error is not None
        raise last_error
