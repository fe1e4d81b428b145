"""Abstract LLM provider interface. All providers must implement this."""

from abc import ABC, abstractmethod


class BaseLLMProvider(ABC):
    @abstractmethod
    async def generate(self, api_key: str, prompt: str) -> str:
        """Send a single prompt with the given credential and return the reply text.

        Raises ProviderFailure on a non-success response or an empty reply.
        """
        ...
