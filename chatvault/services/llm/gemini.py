"""Google Gemini LLM provider."""

import logging

from google import genai
from google.genai import errors

from chatvault.core.config import settings
from chatvault.core.crypto import fingerprint
from chatvault.core.errors import ProviderFailure
from chatvault.services.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)


class GeminiProvider(BaseLLMProvider):
    def __init__(self, model: str | None = None):
        self.model = model or settings.gemini_model

    async def generate(self, api_key: str, prompt: str) -> str:
        logger.debug(f"Gemini request: model={self.model} key={fingerprint(api_key)} prompt_chars={len(prompt)}")
        # Client per call since the credential differs from user to user; the
        # async client owns a connection pool and is closed on the way out
        try:
            async with genai.Client(api_key=api_key).aio as client:
                response = await client.models.generate_content(
                    model=self.model,
                    contents=[{"role": "user", "parts": [{"text": prompt}]}],
                )
        except errors.APIError as e:
            raise ProviderFailure(f"Gemini API error: {e.code} {e.message}") from e

        text = response.text
        if not text:
            raise ProviderFailure("No response from AI")
        return text
