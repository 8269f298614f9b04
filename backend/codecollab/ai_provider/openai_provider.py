"""OpenAI API provider implementation.

This module provides an AIProvider implementation that connects to
OpenAI's API using the official SDK. Responses are requested in JSON mode
so the reply is always a single JSON object.

Usage:
    provider = OpenAIProvider(api_key="sk-...")
    if provider.health_check():
        raw_json = provider.generate("add a /health route")
"""
import logging
from typing import Optional

from .base import AIProvider
from .prompts import SYSTEM_PROMPT, get_generation_prompt

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """AIProvider implementation using OpenAI's API.

    Attributes:
        api_key: OpenAI API key for authentication.
        model: OpenAI model to use (default: gpt-4o).
        max_tokens: Maximum tokens in a generated response.
    """

    name = "openai"
    DEFAULT_MODEL = "gpt-4o"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self._client: Optional[object] = None

    def _get_client(self) -> object:
        """Get or create the OpenAI client.

        Raises:
            ImportError: If openai package is not installed.
        """
        if self._client is None:
            try:
                import openai
                self._client = openai.OpenAI(api_key=self.api_key)
            except ImportError:
                raise ImportError(
                    "openai package is required for OpenAIProvider. "
                    "Install it with: pip install openai"
                )
        return self._client

    def health_check(self) -> bool:
        try:
            client = self._get_client()
            client.models.retrieve(self.model)
            return True
        except Exception as e:
            logger.warning(f"OpenAI health check failed: {e}")
            return False

    def generate(self, prompt: str) -> str:
        client = self._get_client()
        response = client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": get_generation_prompt(prompt)},
            ],
        )
        return response.choices[0].message.content.strip()
