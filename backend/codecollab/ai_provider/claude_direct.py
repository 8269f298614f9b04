"""Claude Direct API provider implementation.

This module provides an AIProvider implementation that connects directly
to Anthropic's Claude API using the official SDK.

Usage:
    provider = ClaudeDirectProvider(api_key="sk-ant-...")
    if provider.health_check():
        raw_json = provider.generate("add a /health route")
"""
import logging
from typing import Optional

from .base import AIProvider
from .prompts import SYSTEM_PROMPT, get_generation_prompt

logger = logging.getLogger(__name__)


class ClaudeDirectProvider(AIProvider):
    """AIProvider implementation using Anthropic's Claude API directly.

    Attributes:
        api_key: Anthropic API key for authentication.
        model: Claude model to use.
        max_tokens: Maximum tokens in a generated response.
    """

    name = "anthropic"
    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> None:
        """Initialize the Claude Direct provider.

        Args:
            api_key: Anthropic API key for authentication.
            model: Claude model to use. Defaults to DEFAULT_MODEL.
            max_tokens: Maximum tokens in a generated response.
        """
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self._client: Optional[object] = None

    def _get_client(self) -> object:
        """Get or create the Anthropic client.

        Raises:
            ImportError: If anthropic package is not installed.
        """
        if self._client is None:
            try:
                import anthropic
                self._client = anthropic.Anthropic(api_key=self.api_key)
            except ImportError:
                raise ImportError(
                    "anthropic package is required for ClaudeDirectProvider. "
                    "Install it with: pip install anthropic"
                )
        return self._client

    def health_check(self) -> bool:
        """Check if the Claude Direct API is accessible.

        Attempts a minimal API call to verify connectivity.
        """
        try:
            client = self._get_client()
            client.messages.create(
                model=self.model,
                max_tokens=1,
                messages=[{"role": "user", "content": "hi"}],
            )
            return True
        except Exception as e:
            logger.warning(f"Claude Direct health check failed: {e}")
            return False

    def generate(self, prompt: str) -> str:
        client = self._get_client()
        response = client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": get_generation_prompt(prompt)}],
        )
        return response.content[0].text.strip()
