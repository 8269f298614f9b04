"""AIProvider abstract interface for the in-room AI assistant.

Each provider turns a user prompt into a JSON object string describing the
answer (``text``) and, for code requests, a project file tree. Providers are
synchronous; the coordinator runs them in a worker thread under a deadline.

Usage:
    from codecollab.ai_provider import ClaudeDirectProvider

    provider = ClaudeDirectProvider(api_key="...")
    if provider.health_check():
        raw_json = provider.generate("write a hello world express server")
"""
from abc import ABC, abstractmethod


class AIProvider(ABC):
    """Abstract base class for AI provider implementations.

    Methods:
        health_check: Verify the provider is operational.
        generate: Produce a structured JSON answer for a prompt.
    """

    #: Short name used in logs and error messages
    name: str = "provider"

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the AI provider is healthy and operational.

        Returns:
            bool: True if the provider is operational, False otherwise.
        """
        pass

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Generate a response for a prompt from a chat room.

        Args:
            prompt: The user's request with the AI directive removed.

        Returns:
            str: The model's raw response, expected to be a JSON object with
                at least a ``text`` field and optionally a ``fileTree``.

        Raises:
            Exception: If the API call fails.
        """
        pass
