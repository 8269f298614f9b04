"""Provider resolution from configuration.

Builds the single AI provider named in ``ai.provider`` using the matching API
key from the secrets file. Returns None when AI is disabled or the key is
missing; the coordinator then answers AI requests with an error message
instead of calling out.

Usage:
    from codecollab.ai_provider.resolver import build_provider
    from codecollab.config import get_config

    provider = build_provider(get_config())
"""
import logging
from enum import Enum
from typing import Optional

from codecollab.config import AppSettings

from .base import AIProvider
from .claude_direct import ClaudeDirectProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported AI provider types."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    NONE = "none"


def build_provider(settings: AppSettings) -> Optional[AIProvider]:
    """Create the configured AI provider.

    Args:
        settings: Full application settings.

    Returns:
        The provider instance, or None if AI is disabled or unconfigured.
    """
    ai = settings.ai
    provider_type = ProviderType(ai.provider)

    if provider_type == ProviderType.NONE:
        logger.info("AI provider disabled in config")
        return None

    if provider_type == ProviderType.ANTHROPIC:
        api_key = settings.secrets.anthropic.api_key
        if not api_key:
            logger.warning("AI provider 'anthropic' selected but no API key configured")
            return None
        provider: AIProvider = ClaudeDirectProvider(
            api_key=api_key, model=ai.model, max_tokens=ai.max_tokens
        )
    else:
        api_key = settings.secrets.openai.api_key
        if not api_key:
            logger.warning("AI provider 'openai' selected but no API key configured")
            return None
        provider = OpenAIProvider(api_key=api_key, model=ai.model, max_tokens=ai.max_tokens)

    logger.info(f"AI provider ready: {provider.name} (model={provider.model})")
    return provider
