"""AI Provider module for the in-room AI assistant.

This module provides a unified interface for AI providers with two
implementations, ClaudeDirectProvider and OpenAIProvider, and the
coordinator that runs chat-triggered requests under a deadline.

Usage:
    from codecollab.ai_provider import (
        AIProvider, ClaudeDirectProvider, OpenAIProvider, AIRequestCoordinator
    )

    provider = ClaudeDirectProvider(api_key="sk-ant-...")
    coordinator = AIRequestCoordinator(store, registry, provider, projects)
    coordinator.submit(handle, "write a hello world function")
"""
from .base import AIProvider
from .claude_direct import ClaudeDirectProvider
from .coordinator import (
    AIGenerationFailure,
    AIRequestCoordinator,
    AIRequestError,
    AIResponseParseFailure,
    AITimeout,
    parse_ai_response,
)
from .openai_provider import OpenAIProvider
from .prompts import SYSTEM_PROMPT, get_generation_prompt
from .resolver import ProviderType, build_provider

__all__ = [
    "AIProvider",
    "ClaudeDirectProvider",
    "OpenAIProvider",
    "SYSTEM_PROMPT",
    "get_generation_prompt",
    "ProviderType",
    "build_provider",
    # Coordinator and its exceptions
    "AIRequestCoordinator",
    "AIRequestError",
    "AITimeout",
    "AIGenerationFailure",
    "AIResponseParseFailure",
    "parse_ai_response",
]
