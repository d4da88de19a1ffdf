"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides the chat-client layer used by agents: types, clients,
usage normalization and JSON helpers.
"""

from __future__ import annotations

from .client import ChatClient, LiteLLMChatClient
from .config import LLMConfig
from .errors import LLMConfigurationError, LLMError, LLMInvalidResponseError
from .normalization import (
    AI_SDK_USAGE,
    ANTHROPIC_USAGE,
    OPENAI_USAGE,
    FieldUsageAdapter,
    detect_usage,
    get_usage_adapter,
    normalize_usage,
    register_usage_adapter,
)
from .types import ChatMessage, ChatResponse, TokenUsage
from .utils import extract_json_object, parse_json_response

__all__ = [
    "ChatClient",
    "LiteLLMChatClient",
    "LLMConfig",
    "LLMError",
    "LLMConfigurationError",
    "LLMInvalidResponseError",
    "ChatMessage",
    "ChatResponse",
    "TokenUsage",
    "FieldUsageAdapter",
    "OPENAI_USAGE",
    "ANTHROPIC_USAGE",
    "AI_SDK_USAGE",
    "detect_usage",
    "get_usage_adapter",
    "normalize_usage",
    "register_usage_adapter",
    "extract_json_object",
    "parse_json_response",
]
