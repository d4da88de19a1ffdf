"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines custom exceptions for error handling in the llm package.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base exception for all chat-client related errors."""

    pass


class LLMConfigurationError(LLMError):
    pass


class LLMInvalidResponseError(LLMError):
    """
    The LLM returned a response that we couldn't parse or validate.
    This may indicate a schema mismatch, provider issue, or unexpected content.
    """

    pass
