"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Usage normalization for chat-completion responses.

Each provider convention gets an explicit adapter. Clients declare which
convention they speak (`ChatClient.usage_format`); `auto` is only for
clients that genuinely cannot know.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Callable, Mapping

from .errors import LLMConfigurationError
from .types import TokenUsage

UsageAdapter = Callable[[Mapping[str, Any]], TokenUsage]


def to_plain_dict(value: Any) -> dict[str, Any]:
    """Best-effort conversion of SDK/provider objects into plain dictionaries."""
    if value is None:
        return {}

    if isinstance(value, Mapping):
        return dict(value)

    if hasattr(value, "model_dump"):
        try:
            dumped = value.model_dump()
            if isinstance(dumped, dict):
                return dumped
        except Exception:
            pass

    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)

    if hasattr(value, "__dict__"):
        return {k: v for k, v in vars(value).items() if not k.startswith("_")}

    return {}


def _count(value: Any) -> int:
    # bool is an int subclass; a flag is never a token count
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return 0
    return max(0, value)


@dataclass(frozen=True, slots=True)
class FieldUsageAdapter:
    """Maps one provider's input/output field names onto `TokenUsage`."""

    input_field: str
    output_field: str

    def matches(self, usage: Mapping[str, Any]) -> bool:
        return self.input_field in usage or self.output_field in usage

    def __call__(self, usage: Mapping[str, Any]) -> TokenUsage:
        return TokenUsage(
            input=_count(usage.get(self.input_field)),
            output=_count(usage.get(self.output_field)),
        )


OPENAI_USAGE = FieldUsageAdapter("prompt_tokens", "completion_tokens")
ANTHROPIC_USAGE = FieldUsageAdapter("input_tokens", "output_tokens")
AI_SDK_USAGE = FieldUsageAdapter("promptTokens", "completionTokens")

_KNOWN_FORMATS: tuple[FieldUsageAdapter, ...] = (OPENAI_USAGE, ANTHROPIC_USAGE, AI_SDK_USAGE)


def detect_usage(usage: Mapping[str, Any]) -> TokenUsage:
    """Normalize usage whose convention is unknown by trying each known adapter."""
    for adapter in _KNOWN_FORMATS:
        if adapter.matches(usage):
            return adapter(usage)
    return TokenUsage()


_ADAPTERS: dict[str, UsageAdapter] = {
    "openai": OPENAI_USAGE,
    "litellm": OPENAI_USAGE,
    "anthropic": ANTHROPIC_USAGE,
    "ai_sdk": AI_SDK_USAGE,
    "auto": detect_usage,
}


def register_usage_adapter(name: str, adapter: UsageAdapter, *, overwrite: bool = False) -> None:
    """Register a usage adapter for a provider convention."""
    key = name.strip().lower()
    if not key:
        raise ValueError("Usage format name must be non-empty")
    if (not overwrite) and key in _ADAPTERS:
        raise ValueError(f"Usage format already registered: {key}")
    _ADAPTERS[key] = adapter


def get_usage_adapter(usage_format: str) -> UsageAdapter:
    try:
        return _ADAPTERS[usage_format.strip().lower()]
    except KeyError:
        raise LLMConfigurationError(f"Unknown usage format: {usage_format}") from None


def normalize_usage(usage: Any, usage_format: str = "auto") -> TokenUsage:
    """
    Convert a provider usage payload into canonical `TokenUsage`.

    Missing or malformed payloads normalize to zero usage.
    """
    payload = to_plain_dict(usage)
    if not payload:
        return TokenUsage()
    return get_usage_adapter(usage_format)(payload)
