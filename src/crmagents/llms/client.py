"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Chat-completion client contract and the LiteLLM-backed implementation.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from .config import LLMConfig
from .errors import LLMConfigurationError, LLMInvalidResponseError
from .normalization import to_plain_dict
from .types import ChatMessage, ChatResponse


@runtime_checkable
class ChatClient(Protocol):
    """
    Minimal chat-completion contract consumed by the agent gateway.

    `usage_format` names the usage adapter (see `normalization`) matching the
    field names this client reports in `ChatResponse.usage`.
    """

    usage_format: str

    async def generate_chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse: ...


class LiteLLMChatClient:
    """Chat client dispatching to `litellm.acompletion`."""

    usage_format = "openai"

    def __init__(self, config: LLMConfig | None = None, *, model: str | None = None) -> None:
        self.config = config or LLMConfig.from_env()
        self.model = model or self.config.default_model

    @property
    def provider_id(self) -> str:
        return "litellm"

    async def generate_chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        try:
            from litellm import acompletion
        except Exception as e:  # pragma: no cover - environment dependent
            raise LLMConfigurationError(
                "litellm is not installed. Install the dependency to use LiteLLMChatClient."
            ) from e

        payload = self._build_payload(messages, system_prompt, temperature=temperature, max_tokens=max_tokens)
        response = await acompletion(**payload)
        return self._to_chat_response(response)

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        *,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        wire_messages: list[dict[str, str]] = []
        if system_prompt:
            wire_messages.append({"role": "system", "content": system_prompt})
        wire_messages.extend({"role": m.role, "content": m.content} for m in messages)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": wire_messages,
            "timeout": self.config.timeout_s,
        }
        temperature = temperature if temperature is not None else self.config.temperature
        if temperature is not None:
            payload["temperature"] = temperature
        max_tokens = max_tokens if max_tokens is not None else self.config.max_tokens
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if self.config.api_base_url:
            payload["api_base"] = self.config.api_base_url
        if self.config.api_key:
            payload["api_key"] = self.config.api_key
        return payload

    def _to_chat_response(self, response: Any) -> ChatResponse:
        raw = to_plain_dict(response)
        choices = raw.get("choices")
        if not isinstance(choices, list) or not choices:
            raise LLMInvalidResponseError("Chat completion returned no choices")

        first = to_plain_dict(choices[0])
        message = to_plain_dict(first.get("message"))
        text = message.get("content")

        usage = to_plain_dict(raw.get("usage"))
        model = raw.get("model")
        return ChatResponse(
            text=text if isinstance(text, str) else "",
            usage=usage or None,
            model=model if isinstance(model, str) else self.model,
            raw=raw,
        )
