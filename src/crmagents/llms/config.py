"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LLMConfig:
    # Models
    default_model: str

    # Reliability
    timeout_s: float

    # Defaults applied when the caller passes none
    temperature: float | None = None
    max_tokens: int | None = None

    api_base_url: str | None = None
    api_key: str | None = None

    @staticmethod
    def from_env() -> "LLMConfig":
        max_tokens = os.getenv("CRMAGENTS_LLM_MAX_TOKENS")
        temperature = os.getenv("CRMAGENTS_LLM_TEMPERATURE")
        return LLMConfig(
            default_model=os.getenv("CRMAGENTS_LLM_MODEL", "gpt-4.1-mini"),
            api_base_url=os.getenv("CRMAGENTS_LLM_API_BASE_URL"),
            api_key=os.getenv("CRMAGENTS_LLM_API_KEY"),
            timeout_s=float(os.getenv("CRMAGENTS_LLM_TIMEOUT_S", "30")),
            temperature=float(temperature) if temperature else None,
            max_tokens=int(max_tokens) if max_tokens else None,
        )
