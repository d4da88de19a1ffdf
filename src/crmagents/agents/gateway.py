"""
Budget-checked access to the chat client.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar, overload

from pydantic import BaseModel, ValidationError

from ..llms.client import ChatClient
from ..llms.errors import LLMInvalidResponseError
from ..llms.normalization import normalize_usage
from ..llms.types import ChatMessage
from ..llms.utils import clamp_str, parse_json_response, with_json_instruction
from .config import AgentLimits
from .errors import LLMCallLimitError, TokenBudgetExceededError
from .runtime import ExecutionState

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LLMGateway:
    """
    Meters one agent's LLM traffic against its `AgentLimits`.

    Both budget checks run before the call counter is incremented and before
    the provider is contacted.
    """

    def __init__(self, client: ChatClient, limits: AgentLimits) -> None:
        self.client = client
        self.limits = limits

    def check_budget(self, state: ExecutionState) -> None:
        if state.llm_calls_count >= self.limits.max_llm_calls:
            raise LLMCallLimitError(self.limits.max_llm_calls)
        if state.tokens_used.total >= self.limits.max_tokens_per_execution:
            raise TokenBudgetExceededError(self.limits.max_tokens_per_execution)

    async def call(
        self,
        state: ExecutionState,
        prompt: str,
        system_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        self.check_budget(state)
        state.llm_calls_count += 1

        response = await self.client.generate_chat(
            [ChatMessage(role="user", content=prompt)],
            system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        usage = normalize_usage(response.usage, getattr(self.client, "usage_format", "auto"))
        state.tokens_used = state.tokens_used + usage
        logger.debug(
            "LLM call %d for %s used %d tokens",
            state.llm_calls_count,
            state.execution_id,
            usage.total,
        )
        return response.text

    @overload
    async def call_for_json(
        self, state: ExecutionState, prompt: str, system_prompt: str, response_model: None = None
    ) -> Any: ...

    @overload
    async def call_for_json(
        self, state: ExecutionState, prompt: str, system_prompt: str, response_model: type[ModelT]
    ) -> ModelT: ...

    async def call_for_json(
        self,
        state: ExecutionState,
        prompt: str,
        system_prompt: str,
        response_model: type[ModelT] | None = None,
    ) -> Any:
        text = await self.call(state, prompt, with_json_instruction(system_prompt))
        parsed = parse_json_response(text)
        if response_model is None:
            return parsed
        try:
            return response_model.model_validate(parsed)
        except ValidationError as e:
            raise LLMInvalidResponseError(
                f"JSON does not conform to {response_model.__name__}: {e}\n"
                f"Original response: {clamp_str(text, 500)}"
            ) from e
