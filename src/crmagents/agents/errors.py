"""
Agent-layer error taxonomy.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base exception for all agent-framework failures."""
    pass


class AgentConfigurationError(AgentError):
    """
    Raised when agent configuration is invalid.

    Typical cases:
    - negative limits
    - missing required collaborators
    """
    pass


class AgentExecutionError(AgentError):
    """Raised for runtime execution failures not tied to configuration."""
    pass


class AgentTimeoutError(AgentExecutionError):
    """Raised when agent logic does not finish before its deadline."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__("Agent execution timeout")
        self.timeout_ms = timeout_ms


class AgentBudgetExceededError(AgentExecutionError):
    """Raised when a per-run resource budget is exhausted."""

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class LLMCallLimitError(AgentBudgetExceededError):
    """Raised before an LLM call that would exceed `max_llm_calls`."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"LLM call limit exceeded: {limit}", limit=limit)


class TokenBudgetExceededError(AgentBudgetExceededError):
    """Raised before an LLM call once `max_tokens_per_execution` is used up."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Token budget exceeded: {limit}", limit=limit)
