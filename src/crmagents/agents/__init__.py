"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides the agent base class, its configuration and runtime helpers.
"""

from __future__ import annotations

from .base import BaseAgent
from .config import DEFAULT_AGENT_LIMITS, AgentConfig, AgentLimits, AgentSchedule, AgentTool
from .errors import (
    AgentBudgetExceededError,
    AgentConfigurationError,
    AgentError,
    AgentExecutionError,
    AgentTimeoutError,
    LLMCallLimitError,
    TokenBudgetExceededError,
)
from .gateway import LLMGateway
from .ratelimit import RateLimiter, RateLimitUsage
from .runtime import ExecutionRegistry, ExecutionState, run_with_deadline
from .tracking import ExecutionTracker, build_result

__all__ = [
    "BaseAgent",
    "AgentConfig",
    "AgentLimits",
    "AgentSchedule",
    "AgentTool",
    "DEFAULT_AGENT_LIMITS",
    "AgentError",
    "AgentConfigurationError",
    "AgentExecutionError",
    "AgentTimeoutError",
    "AgentBudgetExceededError",
    "LLMCallLimitError",
    "TokenBudgetExceededError",
    "LLMGateway",
    "RateLimiter",
    "RateLimitUsage",
    "ExecutionRegistry",
    "ExecutionState",
    "run_with_deadline",
    "ExecutionTracker",
    "build_result",
]
