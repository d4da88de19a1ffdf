"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Agent execution framework for CRM automation: budgets, rate limits, deadlines
and audit tracking around LLM-backed agents.
"""

from __future__ import annotations

from .agents import AgentConfig, AgentLimits, BaseAgent
from .core import EventBus, InMemoryTelemetrySink, NullTelemetrySink
from .models import (
    AgentAction,
    AgentAlert,
    AgentContext,
    AgentErrorRecord,
    AgentInsight,
    AgentResult,
    ExecutionRecord,
)

__all__ = [
    "BaseAgent",
    "AgentConfig",
    "AgentLimits",
    "EventBus",
    "InMemoryTelemetrySink",
    "NullTelemetrySink",
    "AgentAction",
    "AgentAlert",
    "AgentContext",
    "AgentErrorRecord",
    "AgentInsight",
    "AgentResult",
    "ExecutionRecord",
]
