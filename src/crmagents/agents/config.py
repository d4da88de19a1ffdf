"""
Agent configuration: per-kind limits, schedules and event triggers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Awaitable, Callable

from ..llms.types import JSONObject, JSONSchema
from .errors import AgentConfigurationError


@dataclass(frozen=True, slots=True)
class AgentLimits:
    """
    Resource limits applied to every run of one agent kind.

    Attributes:
        max_execution_time_ms: Deadline for agent logic.
        max_llm_calls: LLM calls allowed per run.
        max_tokens_per_execution: Token budget per run (input + output).
        max_alerts_per_execution: Alerts kept per run; extra ones are dropped.
        max_actions_per_execution: Actions kept per run; extra ones are dropped.
        rate_limit_per_hour: Admitted runs per agent kind per hour.
        rate_limit_per_day: Admitted runs per agent kind per day.
    """

    max_execution_time_ms: int = 60_000
    max_llm_calls: int = 10
    max_tokens_per_execution: int = 50_000
    max_alerts_per_execution: int = 20
    max_actions_per_execution: int = 10
    rate_limit_per_hour: int = 60
    rate_limit_per_day: int = 500

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise AgentConfigurationError(f"{f.name} must be an integer, got {value!r}")
            if value < 0:
                raise AgentConfigurationError(f"{f.name} must be >= 0, got {value}")

    @staticmethod
    def from_env(prefix: str = "CRMAGENTS_LIMIT_", *, base: "AgentLimits | None" = None) -> "AgentLimits":
        """
        Build limits from environment variables, e.g. `CRMAGENTS_LIMIT_MAX_LLM_CALLS`.

        Unset variables keep the value from `base` (or the defaults).
        """
        base = base or DEFAULT_AGENT_LIMITS
        values: dict[str, int] = {}
        for f in fields(AgentLimits):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None or not raw.strip():
                values[f.name] = getattr(base, f.name)
                continue
            try:
                values[f.name] = int(raw)
            except ValueError:
                raise AgentConfigurationError(
                    f"{prefix}{f.name.upper()} must be an integer, got {raw!r}"
                ) from None
        return AgentLimits(**values)


DEFAULT_AGENT_LIMITS = AgentLimits()


@dataclass(frozen=True, slots=True)
class AgentSchedule:
    cron: str
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class AgentTool:
    """A tool an agent advertises to its LLM prompts."""

    name: str
    description: str
    parameters: JSONSchema = field(default_factory=dict)
    handler: Callable[[JSONObject], Awaitable[Any]] | None = None


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """
    Static description of one agent kind.

    Attributes:
        kind: Agent kind key; namespaces rate limits, cache keys and records.
        name: Human-readable name.
        description: What the agent does.
        version: Agent logic version string.
        schedule: Optional cron schedule used by external schedulers.
        event_triggers: Event names routed to `handle_event`.
        limits: Resource limits for every run.
        enabled: Whether schedulers and event routing should invoke the agent.
        requires_approval: Default approval flag for actions this agent queues.
    """

    kind: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    schedule: AgentSchedule | None = None
    event_triggers: tuple[str, ...] = ()
    limits: AgentLimits = DEFAULT_AGENT_LIMITS
    enabled: bool = True
    requires_approval: bool = False

    def __post_init__(self) -> None:
        if not self.kind.strip():
            raise AgentConfigurationError("AgentConfig.kind must be non-empty")
