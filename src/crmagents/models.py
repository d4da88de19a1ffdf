"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the data model shared by agents and stores, plus JSON,
id and time helpers.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, TypeAlias, cast

from .llms.types import JSONObject, JSONValue, TokenUsage

AgentStatus = Literal["RUNNING", "COMPLETED", "FAILED", "RATE_LIMITED"]
AlertStatus = Literal["PENDING", "ACKNOWLEDGED", "ACTIONED", "DISMISSED", "EXPIRED"]
ActionStatus = Literal["PENDING_APPROVAL", "APPROVED", "REJECTED", "EXECUTED", "FAILED"]
Priority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
TriggerType: TypeAlias = str

TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED", "RATE_LIMITED"})

RATE_LIMITED = "RATE_LIMITED"
EXECUTION_ERROR = "EXECUTION_ERROR"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def json_dumps(obj: JSONValue | dict[str, Any] | list[Any] | Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def json_loads(s: str) -> JSONValue:
    return cast(JSONValue, json.loads(s))


@dataclass(frozen=True, slots=True)
class AgentContext:
    """Caller-owned description of one run."""

    execution_id: str
    trigger_type: TriggerType
    user_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    metadata: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentInsight:
    id: str
    created_at: datetime
    payload: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentAlert:
    """A durable, user-facing notification produced by a run."""

    id: str
    agent_kind: str
    alert_type: str
    priority: Priority
    title: str
    description: str
    recommendation: str
    user_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    status: AlertStatus = "PENDING"
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    suggested_actions: list[JSONObject] | None = None
    metadata: JSONObject | None = None


@dataclass(frozen=True, slots=True)
class AgentAction:
    """A proposed (or auto-approved) operation returned to the caller."""

    id: str
    type: str
    config: JSONObject
    requires_approval: bool
    status: ActionStatus
    description: str = ""
    executed_at: datetime | None = None
    result: JSONValue | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class AgentErrorRecord:
    code: str
    message: str
    recoverable: bool
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class AgentResult:
    """Immutable snapshot of a finished run."""

    success: bool
    status: AgentStatus
    execution_time_ms: int
    llm_calls_count: int
    tokens_used: TokenUsage
    insights: list[AgentInsight] = field(default_factory=list)
    alerts: list[AgentAlert] = field(default_factory=list)
    actions: list[AgentAction] = field(default_factory=list)
    errors: list[AgentErrorRecord] | None = None


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    """Audit row persisted once per admitted run."""

    id: str
    agent_kind: str
    trigger_type: TriggerType
    trigger_id: str | None
    status: AgentStatus
    started_at: datetime
    completed_at: datetime
    alerts_created: int
    actions_generated: int
    user_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: JSONObject = field(default_factory=dict)
