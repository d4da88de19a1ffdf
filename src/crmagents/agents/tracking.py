"""
Result snapshots and the execution audit trail.
"""

from __future__ import annotations

import logging

from ..llms.types import TokenUsage
from ..models import (
    EXECUTION_ERROR,
    RATE_LIMITED,
    AgentContext,
    AgentErrorRecord,
    AgentResult,
    AgentStatus,
    ExecutionRecord,
    utcnow,
)
from ..stores.base import RecordStore
from .errors import AgentExecutionError
from .runtime import ExecutionState

logger = logging.getLogger(__name__)


def build_result(state: ExecutionState | None, status: AgentStatus) -> AgentResult:
    if state is None:
        raise AgentExecutionError("No execution state")

    return AgentResult(
        success=status == "COMPLETED",
        status=status,
        execution_time_ms=state.elapsed_ms(),
        llm_calls_count=state.llm_calls_count,
        tokens_used=state.tokens_used,
        insights=list(state.insights),
        alerts=list(state.alerts),
        actions=list(state.actions),
        errors=list(state.errors) if state.errors else None,
    )


def rate_limited_result() -> AgentResult:
    return AgentResult(
        success=False,
        status="RATE_LIMITED",
        execution_time_ms=0,
        llm_calls_count=0,
        tokens_used=TokenUsage(),
        errors=[
            AgentErrorRecord(
                code=RATE_LIMITED,
                message="Agent execution rate limited",
                recoverable=True,
            )
        ],
    )


def rejected_result(message: str) -> AgentResult:
    """Result for a run refused before it got state of its own."""
    return AgentResult(
        success=False,
        status="FAILED",
        execution_time_ms=0,
        llm_calls_count=0,
        tokens_used=TokenUsage(),
        errors=[AgentErrorRecord(code=EXECUTION_ERROR, message=message, recoverable=False)],
    )


def execution_record(agent_kind: str, context: AgentContext, result: AgentResult) -> ExecutionRecord:
    return ExecutionRecord(
        id=context.execution_id,
        agent_kind=agent_kind,
        trigger_type=context.trigger_type,
        trigger_id=context.entity_id,
        status=result.status,
        started_at=context.started_at,
        completed_at=utcnow(),
        alerts_created=len(result.alerts),
        actions_generated=len(result.actions),
        user_id=context.user_id,
        entity_type=context.entity_type,
        entity_id=context.entity_id,
        metadata={
            "llm_calls": result.llm_calls_count,
            "tokens_used": result.tokens_used.to_dict(),
            "insights_count": len(result.insights),
            "errors_count": len(result.errors or []),
            "execution_time_ms": result.execution_time_ms,
        },
    )


class ExecutionTracker:
    """Persists one audit record per admitted run; never raises."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def track(self, agent_kind: str, context: AgentContext, result: AgentResult) -> bool:
        try:
            inserted = await self.store.create_execution(execution_record(agent_kind, context, result))
        except Exception as e:
            logger.error(
                "Failed to track execution %s: %s", context.execution_id, e, exc_info=True
            )
            return False
        if not inserted:
            # execution ids are expected to be unique; the earlier record is kept
            logger.warning("Execution record already exists: %s", context.execution_id)
            return False
        return True
