"""
Budget-enforced appenders for a run's insights, alerts, actions and errors.

Every function takes the run's `ExecutionState` explicitly. The capped ones
return False when the item was dropped.

Alerts are persisted before they join the run, so their cap is taken in two
steps: `reserve_alert` claims a slot before the write and `add_alert` fills
it once the write succeeded (`release_alert` gives it back otherwise).
"""

from __future__ import annotations

import logging

from ..llms.types import JSONObject
from ..models import AgentAction, AgentAlert, AgentErrorRecord, AgentInsight, new_id, utcnow
from .config import AgentLimits
from .runtime import ExecutionState

logger = logging.getLogger(__name__)


def add_insight(state: ExecutionState, payload: JSONObject) -> AgentInsight:
    insight = AgentInsight(id=new_id("ins"), created_at=utcnow(), payload=dict(payload))
    state.insights.append(insight)
    return insight


def reserve_alert(state: ExecutionState, limits: AgentLimits) -> bool:
    if len(state.alerts) + state.alerts_reserved >= limits.max_alerts_per_execution:
        logger.warning(
            "Alert limit reached: %d (execution %s)",
            limits.max_alerts_per_execution,
            state.execution_id,
        )
        return False
    state.alerts_reserved += 1
    return True


def release_alert(state: ExecutionState) -> None:
    state.alerts_reserved = max(0, state.alerts_reserved - 1)


def add_alert(state: ExecutionState, alert: AgentAlert) -> bool:
    """Fill a reserved slot; a run that has already closed keeps its result as built."""
    release_alert(state)
    if state.closed:
        return False
    state.alerts.append(alert)
    return True


def add_action(state: ExecutionState, action: AgentAction, limits: AgentLimits) -> bool:
    if len(state.actions) >= limits.max_actions_per_execution:
        logger.warning(
            "Action limit reached: %d (execution %s)",
            limits.max_actions_per_execution,
            state.execution_id,
        )
        return False
    state.actions.append(action)
    return True


def add_error(state: ExecutionState, code: str, message: str, recoverable: bool) -> AgentErrorRecord:
    record = AgentErrorRecord(code=code, message=message, recoverable=recoverable)
    state.errors.append(record)
    return record
