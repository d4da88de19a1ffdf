"""
Runtime helpers used by `BaseAgent.execute`: per-run state, the registry that
isolates concurrent runs, and the deadline supervisor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from ..llms.types import TokenUsage
from ..models import AgentAction, AgentAlert, AgentErrorRecord, AgentInsight
from .errors import AgentExecutionError, AgentTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ExecutionState:
    """
    Mutable scratchpad for one run.

    Only the collector and gateway functions of the owning run mutate it.
    """

    execution_id: str
    start_time: float = field(default_factory=time.monotonic)
    llm_calls_count: int = 0
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    insights: list[AgentInsight] = field(default_factory=list)
    alerts: list[AgentAlert] = field(default_factory=list)
    actions: list[AgentAction] = field(default_factory=list)
    errors: list[AgentErrorRecord] = field(default_factory=list)
    alerts_reserved: int = 0
    closed: bool = False

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)


class ExecutionRegistry:
    """
    Keyed store of live `ExecutionState`s for one agent instance.

    The "current" execution is tracked per asyncio task through a
    `ContextVar`; tasks spawned by a run inherit its execution id, and
    interleaved runs never observe each other's state.
    """

    def __init__(self, name: str = "agent") -> None:
        self._states: dict[str, ExecutionState] = {}
        self._tokens: dict[str, Token[str | None]] = {}
        self._current: ContextVar[str | None] = ContextVar(
            f"crmagents_execution_{name}_{id(self):x}", default=None
        )

    def begin(self, execution_id: str) -> ExecutionState:
        if execution_id in self._states:
            raise AgentExecutionError(f"Execution already in progress: {execution_id}")
        state = ExecutionState(execution_id=execution_id)
        self._states[execution_id] = state
        self._tokens[execution_id] = self._current.set(execution_id)
        return state

    def end(self, execution_id: str) -> None:
        self._states.pop(execution_id, None)
        token = self._tokens.pop(execution_id, None)
        if token is None:
            return
        try:
            self._current.reset(token)
        except ValueError:
            # token was created in another context; just clear our own marker
            if self._current.get() == execution_id:
                self._current.set(None)

    def get(self, execution_id: str) -> ExecutionState | None:
        return self._states.get(execution_id)

    def current(self) -> ExecutionState | None:
        execution_id = self._current.get()
        if execution_id is None:
            return None
        state = self._states.get(execution_id)
        # a closed run no longer accepts work from tasks it abandoned
        return state if state is not None and not state.closed else None

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._states

    def active_ids(self) -> list[str]:
        return list(self._states)

    def __len__(self) -> int:
        return len(self._states)


def _consume_outcome(task: asyncio.Task) -> None:
    """Retrieve the outcome of an abandoned task so asyncio does not warn about it."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned agent task finished with %r", exc)


async def run_with_deadline(work: Awaitable[T], timeout_ms: int) -> T:
    """
    Await `work` for at most `timeout_ms`.

    On expiry the work is cancelled and `AgentTimeoutError` is raised without
    waiting for the cancelled work to unwind. Work that ends cancelled on its
    own, while the caller is not being cancelled, raises `AgentExecutionError`.
    """
    task = asyncio.ensure_future(work)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        if task.cancelled():
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise asyncio.CancelledError()
            raise AgentExecutionError("Agent execution cancelled")
        return task.result()

    task.cancel()
    task.add_done_callback(_consume_outcome)
    raise AgentTimeoutError(timeout_ms)
