"""
In-process event bus used for agent lifecycle and alert fan-out.

Delivery is fire-and-forget: `emit` never raises because of a subscriber,
and coroutine handlers run as background tasks.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EXECUTION_STARTED = "agent.execution.started"
EXECUTION_COMPLETED = "agent.execution.completed"
ALERT_CREATED = "agent.alert.created"


@dataclass(frozen=True, slots=True)
class BusEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[BusEvent], None | Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        event = BusEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                outcome = handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_name)
                continue
            if inspect.isawaitable(outcome):
                self._schedule(event_name, outcome)

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event_name: str, outcome: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no running loop; the handler can only run synchronously
            logger.warning("Dropping async handler for %s: no running event loop", event_name)
            if inspect.iscoroutine(outcome):
                outcome.close()
            return
        task = asyncio.ensure_future(outcome, loop=loop)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(event_name, t))

    def _finished(self, event_name: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async event handler failed for %s", event_name, exc_info=exc)
