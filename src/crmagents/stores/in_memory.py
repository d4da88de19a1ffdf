"""In-process record store and counter cache for local development and tests."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Sequence

from ..llms.types import JSONValue
from ..models import AgentAlert, AlertStatus, ExecutionRecord
from .base import CounterCache, CounterWindow, RecordStore


class InMemoryRecordStore(RecordStore):
    """Process-local record store keeping insertion order."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = asyncio.Lock()
        self._alerts: dict[str, AgentAlert] = {}
        self._executions: dict[str, ExecutionRecord] = {}

    async def create_alert(self, alert: AgentAlert) -> bool:
        self._ensure_setup()
        async with self._lock:
            if alert.id in self._alerts:
                return False
            self._alerts[alert.id] = alert
            return True

    async def create_execution(self, record: ExecutionRecord) -> bool:
        self._ensure_setup()
        async with self._lock:
            if record.id in self._executions:
                return False
            self._executions[record.id] = record
            return True

    async def get_alert(self, alert_id: str) -> AgentAlert | None:
        self._ensure_setup()
        async with self._lock:
            return self._alerts.get(alert_id)

    async def list_alerts(
        self,
        *,
        user_id: str | None = None,
        agent_kind: str | None = None,
        status: AlertStatus | None = None,
        limit: int = 100,
    ) -> list[AgentAlert]:
        self._ensure_setup()
        async with self._lock:
            alerts = [
                alert
                for alert in self._alerts.values()
                if (user_id is None or alert.user_id == user_id)
                and (agent_kind is None or alert.agent_kind == agent_kind)
                and (status is None or alert.status == status)
            ]
        alerts.reverse()
        return alerts[:limit]

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        self._ensure_setup()
        async with self._lock:
            return self._executions.get(execution_id)

    async def list_executions(
        self,
        *,
        agent_kind: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionRecord]:
        self._ensure_setup()
        async with self._lock:
            records = [
                record
                for record in self._executions.values()
                if (agent_kind is None or record.agent_kind == agent_kind)
                and (user_id is None or record.user_id == user_id)
            ]
        records.reverse()
        return records[:limit]


class InMemoryCounterCache(CounterCache):
    """
    Process-local TTL cache.

    `clock` returns seconds and defaults to `time.monotonic`; tests pass a
    fake clock to move time forward.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: dict[str, tuple[JSONValue, float]] = {}

    def _live(self, key: str) -> JSONValue | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> JSONValue | None:
        self._ensure_setup()
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: JSONValue, ttl_s: int) -> None:
        self._ensure_setup()
        async with self._lock:
            self._entries[key] = (value, self._clock() + ttl_s)

    async def try_increment_all(self, windows: Sequence[CounterWindow]) -> bool:
        self._ensure_setup()
        async with self._lock:
            counts = [self._counter(window.key) for window in windows]
            if any(count >= window.limit for count, window in zip(counts, windows)):
                return False
            now = self._clock()
            for count, window in zip(counts, windows):
                entry = self._entries.get(window.key)
                expires_at = entry[1] if entry is not None and count > 0 else now + window.ttl_s
                self._entries[window.key] = (count + 1, expires_at)
            return True

    def _counter(self, key: str) -> int:
        value = self._live(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0
