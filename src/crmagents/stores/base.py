"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines abstract interfaces for the record store and the counter
cache used by the agent framework.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from ..llms.types import JSONValue
from ..models import AgentAlert, AlertStatus, ExecutionRecord


@dataclass(frozen=True, slots=True)
class CounterWindow:
    """One rate-limit counter: its key, ceiling and expiry."""

    key: str
    limit: int
    ttl_s: int


class _Lifecycle:
    def __init__(self) -> None:
        self._is_setup = False

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self):
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                f"{type(self).__name__} is not initialized. Call setup() or use `async with`."
            )


class RecordStore(_Lifecycle, ABC):
    """
    Durable store for alerts and execution audit records.

    `create_*` is idempotent by id: creating a record whose id already
    exists leaves the stored record unchanged and returns False.
    """

    @abstractmethod
    async def create_alert(self, alert: AgentAlert) -> bool:
        """Persist one alert; False if the id was already stored."""

    @abstractmethod
    async def create_execution(self, record: ExecutionRecord) -> bool:
        """Persist one execution audit record; False if the id was already stored."""

    @abstractmethod
    async def get_alert(self, alert_id: str) -> AgentAlert | None:
        """Return one alert by id."""

    @abstractmethod
    async def list_alerts(
        self,
        *,
        user_id: str | None = None,
        agent_kind: str | None = None,
        status: AlertStatus | None = None,
        limit: int = 100,
    ) -> list[AgentAlert]:
        """List alerts newest first, optionally filtered."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Return one execution record by id."""

    @abstractmethod
    async def list_executions(
        self,
        *,
        agent_kind: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionRecord]:
        """List execution records newest first, optionally filtered."""


class CounterCache(_Lifecycle, ABC):
    """Key/value cache with per-key expiry, also holding rate-limit counters."""

    @abstractmethod
    async def get(self, key: str) -> JSONValue | None:
        """Return the live value for `key`, or None."""

    @abstractmethod
    async def set(self, key: str, value: JSONValue, ttl_s: int) -> None:
        """Store `value` under `key` for `ttl_s` seconds."""

    @abstractmethod
    async def try_increment_all(self, windows: Sequence[CounterWindow]) -> bool:
        """
        Atomically admit one unit against every window.

        If any counter has reached its limit nothing changes and False is
        returned; otherwise every counter is incremented and True is returned.
        A counter's expiry starts when it is first incremented.
        """
