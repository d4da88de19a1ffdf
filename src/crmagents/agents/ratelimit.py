"""
Admission control: hourly and daily run counters per agent kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..stores.base import CounterCache, CounterWindow
from .config import AgentLimits

logger = logging.getLogger(__name__)

HOUR_TTL_S = 3600
DAY_TTL_S = 86400


@dataclass(frozen=True, slots=True)
class RateLimitUsage:
    hourly: int
    daily: int


def hour_key(agent_kind: str) -> str:
    return f"agent:{agent_kind}:ratelimit:hour"


def day_key(agent_kind: str) -> str:
    return f"agent:{agent_kind}:ratelimit:day"


class RateLimiter:
    """
    Rejects runs once either window is full; never queues.

    The check and both increments happen in one atomic cache operation.
    """

    def __init__(self, cache: CounterCache) -> None:
        self.cache = cache

    async def admit(self, agent_kind: str, limits: AgentLimits) -> bool:
        windows = [
            CounterWindow(hour_key(agent_kind), limits.rate_limit_per_hour, HOUR_TTL_S),
            CounterWindow(day_key(agent_kind), limits.rate_limit_per_day, DAY_TTL_S),
        ]
        admitted = await self.cache.try_increment_all(windows)
        if not admitted:
            await self._log_rejection(agent_kind, limits)
        return admitted

    async def _log_rejection(self, agent_kind: str, limits: AgentLimits) -> None:
        # the rejection stands even when the counters cannot be read back
        try:
            usage = await self.usage(agent_kind)
        except Exception:
            logger.warning("Rate limit exceeded for %s (usage unavailable)", agent_kind, exc_info=True)
            return
        if usage.hourly >= limits.rate_limit_per_hour:
            logger.warning("Hourly rate limit exceeded for %s", agent_kind)
        else:
            logger.warning("Daily rate limit exceeded for %s", agent_kind)

    async def usage(self, agent_kind: str) -> RateLimitUsage:
        hourly = await self.cache.get(hour_key(agent_kind))
        daily = await self.cache.get(day_key(agent_kind))
        return RateLimitUsage(
            hourly=hourly if isinstance(hourly, int) else 0,
            daily=daily if isinstance(daily, int) else 0,
        )
