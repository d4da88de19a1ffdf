"""
Base agent: the execution lifecycle every CRM agent shares.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from pydantic import BaseModel

from ..connectors.base import ConnectionStatus, CRMConnector, GuardedConnector, QueryResult
from ..core.events import ALERT_CREATED, EXECUTION_COMPLETED, EXECUTION_STARTED, BusEvent, EventBus
from ..core.telemetry import NullTelemetrySink, TelemetrySink
from ..llms.client import ChatClient
from ..llms.types import JSONObject, JSONValue
from ..models import (
    EXECUTION_ERROR,
    AgentAction,
    AgentAlert,
    AgentContext,
    AgentErrorRecord,
    AgentInsight,
    AgentResult,
    AgentStatus,
    Priority,
    new_id,
)
from ..stores.base import CounterCache, RecordStore
from . import collectors
from .config import AgentConfig, AgentLimits, AgentTool
from .errors import AgentConfigurationError, AgentExecutionError
from .gateway import LLMGateway
from .ratelimit import RateLimiter
from .runtime import ExecutionRegistry, ExecutionState, run_with_deadline
from .tracking import ExecutionTracker, build_result, rate_limited_result, rejected_result

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
CachedT = TypeVar("CachedT", bound=JSONValue)


class BaseAgent(ABC):
    """
    Shared execution framework for LLM-backed CRM agents.

    One instance serves many concurrent runs. Subclasses implement
    `execute_agent` and use the protected helpers (`call_llm`,
    `create_alert`, `queue_action`, ...), which act on the calling run's
    own state.

    Subclasses normally set `config` as a class attribute; passing `config`
    to the constructor overrides it.
    """

    config: AgentConfig

    def __init__(
        self,
        *,
        chat_client: ChatClient,
        record_store: RecordStore,
        counter_cache: CounterCache,
        config: AgentConfig | None = None,
        event_bus: EventBus | None = None,
        telemetry: TelemetrySink | None = None,
        connectors: Mapping[str, CRMConnector] | None = None,
    ) -> None:
        if config is not None:
            self.config = config
        if getattr(self, "config", None) is None:
            raise AgentConfigurationError(f"{type(self).__name__} has no AgentConfig")

        self.chat_client = chat_client
        self.record_store = record_store
        self.counter_cache = counter_cache
        self.events = event_bus or EventBus()
        self.telemetry: TelemetrySink = telemetry or NullTelemetrySink()
        self.connectors: dict[str, GuardedConnector] = {
            name: GuardedConnector(name, connector) for name, connector in (connectors or {}).items()
        }

        self._registry = ExecutionRegistry(self.config.kind)
        self._rate_limiter = RateLimiter(counter_cache)
        self._gateway = LLMGateway(chat_client, self.config.limits)
        self._tracker = ExecutionTracker(record_store)

    @property
    def kind(self) -> str:
        return self.config.kind

    @property
    def limits(self) -> AgentLimits:
        return self.config.limits

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def execution_state(self) -> ExecutionState | None:
        """State of the run the calling task belongs to, if any."""
        return self._registry.current()

    # ------------------------------------------------------------------
    # Agent contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def execute_agent(self, context: AgentContext) -> None:
        """Agent-specific logic for one run."""

    def tools(self) -> list[AgentTool]:
        """Tools this agent exposes to its prompts."""
        return []

    async def handle_event(self, event_name: str, payload: Any) -> None:
        """Hook for event-triggered invocation; override to start runs."""
        logger.debug("%s received event: %s", self.kind, event_name)

    def register_event_triggers(self, bus: EventBus | None = None) -> None:
        """Route every event named in `config.event_triggers` to `handle_event`."""
        bus = bus or self.events
        for event_name in self.config.event_triggers:
            bus.subscribe(event_name, self._on_bus_event)

    def _on_bus_event(self, event: BusEvent) -> Awaitable[None]:
        return self.handle_event(event.name, event.payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def execute(self, context: AgentContext) -> AgentResult:
        """
        Run the agent once with admission control, deadline and budgets.

        Always returns a well-formed result; failures of any kind become a
        `FAILED` status with one `EXECUTION_ERROR` entry.
        """
        limits = self.limits
        attributes: dict[str, JSONValue] = {
            "agent_kind": self.kind,
            "execution_id": context.execution_id,
            "trigger_type": context.trigger_type,
        }

        if self._registry.is_active(context.execution_id):
            logger.error("Execution already in progress: %s", context.execution_id)
            return rejected_result(f"Execution already in progress: {context.execution_id}")

        try:
            admitted = await self._rate_limiter.admit(self.kind, limits)
        except Exception:
            logger.exception("Rate limiter unavailable for %s; admitting %s", self.kind, context.execution_id)
            admitted = True
        if not admitted:
            self.telemetry.increment_counter("agent.rate_limited", attributes={"agent_kind": self.kind})
            return rate_limited_result()

        if self._registry.is_active(context.execution_id):
            return rejected_result(f"Execution already in progress: {context.execution_id}")

        state = self._registry.begin(context.execution_id)
        span = self.telemetry.start_span("agent.execution", attributes=attributes)
        result: AgentResult | None = None
        try:
            status: AgentStatus = "RUNNING"
            try:
                logger.info("Starting %s agent execution: %s", self.kind, context.execution_id)
                self.events.emit(
                    EXECUTION_STARTED,
                    {"agent_kind": self.kind, "execution_id": context.execution_id, "context": context},
                )
                await run_with_deadline(self.execute_agent(context), limits.max_execution_time_ms)
                status = "COMPLETED"
                logger.info("%s agent completed: %s", self.kind, context.execution_id)
            except Exception as e:
                status = "FAILED"
                collectors.add_error(state, EXECUTION_ERROR, str(e) or type(e).__name__, False)
                logger.error("%s agent failed: %s", self.kind, e, exc_info=True)
            state.closed = True

            result = build_result(state, status)
            await self._tracker.track(self.kind, context, result)
            self.events.emit(
                EXECUTION_COMPLETED,
                {"agent_kind": self.kind, "execution_id": context.execution_id, "result": result},
            )
            self._record_outcome(span, result)
            return result
        finally:
            if result is None:
                self.telemetry.end_span(span, status="cancelled")
            self._registry.end(context.execution_id)

    def _record_outcome(self, span: Any, result: AgentResult) -> None:
        outcome = {"agent_kind": self.kind, "status": result.status}
        self.telemetry.increment_counter("agent.executions", attributes=outcome)
        self.telemetry.record_histogram("agent.execution_ms", result.execution_time_ms, attributes=outcome)
        self.telemetry.end_span(
            span,
            status="ok" if result.success else "error",
            error=result.errors[0].message if result.errors else None,
            attributes={
                "status": result.status,
                "llm_calls": result.llm_calls_count,
                "tokens_total": result.tokens_used.total,
                "alerts": len(result.alerts),
                "actions": len(result.actions),
            },
        )

    # ------------------------------------------------------------------
    # LLM helpers
    # ------------------------------------------------------------------

    def _require_state(self) -> ExecutionState:
        state = self._registry.current()
        if state is None:
            raise AgentExecutionError("Agent not in execution context")
        return state

    async def call_llm(
        self,
        prompt: str,
        system_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        state = self._require_state()
        return await self._gateway.call(
            state, prompt, system_prompt, temperature=temperature, max_tokens=max_tokens
        )

    async def call_llm_for_json(
        self,
        prompt: str,
        system_prompt: str,
        response_model: type[ModelT] | None = None,
    ) -> Any:
        state = self._require_state()
        return await self._gateway.call_for_json(state, prompt, system_prompt, response_model)

    async def get_cached(
        self,
        key: str,
        compute: Callable[[], Awaitable[CachedT]],
        ttl_s: int = 3600,
    ) -> CachedT:
        """Read-through cache on the counter cache, keyed `agent:{kind}:{key}`."""
        cache_key = f"agent:{self.kind}:{key}"
        cached = await self.counter_cache.get(cache_key)
        if cached is not None:
            return cached  # type: ignore[return-value]

        self._require_state()
        value = await compute()
        await self.counter_cache.set(cache_key, value, ttl_s)
        return value

    # ------------------------------------------------------------------
    # Collectors
    # ------------------------------------------------------------------

    def add_insight(self, payload: JSONObject | None = None, **fields: JSONValue) -> AgentInsight | None:
        state = self._registry.current()
        if state is None:
            return None
        return collectors.add_insight(state, {**(payload or {}), **fields})

    async def create_alert(
        self,
        *,
        alert_type: str,
        priority: Priority,
        title: str,
        description: str,
        recommendation: str,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        expires_at: datetime | None = None,
        suggested_actions: list[JSONObject] | None = None,
        metadata: JSONObject | None = None,
    ) -> AgentAlert | None:
        """
        Persist, announce and record one alert.

        Returns None when no run is active or the per-run alert cap is
        reached; in both cases nothing is persisted. The alert joins the
        result only once the store write has succeeded.
        """
        state = self._registry.current()
        if state is None:
            return None

        alert = AgentAlert(
            id=new_id("alert"),
            agent_kind=self.kind,
            alert_type=alert_type,
            priority=priority,
            title=title,
            description=description,
            recommendation=recommendation,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            status="PENDING",
            expires_at=expires_at,
            suggested_actions=suggested_actions,
            metadata=metadata,
        )
        if not collectors.reserve_alert(state, self.limits):
            self.telemetry.increment_counter("agent.alerts.dropped", attributes={"agent_kind": self.kind})
            return None

        try:
            await self.record_store.create_alert(alert)
        except BaseException:
            collectors.release_alert(state)
            raise

        self.events.emit(
            ALERT_CREATED,
            {"agent_kind": self.kind, "execution_id": state.execution_id, "alert": alert},
        )
        if not collectors.add_alert(state, alert):
            return None
        return alert

    def queue_action(
        self,
        action_type: str,
        config: JSONObject | None = None,
        *,
        requires_approval: bool | None = None,
        description: str = "",
    ) -> AgentAction | None:
        """
        Queue an action for the caller; not persisted.

        `requires_approval` defaults to the agent's `config.requires_approval`.
        """
        state = self._registry.current()
        if state is None:
            return None

        needs_approval = self.config.requires_approval if requires_approval is None else requires_approval
        action = AgentAction(
            id=new_id("act"),
            type=action_type,
            config=dict(config or {}),
            requires_approval=needs_approval,
            status="PENDING_APPROVAL" if needs_approval else "APPROVED",
            description=description,
        )
        if not collectors.add_action(state, action, self.limits):
            self.telemetry.increment_counter("agent.actions.dropped", attributes={"agent_kind": self.kind})
            return None
        return action

    def add_error(self, code: str, message: str, recoverable: bool) -> AgentErrorRecord | None:
        state = self._registry.current()
        if state is None:
            return None
        return collectors.add_error(state, code, message, recoverable)

    def elapsed_ms(self) -> int:
        state = self._registry.current()
        return state.elapsed_ms() if state is not None else 0

    # ------------------------------------------------------------------
    # Optional CRM connectors
    # ------------------------------------------------------------------

    def _connector(self, name: str) -> GuardedConnector:
        return self.connectors.get(name) or GuardedConnector(name, None)

    async def check_connection(self, name: str, user_id: str) -> ConnectionStatus:
        return await self._connector(name).check_connection(user_id)

    async def query_connector(
        self, name: str, user_id: str, query: str, params: JSONObject | None = None
    ) -> QueryResult | None:
        return await self._connector(name).query(user_id, query, params)

    async def describe_connector_object(self, name: str, user_id: str, object_name: str) -> JSONObject | None:
        return await self._connector(name).describe_object(user_id, object_name)

    async def get_connector_record(
        self, name: str, user_id: str, resource: str, record_id: str
    ) -> JSONObject | None:
        return await self._connector(name).get_by_id(user_id, resource, record_id)
