from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import pytest
from pydantic import BaseModel

from crmagents.agents import AgentConfig, AgentLimits, BaseAgent
from crmagents.agents.errors import AgentConfigurationError, AgentExecutionError
from crmagents.connectors import ConnectionStatus
from crmagents.core import (
    ALERT_CREATED,
    EXECUTION_COMPLETED,
    EXECUTION_STARTED,
    EventBus,
    InMemoryTelemetrySink,
)
from crmagents.llms.types import ChatResponse
from crmagents.models import AgentContext, ExecutionRecord
from crmagents.stores import InMemoryCounterCache, InMemoryRecordStore


def run_async(coro):
    return asyncio.run(coro)


Logic = Callable[["ScriptedAgent", AgentContext], Awaitable[None]]


class FakeChatClient:
    usage_format = "openai"

    def __init__(
        self,
        responses: list[str] | None = None,
        *,
        usage: dict[str, Any] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.usage = usage if usage is not None else {"prompt_tokens": 10, "completion_tokens": 5}
        self.calls: list[dict[str, Any]] = []

    async def generate_chat(self, messages, system_prompt, *, temperature=None, max_tokens=None):
        self.calls.append({"prompt": messages[-1].content, "system_prompt": system_prompt})
        text = self.responses.pop(0) if self.responses else "ok"
        return ChatResponse(text=text, usage=dict(self.usage), model="fake-model")


class ScriptedAgent(BaseAgent):
    def __init__(self, logic: Logic, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._logic = logic
        self.received_events: list[tuple[str, Any]] = []

    async def execute_agent(self, context: AgentContext) -> None:
        await self._logic(self, context)

    async def handle_event(self, event_name: str, payload: Any) -> None:
        self.received_events.append((event_name, payload))


class FailingExecutionStore(InMemoryRecordStore):
    async def create_execution(self, record: ExecutionRecord) -> bool:
        raise ConnectionError("database unavailable")


class BrokenCounterCache(InMemoryCounterCache):
    async def try_increment_all(self, windows) -> bool:
        raise ConnectionError("redis down")


class FlakyConnector:
    async def get_connection_status(self, user_id):
        raise TimeoutError("CRM timeout")

    async def query(self, user_id, query, params=None):
        return {"records": [{"Id": "006A"}, {"Id": "006B"}], "totalSize": 2}

    async def describe_object(self, user_id, object_name):
        raise RuntimeError("describe failed")

    async def get_by_id(self, user_id, resource, record_id):
        return {"Id": record_id, "Name": "Acme renewal"}


async def noop(agent: "ScriptedAgent", context: AgentContext) -> None:
    return None


async def build_agent(
    logic: Logic = noop,
    *,
    limits: AgentLimits | None = None,
    client: FakeChatClient | None = None,
    record_store: InMemoryRecordStore | None = None,
    counter_cache: InMemoryCounterCache | None = None,
    **config_overrides: Any,
) -> ScriptedAgent:
    record_store = record_store or InMemoryRecordStore()
    counter_cache = counter_cache or InMemoryCounterCache()
    await record_store.setup()
    await counter_cache.setup()
    config = AgentConfig(
        kind="deal_risk",
        name="Deal risk",
        limits=limits or AgentLimits(),
        **config_overrides,
    )
    return ScriptedAgent(
        logic,
        config=config,
        chat_client=client or FakeChatClient(),
        record_store=record_store,
        counter_cache=counter_cache,
        telemetry=InMemoryTelemetrySink(),
    )


def make_context(execution_id: str = "exec-1", **overrides: Any) -> AgentContext:
    values: dict[str, Any] = {
        "execution_id": execution_id,
        "trigger_type": "manual",
        "user_id": "user-1",
        "entity_type": "opportunity",
        "entity_id": "opp-1",
    }
    values.update(overrides)
    return AgentContext(**values)


async def raise_alert(agent: BaseAgent, title: str = "Deal at risk"):
    return await agent.create_alert(
        alert_type="DEAL_RISK",
        priority="HIGH",
        title=title,
        description="No activity in 30 days",
        recommendation="Schedule a call",
        user_id="user-1",
        entity_type="opportunity",
        entity_id="opp-1",
    )


def test_agent_requires_config():
    class Unconfigured(BaseAgent):
        async def execute_agent(self, context):
            return None

    with pytest.raises(AgentConfigurationError, match="no AgentConfig"):
        Unconfigured(
            chat_client=FakeChatClient(),
            record_store=InMemoryRecordStore(),
            counter_cache=InMemoryCounterCache(),
        )


def test_rate_limit_of_zero_rejects_without_running_or_tracking():
    calls: list[str] = []

    async def logic(agent, context):
        calls.append(context.execution_id)

    async def scenario():
        agent = await build_agent(logic, limits=AgentLimits(rate_limit_per_hour=0))
        result = await agent.execute(make_context())
        records = await agent.record_store.list_executions()
        return agent, result, records

    agent, result, records = run_async(scenario())

    assert result.status == "RATE_LIMITED"
    assert result.success is False
    assert result.execution_time_ms == 0
    assert result.llm_calls_count == 0
    assert result.tokens_used.total == 0
    assert result.errors is not None and len(result.errors) == 1
    assert result.errors[0].code == "RATE_LIMITED"
    assert result.errors[0].message == "Agent execution rate limited"
    assert result.errors[0].recoverable is True
    assert calls == []
    assert records == []
    assert len(agent.telemetry.counters("agent.rate_limited")) == 1


def test_daily_window_rejects_once_full():
    async def scenario():
        agent = await build_agent(limits=AgentLimits(rate_limit_per_hour=100, rate_limit_per_day=1))
        first = await agent.execute(make_context("exec-1"))
        second = await agent.execute(make_context("exec-2"))
        usage = await agent.rate_limiter.usage("deal_risk")
        return first, second, usage

    first, second, usage = run_async(scenario())

    assert first.status == "COMPLETED"
    assert second.status == "RATE_LIMITED"
    assert usage.hourly == 1
    assert usage.daily == 1


def test_rate_limiter_failure_admits_run():
    async def scenario():
        agent = await build_agent(counter_cache=BrokenCounterCache())
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "COMPLETED"
    assert result.success is True


def test_rejected_run_stays_rejected_when_usage_read_fails():
    class RejectingUnreadableCache(InMemoryCounterCache):
        async def try_increment_all(self, windows) -> bool:
            return False

        async def get(self, key):
            raise ConnectionError("redis read timeout")

    ran: list[str] = []

    async def logic(agent, context):
        ran.append(context.execution_id)

    async def scenario():
        agent = await build_agent(logic, counter_cache=RejectingUnreadableCache())
        result = await agent.execute(make_context())
        record = await agent.record_store.get_execution("exec-1")
        return result, record

    result, record = run_async(scenario())

    assert result.status == "RATE_LIMITED"
    assert ran == []
    assert record is None


def test_llm_call_limit_fails_run_before_third_call():
    async def logic(agent, context):
        for _ in range(3):
            await agent.call_llm("Summarize the deal", "You are a CRM analyst")

    client = FakeChatClient()

    async def scenario():
        agent = await build_agent(logic, limits=AgentLimits(max_llm_calls=2), client=client)
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "FAILED"
    assert result.success is False
    assert result.llm_calls_count == 2
    assert len(client.calls) == 2
    assert result.errors is not None
    assert result.errors[0].code == "EXECUTION_ERROR"
    assert result.errors[0].message == "LLM call limit exceeded: 2"
    assert result.errors[0].recoverable is False


def test_token_budget_blocks_call_once_exhausted():
    async def logic(agent, context):
        await agent.call_llm("first", "sys")
        await agent.call_llm("second", "sys")

    client = FakeChatClient(usage={"prompt_tokens": 200, "completion_tokens": 100})

    async def scenario():
        agent = await build_agent(
            logic, limits=AgentLimits(max_tokens_per_execution=300), client=client
        )
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "FAILED"
    assert result.llm_calls_count == 1
    assert result.tokens_used.total == 300
    assert len(client.calls) == 1
    assert result.errors is not None
    assert result.errors[0].message == "Token budget exceeded: 300"


def test_alert_cap_drops_extra_alerts_without_failing():
    created: list[Any] = []

    async def logic(agent, context):
        created.append(await raise_alert(agent, "first"))
        created.append(await raise_alert(agent, "second"))

    async def scenario():
        agent = await build_agent(logic, limits=AgentLimits(max_alerts_per_execution=1))
        result = await agent.execute(make_context())
        stored = await agent.record_store.list_alerts()
        return agent, result, stored

    agent, result, stored = run_async(scenario())

    assert result.status == "COMPLETED"
    assert [alert.title for alert in result.alerts] == ["first"]
    assert created[0] is not None and created[1] is None
    assert [alert.title for alert in stored] == ["first"]
    assert len(agent.telemetry.counters("agent.alerts.dropped")) == 1


def test_action_cap_and_default_approval():
    async def logic(agent, context):
        agent.queue_action("CREATE_TASK", {"subject": "Follow up"}, description="Follow up")
        agent.queue_action("SEND_EMAIL", {"template": "nudge"}, requires_approval=False)
        agent.queue_action("UPDATE_STAGE", {"stage": "Negotiation"})

    async def scenario():
        agent = await build_agent(
            logic,
            limits=AgentLimits(max_actions_per_execution=2),
            requires_approval=True,
        )
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "COMPLETED"
    assert [action.type for action in result.actions] == ["CREATE_TASK", "SEND_EMAIL"]
    assert result.actions[0].requires_approval is True
    assert result.actions[0].status == "PENDING_APPROVAL"
    assert result.actions[1].requires_approval is False
    assert result.actions[1].status == "APPROVED"


def test_deadline_fails_run_and_cancels_agent_logic():
    state: dict[str, bool] = {"cancelled": False, "finished": False}

    async def logic(agent, context):
        try:
            await asyncio.sleep(1.0)
            state["finished"] = True
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    async def scenario():
        agent = await build_agent(logic, limits=AgentLimits(max_execution_time_ms=50))
        started = time.monotonic()
        result = await agent.execute(make_context())
        elapsed = time.monotonic() - started
        await asyncio.sleep(0.05)
        return result, elapsed

    result, elapsed = run_async(scenario())

    assert result.status == "FAILED"
    assert result.errors is not None
    assert result.errors[0].message == "Agent execution timeout"
    assert result.errors[0].recoverable is False
    assert elapsed < 0.5
    assert state == {"cancelled": True, "finished": False}


def test_timed_out_agent_cannot_add_alerts_afterwards():
    late: dict[str, Any] = {}

    async def logic(agent, context):
        try:
            await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            late["alert"] = await raise_alert(agent, "too late")
            late["insight"] = agent.add_insight(late=True)
            raise

    async def scenario():
        agent = await build_agent(logic, limits=AgentLimits(max_execution_time_ms=30))
        result = await agent.execute(make_context())
        await asyncio.sleep(0.05)
        stored = await agent.record_store.list_alerts()
        return result, stored

    result, stored = run_async(scenario())

    assert result.status == "FAILED"
    assert result.alerts == []
    assert late == {"alert": None, "insight": None}
    assert stored == []


class SlowAlertStore(InMemoryRecordStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def create_alert(self, alert) -> None:
        await asyncio.sleep(self.delay)
        await super().create_alert(alert)


def test_alert_interrupted_by_deadline_is_not_reported():
    async def logic(agent, context):
        await raise_alert(agent, "slow write")

    async def scenario():
        store = SlowAlertStore(0.5)
        agent = await build_agent(logic, record_store=store, limits=AgentLimits(max_execution_time_ms=50))
        announced: list[Any] = []
        agent.events.subscribe(ALERT_CREATED, announced.append)
        result = await agent.execute(make_context())
        await asyncio.sleep(0.6)
        stored = await store.list_alerts()
        return result, stored, announced

    result, stored, announced = run_async(scenario())

    assert result.status == "FAILED"
    assert result.errors[0].message == "Agent execution timeout"
    assert result.alerts == []
    assert stored == []
    assert announced == []


def test_concurrent_alerts_respect_cap_while_writes_are_pending():
    created: list[Any] = []

    async def logic(agent, context):
        created.extend(await asyncio.gather(raise_alert(agent, "first"), raise_alert(agent, "second")))

    async def scenario():
        store = SlowAlertStore(0.01)
        agent = await build_agent(
            logic, record_store=store, limits=AgentLimits(max_alerts_per_execution=1)
        )
        result = await agent.execute(make_context())
        stored = await store.list_alerts()
        return result, stored

    result, stored = run_async(scenario())

    assert result.status == "COMPLETED"
    assert len(result.alerts) == 1
    assert len(stored) == 1
    assert sum(alert is not None for alert in created) == 1


def test_alert_slot_is_released_when_store_write_fails():
    class RejectOnceStore(InMemoryRecordStore):
        rejected = False

        async def create_alert(self, alert) -> None:
            if not self.rejected:
                self.rejected = True
                raise ConnectionError("write rejected")
            await super().create_alert(alert)

    async def logic(agent, context):
        try:
            await raise_alert(agent, "first")
        except ConnectionError:
            pass
        await raise_alert(agent, "retry")

    async def scenario():
        agent = await build_agent(
            logic, record_store=RejectOnceStore(), limits=AgentLimits(max_alerts_per_execution=1)
        )
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "COMPLETED"
    assert [alert.title for alert in result.alerts] == ["retry"]


def test_agent_logic_ending_cancelled_becomes_failed_result():
    async def logic(agent, context):
        agent.add_insight(step="started")
        inner = asyncio.ensure_future(asyncio.sleep(10))
        inner.cancel()
        await inner

    async def scenario():
        agent = await build_agent(logic)
        result = await agent.execute(make_context())
        record = await agent.record_store.get_execution("exec-1")
        return result, record

    result, record = run_async(scenario())

    assert result.status == "FAILED"
    assert result.errors[0].code == "EXECUTION_ERROR"
    assert result.errors[0].message == "Agent execution cancelled"
    assert len(result.insights) == 1
    assert record is not None and record.status == "FAILED"


def test_failure_in_agent_logic_is_captured():
    async def logic(agent, context):
        agent.add_insight({"step": "loaded"})
        raise ValueError("opportunity not found")

    async def scenario():
        agent = await build_agent(logic)
        result = await agent.execute(make_context())
        record = await agent.record_store.get_execution("exec-1")
        return agent, result, record

    agent, result, record = run_async(scenario())

    assert result.status == "FAILED"
    assert len(result.insights) == 1
    assert result.errors is not None and len(result.errors) == 1
    assert result.errors[0].message == "opportunity not found"
    assert record is not None and record.status == "FAILED"
    assert record.metadata["errors_count"] == 1
    span = agent.telemetry.spans()[-1]
    assert span.name == "agent.execution"
    assert span.status == "error"
    assert span.error == "opportunity not found"


def test_end_to_end_run_tracks_tokens_alerts_actions_and_events():
    class RiskAssessment(BaseModel):
        risk: str
        score: int

    async def logic(agent, context):
        assessment = await agent.call_llm_for_json(
            f"Assess opportunity {context.entity_id}",
            "You are a CRM deal-risk analyst",
            RiskAssessment,
        )
        agent.add_insight(risk=assessment.risk, score=assessment.score)
        await raise_alert(agent)
        agent.queue_action("CREATE_TASK", {"subject": "Call champion"}, requires_approval=True)

    client = FakeChatClient(
        ['Here you go: {"risk": "high", "score": 82} hope that helps'],
        usage={"prompt_tokens": 200, "completion_tokens": 100},
    )
    seen: list[str] = []

    async def scenario():
        agent = await build_agent(logic, client=client)
        for name in (EXECUTION_STARTED, ALERT_CREATED, EXECUTION_COMPLETED):
            agent.events.subscribe(name, lambda event: seen.append(event.name))
        result = await agent.execute(make_context())
        record = await agent.record_store.get_execution("exec-1")
        alerts = await agent.record_store.list_alerts(agent_kind="deal_risk")
        return agent, result, record, alerts

    agent, result, record, alerts = run_async(scenario())

    assert result.status == "COMPLETED"
    assert result.success is True
    assert result.llm_calls_count == 1
    assert result.tokens_used.input == 200
    assert result.tokens_used.output == 100
    assert result.tokens_used.total == 300
    assert result.errors is None
    assert result.insights[0].payload == {"risk": "high", "score": 82}
    assert len(result.alerts) == 1 and result.alerts[0].status == "PENDING"
    assert result.actions[0].status == "PENDING_APPROVAL"

    assert client.calls[0]["system_prompt"].endswith("Respond with ONLY valid JSON.")

    assert [alert.id for alert in alerts] == [result.alerts[0].id]
    assert record is not None
    assert record.agent_kind == "deal_risk"
    assert record.trigger_type == "manual"
    assert record.trigger_id == "opp-1"
    assert record.alerts_created == 1
    assert record.actions_generated == 1
    assert record.metadata["llm_calls"] == 1
    assert record.metadata["tokens_used"] == {"input": 200, "output": 100, "total": 300}
    assert record.metadata["insights_count"] == 1

    assert seen == [EXECUTION_STARTED, ALERT_CREATED, EXECUTION_COMPLETED]
    assert agent.execution_state is None


def test_unparseable_json_response_fails_run():
    async def logic(agent, context):
        await agent.call_llm_for_json("Assess", "sys")

    async def scenario():
        agent = await build_agent(logic, client=FakeChatClient(["I cannot answer that"]))
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "FAILED"
    assert result.llm_calls_count == 1
    assert result.errors is not None
    assert result.errors[0].message == "Failed to parse LLM response as JSON"


def test_tracking_failure_does_not_change_result():
    async def scenario():
        agent = await build_agent(record_store=FailingExecutionStore())
        return await agent.execute(make_context())

    result = run_async(scenario())

    assert result.status == "COMPLETED"
    assert result.success is True
    assert result.errors is None


def test_concurrent_runs_keep_separate_state():
    async def logic(agent, context):
        for i in range(context.metadata["alerts"]):
            await raise_alert(agent, f"{context.execution_id}-{i}")
            await asyncio.sleep(0.001)
        await agent.call_llm(context.execution_id, "sys")
        agent.add_insight(execution=context.execution_id)

    async def scenario():
        agent = await build_agent(logic)
        results = await asyncio.gather(
            agent.execute(make_context("exec-a", metadata={"alerts": 1})),
            agent.execute(make_context("exec-b", metadata={"alerts": 3})),
        )
        return agent, results

    agent, (first, second) = run_async(scenario())

    assert first.status == "COMPLETED" and second.status == "COMPLETED"
    assert [alert.title for alert in first.alerts] == ["exec-a-0"]
    assert [alert.title for alert in second.alerts] == ["exec-b-0", "exec-b-1", "exec-b-2"]
    assert first.llm_calls_count == 1 and second.llm_calls_count == 1
    assert first.insights[0].payload == {"execution": "exec-a"}
    assert second.insights[0].payload == {"execution": "exec-b"}
    assert agent.execution_state is None


def test_duplicate_execution_id_is_rejected_while_running():
    release = {}

    async def logic(agent, context):
        await release["event"].wait()
        agent.add_insight(ok=True)

    async def scenario():
        release["event"] = asyncio.Event()
        agent = await build_agent(logic)
        first_task = asyncio.create_task(agent.execute(make_context("exec-dup")))
        await asyncio.sleep(0.01)
        duplicate = await agent.execute(make_context("exec-dup"))
        release["event"].set()
        first = await first_task
        usage = await agent.rate_limiter.usage("deal_risk")
        return first, duplicate, usage

    first, duplicate, usage = run_async(scenario())

    assert duplicate.status == "FAILED"
    assert duplicate.errors is not None
    assert duplicate.errors[0].message == "Execution already in progress: exec-dup"
    assert first.status == "COMPLETED"
    assert len(first.insights) == 1
    assert usage.hourly == 1


def test_helpers_outside_a_run():
    async def scenario():
        agent = await build_agent()
        with pytest.raises(AgentExecutionError, match="not in execution context"):
            await agent.call_llm("p", "s")
        with pytest.raises(AgentExecutionError, match="not in execution context"):
            await agent.call_llm_for_json("p", "s")
        alert = await raise_alert(agent)
        stored = await agent.record_store.list_alerts()
        return agent, alert, stored

    agent, alert, stored = run_async(scenario())

    assert alert is None
    assert stored == []
    assert agent.add_insight(ok=True) is None
    assert agent.queue_action("CREATE_TASK") is None
    assert agent.add_error("X", "y", True) is None
    assert agent.elapsed_ms() == 0
    assert agent.tools() == []


def test_get_cached_computes_once_per_ttl():
    computed: list[int] = []

    async def compute():
        computed.append(1)
        return {"win_rate": 0.42}

    async def logic(agent, context):
        value = await agent.get_cached("win-rate", compute, ttl_s=60)
        agent.add_insight(value)

    async def scenario():
        agent = await build_agent(logic)
        first = await agent.execute(make_context("exec-1"))
        second = await agent.execute(make_context("exec-2"))
        raw = await agent.counter_cache.get("agent:deal_risk:win-rate")
        return first, second, raw

    first, second, raw = run_async(scenario())

    assert computed == [1]
    assert first.insights[0].payload == {"win_rate": 0.42}
    assert second.insights[0].payload == {"win_rate": 0.42}
    assert raw == {"win_rate": 0.42}


def test_connectors_degrade_instead_of_failing():
    async def logic(agent, context):
        status = await agent.check_connection("salesforce", context.user_id)
        agent.add_insight(connected=status.connected)
        result = await agent.query_connector("salesforce", context.user_id, "SELECT Id FROM Opportunity")
        agent.add_insight(records=len(result.records) if result else -1)
        described = await agent.describe_connector_object("salesforce", context.user_id, "Opportunity")
        agent.add_insight(described=described is not None)
        record = await agent.get_connector_record("salesforce", context.user_id, "Opportunity", "006A")
        agent.add_insight(name=record["Name"] if record else None)
        missing = await agent.query_connector("oracle_cx", context.user_id, "q")
        agent.add_insight(missing=missing is None)

    async def scenario():
        record_store = InMemoryRecordStore()
        counter_cache = InMemoryCounterCache()
        await record_store.setup()
        await counter_cache.setup()
        agent = ScriptedAgent(
            logic,
            config=AgentConfig(kind="deal_risk", name="Deal risk"),
            chat_client=FakeChatClient(),
            record_store=record_store,
            counter_cache=counter_cache,
            connectors={"salesforce": FlakyConnector()},
        )
        unconnected = await agent.check_connection("oracle_cx", "user-1")
        result = await agent.execute(make_context())
        return unconnected, result

    unconnected, result = run_async(scenario())

    assert unconnected == ConnectionStatus(connected=False)
    assert result.status == "COMPLETED"
    assert [insight.payload for insight in result.insights] == [
        {"connected": False},
        {"records": 2},
        {"described": False},
        {"name": "Acme renewal"},
        {"missing": True},
    ]


def test_event_triggers_route_to_handle_event():
    async def scenario():
        agent = await build_agent(event_triggers=("deal.stage_changed",))
        bus = EventBus()
        agent.register_event_triggers(bus)
        bus.emit("deal.stage_changed", {"deal_id": "opp-1"})
        bus.emit("deal.created", {"deal_id": "opp-2"})
        await bus.drain()
        return agent

    agent = run_async(scenario())

    assert agent.received_events == [("deal.stage_changed", {"deal_id": "opp-1"})]


def test_successful_run_records_telemetry():
    async def scenario():
        agent = await build_agent()
        await agent.execute(make_context())
        return agent

    agent = run_async(scenario())

    span = agent.telemetry.spans()[0]
    assert span.status == "ok"
    assert span.attributes["agent_kind"] == "deal_risk"
    assert span.attributes["status"] == "COMPLETED"
    counters = agent.telemetry.counters("agent.executions")
    assert counters[0].attributes == {"agent_kind": "deal_risk", "status": "COMPLETED"}
    assert agent.telemetry.histograms()[0].name == "agent.execution_ms"
