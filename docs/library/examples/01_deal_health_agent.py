"""
Example 01: A deal-health agent built on `BaseAgent`.

Run:
    CRMAGENTS_RECORD_BACKEND=memory uv run python docs/library/examples/01_deal_health_agent.py
"""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

from pydantic import BaseModel, Field

from crmagents import AgentConfig, AgentContext, AgentLimits, BaseAgent, EventBus
from crmagents.agents import AgentSchedule
from crmagents.core import ALERT_CREATED
from crmagents.llms import LiteLLMChatClient
from crmagents.models import new_id
from crmagents.stores import create_counter_cache_from_env, create_record_store_from_env

SYSTEM_PROMPT = "You are a B2B sales coach. Assess opportunity health from the facts given."


class DealHealthAnalysis(BaseModel):
    overall_health: Literal["HEALTHY", "AT_RISK", "CRITICAL"]
    health_score: int = Field(ge=0, le=100)
    risk_factors: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)
    urgency: Literal["LOW", "MEDIUM", "HIGH", "URGENT"] = "MEDIUM"
    reasoning: str = ""


class DealHealthAgent(BaseAgent):
    config = AgentConfig(
        kind="deal_health",
        name="Deal Health Monitor",
        description="Monitors opportunity health and alerts on risks",
        schedule=AgentSchedule(cron="0 */4 * * *"),
        event_triggers=("crm.opportunity.updated", "crm.activity.created"),
        limits=AgentLimits(max_llm_calls=20, max_alerts_per_execution=10),
    )

    async def execute_agent(self, context: AgentContext) -> None:
        opportunity = context.metadata.get("opportunity") or {}
        facts = "\n".join(f"- {key}: {value}" for key, value in opportunity.items())

        analysis = await self.call_llm_for_json(
            f"Opportunity facts:\n{facts}\n\nReturn overall_health, health_score, "
            "risk_factors, recommended_actions, urgency and reasoning.",
            SYSTEM_PROMPT,
            DealHealthAnalysis,
        )
        self.add_insight(health=analysis.overall_health, score=analysis.health_score)

        if analysis.overall_health == "HEALTHY":
            return

        await self.create_alert(
            alert_type="DEAL_AT_RISK",
            priority=analysis.urgency,
            title=f"{opportunity.get('name', 'Opportunity')} is {analysis.overall_health.lower()}",
            description="; ".join(analysis.risk_factors) or analysis.reasoning,
            recommendation=analysis.recommended_actions[0] if analysis.recommended_actions else "Review the deal",
            user_id=context.user_id,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
        )
        for step in analysis.recommended_actions[:3]:
            self.queue_action("CREATE_TASK", {"subject": step, "what_id": context.entity_id})

    async def handle_event(self, event_name, payload) -> None:
        await self.execute(
            AgentContext(
                execution_id=new_id("exec"),
                trigger_type="event",
                user_id=payload["user_id"],
                entity_type="opportunity",
                entity_id=payload["opportunity_id"],
                metadata={"opportunity": payload.get("opportunity", {})},
            )
        )


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    bus = EventBus()
    bus.subscribe(ALERT_CREATED, lambda event: print("alert:", event.payload["alert"].title))

    async with create_record_store_from_env() as records, create_counter_cache_from_env() as cache:
        agent = DealHealthAgent(
            chat_client=LiteLLMChatClient(),
            record_store=records,
            counter_cache=cache,
            event_bus=bus,
        )
        result = await agent.execute(
            AgentContext(
                execution_id=new_id("exec"),
                trigger_type="manual",
                user_id="demo-user",
                entity_type="opportunity",
                entity_id="opp-001",
                metadata={
                    "opportunity": {
                        "name": "Acme platform renewal",
                        "stage": "Negotiation",
                        "amount": 240000,
                        "close_date": "in 9 days",
                        "last_activity": "34 days ago",
                        "champion": "left the company",
                    }
                },
            )
        )
        await bus.drain()

    print("status:", result.status)
    print("llm_calls:", result.llm_calls_count, "tokens:", result.tokens_used.to_dict())
    for action in result.actions:
        print("action:", action.type, action.config)
    for error in result.errors or []:
        print("error:", error.code, error.message)


if __name__ == "__main__":
    asyncio.run(main())
