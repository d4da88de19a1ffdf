"""
Optional third-party CRM connectors (Salesforce, Oracle CX, ...).

Agents never call a connector directly: `GuardedConnector` turns every
failure into "not connected" or `None` so a flaky integration can only
degrade a run, never fail it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..llms.types import JSONObject
from ..llms.normalization import to_plain_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    connected: bool
    instance_url: str | None = None
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class QueryResult:
    records: list[JSONObject] = field(default_factory=list)
    total_size: int = 0


@runtime_checkable
class CRMConnector(Protocol):
    """Contract a third-party CRM integration exposes to agents."""

    async def get_connection_status(self, user_id: str) -> Any: ...

    async def query(self, user_id: str, query: str, params: JSONObject | None = None) -> Any: ...

    async def describe_object(self, user_id: str, object_name: str) -> Any: ...

    async def get_by_id(self, user_id: str, resource: str, record_id: str) -> Any: ...


def _as_status(raw: Any) -> ConnectionStatus:
    if isinstance(raw, ConnectionStatus):
        return raw
    if isinstance(raw, bool):
        return ConnectionStatus(connected=raw)
    data = to_plain_dict(raw)
    connection = to_plain_dict(data.get("connection"))
    return ConnectionStatus(
        connected=bool(data.get("connected")),
        instance_url=data.get("instance_url") or connection.get("instance_url"),
        display_name=(
            data.get("display_name")
            or connection.get("display_name")
            or connection.get("username")
        ),
    )


def _as_query_result(raw: Any) -> QueryResult:
    if isinstance(raw, QueryResult):
        return raw
    data = to_plain_dict(raw)
    # Salesforce reports `records`/`totalSize`, Oracle CX `items`/`totalResults`
    records = data.get("records", data.get("items")) or []
    total = data.get("total_size", data.get("totalSize", data.get("totalResults")))
    return QueryResult(
        records=[to_plain_dict(r) for r in records],
        total_size=total if isinstance(total, int) else len(records),
    )


class GuardedConnector:
    """Wraps a `CRMConnector` so that every call degrades instead of raising."""

    def __init__(self, name: str, connector: CRMConnector | None) -> None:
        self.name = name
        self.connector = connector

    async def check_connection(self, user_id: str) -> ConnectionStatus:
        if self.connector is None:
            return ConnectionStatus(connected=False)
        try:
            return _as_status(await self.connector.get_connection_status(user_id))
        except Exception as e:
            logger.warning("Failed to check %s connection: %s", self.name, e)
            return ConnectionStatus(connected=False)

    async def query(self, user_id: str, query: str, params: JSONObject | None = None) -> QueryResult | None:
        if self.connector is None:
            return None
        try:
            return _as_query_result(await self.connector.query(user_id, query, params))
        except Exception as e:
            logger.warning("%s query failed: %s", self.name, e)
            return None

    async def describe_object(self, user_id: str, object_name: str) -> JSONObject | None:
        if self.connector is None:
            return None
        try:
            described = await self.connector.describe_object(user_id, object_name)
        except Exception as e:
            logger.warning("Failed to describe %s object %s: %s", self.name, object_name, e)
            return None
        return to_plain_dict(described) if described is not None else None

    async def get_by_id(self, user_id: str, resource: str, record_id: str) -> JSONObject | None:
        if self.connector is None:
            return None
        try:
            record = await self.connector.get_by_id(user_id, resource, record_id)
        except Exception as e:
            logger.warning("%s get_by_id failed for %s/%s: %s", self.name, resource, record_id, e)
            return None
        return to_plain_dict(record) if record is not None else None
