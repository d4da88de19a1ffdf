"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a SQLite record store with JSON columns.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

import aiosqlite

from ..models import (
    AgentAlert,
    AlertStatus,
    ExecutionRecord,
    json_dumps,
    json_loads,
)
from .base import RecordStore


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _json_or_none(value: str | None) -> Any:
    return json_loads(value) if value is not None else None


class SQLiteRecordStore(RecordStore):
    """Persistent local record store backed by SQLite."""

    def __init__(self, path: str = "crmagents.sqlite3") -> None:
        super().__init__()
        self.path = path
        self._connection: aiosqlite.Connection | None = None

    async def setup(self) -> None:
        self._connection = await aiosqlite.connect(self.path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA synchronous=NORMAL;")
        await self._create_tables()
        await self._connection.commit()
        await super().setup()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        await super().close()

    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("SQLiteRecordStore is not initialized. Call setup() first.")
        return self._connection

    async def _create_tables(self) -> None:
        db = self._db()
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_alerts (
              id TEXT PRIMARY KEY,
              agent_kind TEXT NOT NULL,
              alert_type TEXT NOT NULL,
              priority TEXT NOT NULL,
              title TEXT NOT NULL,
              description TEXT NOT NULL,
              recommendation TEXT NOT NULL,
              user_id TEXT NOT NULL,
              entity_type TEXT,
              entity_id TEXT,
              status TEXT NOT NULL,
              created_at TEXT NOT NULL,
              expires_at TEXT,
              suggested_actions_json TEXT,
              metadata_json TEXT
            );
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_alerts_user_status ON agent_alerts(user_id, status, created_at DESC);"
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_executions (
              id TEXT PRIMARY KEY,
              agent_kind TEXT NOT NULL,
              trigger_type TEXT NOT NULL,
              trigger_id TEXT,
              status TEXT NOT NULL,
              started_at TEXT NOT NULL,
              completed_at TEXT NOT NULL,
              alerts_created INTEGER NOT NULL,
              actions_generated INTEGER NOT NULL,
              user_id TEXT NOT NULL,
              entity_type TEXT,
              entity_id TEXT,
              metadata_json TEXT NOT NULL
            );
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_kind_time ON agent_executions(agent_kind, completed_at DESC);"
        )

    async def create_alert(self, alert: AgentAlert) -> bool:
        self._ensure_setup()
        db = self._db()
        cursor = await db.execute(
            """
            INSERT OR IGNORE INTO agent_alerts(
              id, agent_kind, alert_type, priority, title, description, recommendation,
              user_id, entity_type, entity_id, status, created_at, expires_at,
              suggested_actions_json, metadata_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.agent_kind,
                alert.alert_type,
                alert.priority,
                alert.title,
                alert.description,
                alert.recommendation,
                alert.user_id,
                alert.entity_type,
                alert.entity_id,
                alert.status,
                _dt(alert.created_at),
                _dt(alert.expires_at),
                json_dumps(alert.suggested_actions) if alert.suggested_actions is not None else None,
                json_dumps(alert.metadata) if alert.metadata is not None else None,
            ),
        )
        inserted = cursor.rowcount == 1
        await cursor.close()
        await db.commit()
        return inserted

    async def create_execution(self, record: ExecutionRecord) -> bool:
        self._ensure_setup()
        db = self._db()
        cursor = await db.execute(
            """
            INSERT OR IGNORE INTO agent_executions(
              id, agent_kind, trigger_type, trigger_id, status, started_at, completed_at,
              alerts_created, actions_generated, user_id, entity_type, entity_id, metadata_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.agent_kind,
                record.trigger_type,
                record.trigger_id,
                record.status,
                _dt(record.started_at),
                _dt(record.completed_at),
                record.alerts_created,
                record.actions_generated,
                record.user_id,
                record.entity_type,
                record.entity_id,
                json_dumps(record.metadata),
            ),
        )
        inserted = cursor.rowcount == 1
        await cursor.close()
        await db.commit()
        return inserted

    async def get_alert(self, alert_id: str) -> AgentAlert | None:
        self._ensure_setup()
        async with self._db().execute("SELECT * FROM agent_alerts WHERE id = ?", (alert_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_alert(row) if row is not None else None

    async def list_alerts(
        self,
        *,
        user_id: str | None = None,
        agent_kind: str | None = None,
        status: AlertStatus | None = None,
        limit: int = 100,
    ) -> list[AgentAlert]:
        self._ensure_setup()
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("user_id", user_id), ("agent_kind", agent_kind), ("status", status)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        async with self._db().execute(
            f"SELECT * FROM agent_alerts {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_alert(row) for row in rows]

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        self._ensure_setup()
        async with self._db().execute(
            "SELECT * FROM agent_executions WHERE id = ?", (execution_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_execution(row) if row is not None else None

    async def list_executions(
        self,
        *,
        agent_kind: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionRecord]:
        self._ensure_setup()
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("agent_kind", agent_kind), ("user_id", user_id)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        async with self._db().execute(
            f"SELECT * FROM agent_executions {where} ORDER BY completed_at DESC, rowid DESC LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_execution(row) for row in rows]

    @staticmethod
    def _row_to_alert(row: aiosqlite.Row) -> AgentAlert:
        return AgentAlert(
            id=row["id"],
            agent_kind=row["agent_kind"],
            alert_type=row["alert_type"],
            priority=row["priority"],
            title=row["title"],
            description=row["description"],
            recommendation=row["recommendation"],
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            status=row["status"],
            created_at=cast(datetime, _parse_dt(row["created_at"])),
            expires_at=_parse_dt(row["expires_at"]),
            suggested_actions=_json_or_none(row["suggested_actions_json"]),
            metadata=_json_or_none(row["metadata_json"]),
        )

    @staticmethod
    def _row_to_execution(row: aiosqlite.Row) -> ExecutionRecord:
        return ExecutionRecord(
            id=row["id"],
            agent_kind=row["agent_kind"],
            trigger_type=row["trigger_type"],
            trigger_id=row["trigger_id"],
            status=row["status"],
            started_at=cast(datetime, _parse_dt(row["started_at"])),
            completed_at=cast(datetime, _parse_dt(row["completed_at"])),
            alerts_created=row["alerts_created"],
            actions_generated=row["actions_generated"],
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            metadata=cast(dict, json_loads(row["metadata_json"])),
        )
