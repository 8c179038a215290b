"""SQLite backed store for flow definitions and instance snapshots."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .errors import CollaboratorError
from .messages import FlowInstanceData, User
from .models import FlowDefinition


SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS flow_definitions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        app_id INTEGER NOT NULL DEFAULT 0,
        definition TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS flow_instances (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        caller TEXT,
        flow_definition_id TEXT NOT NULL,
        state TEXT,
        context_json TEXT NOT NULL,
        started_at TEXT,
        finished_at TEXT
    );
    """,
]

LOCAL_USER = User(id="local", display_name="Local User", email="")


class SqliteFlowStore:
    """Local implementation of the flow API contract.

    Definitions and snapshots are kept in SQLite; the caller identity is fixed
    at construction. With no database path an in-memory database is used.
    """

    def __init__(self, database: Optional[str] = None, *, user: Optional[User] = None) -> None:
        self.database = database or ":memory:"
        self.user = user or LOCAL_USER
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.database, check_same_thread=False)
        self._apply_schema()

    def _apply_schema(self) -> None:
        cursor = self._conn.cursor()
        for ddl in SCHEMA_SQL:
            cursor.executescript(ddl)
        self._conn.commit()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._lock:
                yield self._conn
        except sqlite3.Error as exc:
            raise CollaboratorError(str(exc)) from exc

    def close(self) -> None:
        self._conn.close()

    def save_definition(self, definition: FlowDefinition) -> None:
        with self._connection() as conn:
            conn.execute(
                "REPLACE INTO flow_definitions (id, name, app_id, definition) VALUES (?, ?, ?, ?)",
                (definition.id, definition.name, definition.app_id, definition.to_json()),
            )
            conn.commit()

    def load_definition(self, flow_id: str) -> FlowDefinition:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT definition FROM flow_definitions WHERE id = ?", (flow_id,)
            ).fetchone()
        if not row:
            raise CollaboratorError(f"Flow definition {flow_id} not found")
        return FlowDefinition.from_json(row[0])

    def save_instance(self, data: FlowInstanceData) -> None:
        with self._connection() as conn:
            conn.execute(
                "REPLACE INTO flow_instances"
                " (id, name, caller, flow_definition_id, state, context_json, started_at, finished_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    data.id,
                    data.name,
                    data.caller,
                    data.flow_definition_id,
                    data.state,
                    data.context_json,
                    data.start.isoformat() if data.start else None,
                    data.end.isoformat() if data.end else None,
                ),
            )
            conn.commit()

    def load_instance(self, instance_id: str) -> FlowInstanceData:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, name, caller, flow_definition_id, state, context_json, started_at, finished_at"
                " FROM flow_instances WHERE id = ?",
                (instance_id,),
            ).fetchone()
        if not row:
            raise CollaboratorError(f"Flow instance {instance_id} not found")
        return _instance_from_row(row)

    def list_instances(self, state: Optional[str] = None) -> List[FlowInstanceData]:
        query = (
            "SELECT id, name, caller, flow_definition_id, state, context_json, started_at, finished_at"
            " FROM flow_instances"
        )
        params: List[str] = []
        if state:
            query += " WHERE state = ?"
            params.append(state)
        query += " ORDER BY started_at"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_instance_from_row(row) for row in rows]

    # FlowApi

    async def get_definition(self, flow_id: str) -> FlowDefinition:
        return self.load_definition(flow_id)

    async def get_instance(self, instance_id: str) -> FlowInstanceData:
        return self.load_instance(instance_id)

    async def save_result(self, data: FlowInstanceData) -> None:
        self.save_instance(data)

    async def who_am_i(self) -> User:
        return self.user


def _instance_from_row(row) -> FlowInstanceData:
    id_, name, caller, flow_definition_id, state, context_json, started_at, finished_at = row
    return FlowInstanceData(
        id=id_,
        name=name,
        caller=caller,
        flow_definition_id=flow_definition_id,
        state=state,
        context_json=context_json,
        start=started_at,
        end=finished_at,
    )
