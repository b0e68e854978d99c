# src/taskweave/storage/sqlite_backend.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Mapping
from datetime import date
from pathlib import Path
from typing import Any

from ..core.ports import TaskPayload
from ..errors import PersistenceError, TaskNotFoundError
from ..tasks.task_models import Task, task_from_payload

logger = logging.getLogger(__name__)

_JSON_COLUMNS = {"checklist", "recurrence"}
_BOOL_COLUMNS = {"completed", "importance", "urgency"}
_COLUMNS = (
    "owner_id",
    "title",
    "description",
    "checklist",
    "scheduled_date",
    "completed",
    "completed_at",
    "importance",
    "urgency",
    "estimated_minutes",
    "recurrence",
    "goal_id",
    "area_id",
    "template_link_id",
)


class SqliteTaskBackend:
    """
    SQLite-backed persistence client.

    Stands in for the remote task endpoint: same create/update/delete/list calls,
    same payload shape. Blocking sqlite work runs in a worker thread so the event
    loop keeps going; cancelling the awaiting task drops the response (the
    statement itself may still complete).

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("SqliteTaskBackend ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    checklist TEXT NOT NULL DEFAULT '[]',
                    scheduled_date TEXT,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    importance INTEGER NOT NULL DEFAULT 0,
                    urgency INTEGER NOT NULL DEFAULT 0,
                    estimated_minutes INTEGER NOT NULL DEFAULT 0,
                    recurrence TEXT,
                    goal_id TEXT,
                    area_id TEXT,
                    template_link_id TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SqliteTaskBackend migration: added column %s", name)

            add_col("checklist", "TEXT NOT NULL DEFAULT '[]'")
            add_col("estimated_minutes", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurrence", "TEXT")
            add_col("goal_id", "TEXT")
            add_col("area_id", "TEXT")
            add_col("template_link_id", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_date ON tasks(owner_id, scheduled_date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_template ON tasks(template_link_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _encode(key: str, value: Any) -> Any:
        if key in _JSON_COLUMNS:
            if value is None:
                return "[]" if key == "checklist" else None
            return json.dumps(value, ensure_ascii=False)
        if key in _BOOL_COLUMNS:
            return 1 if value else 0
        if key == "estimated_minutes":
            return max(0, int(value or 0))
        if isinstance(value, date):
            return value.isoformat()
        return value

    @staticmethod
    def _decode_json(s: str | None, default: Any) -> Any:
        if not s:
            return default
        try:
            return json.loads(s)
        except Exception:
            logger.warning("Undecodable JSON column value; using default")
            return default

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        data: dict[str, Any] = {key: row[key] for key in row.keys()}
        data["checklist"] = self._decode_json(row["checklist"], [])
        data["recurrence"] = self._decode_json(row["recurrence"], None)
        for key in _BOOL_COLUMNS:
            data[key] = bool(row[key])
        return task_from_payload(data)

    def _fetch(self, conn: sqlite3.Connection, task_id: str) -> Task:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)
        return self._row_to_task(row)

    # ---- sync API (runs in a worker thread) ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def create_task_sync(self, payload: Mapping[str, Any]) -> Task:
        title = str(payload.get("title") or "").strip()
        if not title:
            raise PersistenceError("title is required")

        now = time.time()
        task_id = uuid.uuid4().hex
        values = {key: self._encode(key, payload.get(key)) for key in _COLUMNS}
        values["title"] = title
        values["description"] = values["description"] or ""

        conn = self._get_conn()
        try:
            cols = ", ".join(("id", *_COLUMNS, "created_at", "updated_at"))
            placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 3))
            conn.execute(
                f"INSERT INTO tasks({cols}) VALUES ({placeholders})",
                (task_id, *(values[key] for key in _COLUMNS), now, now),
            )
            conn.commit()
            logger.debug("Task created id=%s owner=%s", task_id, values["owner_id"])
            return self._fetch(conn, task_id)
        finally:
            conn.close()

    def update_task_sync(self, task_id: str, payload: Mapping[str, Any]) -> Task:
        fields: list[str] = []
        params: list[Any] = []

        for key, value in payload.items():
            if key not in _COLUMNS:
                logger.debug("update_task: ignoring unknown field %s", key)
                continue
            if key == "title" and not str(value or "").strip():
                raise PersistenceError("title cannot be empty")
            fields.append(f"{key} = ?")
            params.append(self._encode(key, value))

        conn = self._get_conn()
        try:
            if fields:
                fields.append("updated_at = ?")
                params.append(time.time())
                params.append(task_id)
                cur = conn.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params)
                if cur.rowcount != 1:
                    raise TaskNotFoundError(task_id)
                conn.commit()
            return self._fetch(conn, task_id)
        finally:
            conn.close()

    def delete_task_sync(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            if cur.rowcount != 1:
                raise TaskNotFoundError(task_id)
        finally:
            conn.close()

    def list_tasks_sync(self, owner_id: str, start: date, end: date) -> list[Task]:
        """Tasks dated within [start, end], undated tasks and every recurrence template of the owner."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE owner_id = ?
                  AND (
                    (scheduled_date >= ? AND scheduled_date <= ?)
                        OR scheduled_date IS NULL
                        OR (recurrence IS NOT NULL AND template_link_id IS NULL)
                    )
                ORDER BY COALESCE(scheduled_date, '9999-12-31') ASC, created_at ASC
                """,
                (owner_id, start.isoformat(), end.isoformat()),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    # ---- PersistenceClient ----

    async def create_task(self, payload: TaskPayload) -> Task:
        return await asyncio.to_thread(self.create_task_sync, payload)

    async def update_task(self, task_id: str, payload: TaskPayload) -> Task:
        return await asyncio.to_thread(self.update_task_sync, task_id, payload)

    async def delete_task(self, task_id: str) -> None:
        await asyncio.to_thread(self.delete_task_sync, task_id)

    async def list_tasks(self, owner_id: str, start: date, end: date) -> list[Task]:
        return await asyncio.to_thread(self.list_tasks_sync, owner_id, start, end)
