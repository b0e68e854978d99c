# tests/test_sqlite_backend.py

from __future__ import annotations

import sqlite3
from datetime import date
from pathlib import Path

import pytest

from taskweave.errors import PersistenceError, TaskNotFoundError
from taskweave.storage.sqlite_backend import SqliteTaskBackend
from taskweave.tasks.task_models import ChecklistItem, PersistedId, RecurrenceRule, Task, task_to_payload


@pytest.fixture()
def backend(tmp_path: Path) -> SqliteTaskBackend:
    return SqliteTaskBackend(tmp_path / "tasks.sqlite3")


def _payload(**kw) -> dict:
    task = Task(id=PersistedId("ignored"), owner_id="me", **kw)
    return task_to_payload(task)


def test_create_and_list_roundtrip(backend: SqliteTaskBackend) -> None:
    rule = RecurrenceRule.build("weekly", start_date=date(2024, 6, 1), selected_days=["monday", "friday"])
    created = backend.create_task_sync(
        _payload(
            title="  Plan week ",
            checklist=(ChecklistItem("c1", "inbox"),),
            recurrence=rule,
            estimated_minutes=30,
            importance=True,
        )
    )

    assert isinstance(created.id, PersistedId)
    assert created.title == "Plan week"
    assert created.recurrence == rule
    assert created.checklist[0].text == "inbox"
    assert created.importance is True and created.urgency is False
    assert created.created_at is not None and created.updated_at is not None
    assert backend.count_tasks() == 1


def test_create_requires_title(backend: SqliteTaskBackend) -> None:
    with pytest.raises(PersistenceError):
        backend.create_task_sync({"title": "   ", "owner_id": "me"})


def test_update_is_partial(backend: SqliteTaskBackend) -> None:
    created = backend.create_task_sync(_payload(title="a", description="keep me"))

    updated = backend.update_task_sync(
        created.id.value, {"completed": True, "completed_at": "2024-06-12", "colour": "red"}
    )

    assert updated.completed is True
    assert updated.completed_at == date(2024, 6, 12)
    assert updated.description == "keep me"
    assert updated.title == "a"


def test_update_rejects_empty_title_and_unknown_id(backend: SqliteTaskBackend) -> None:
    created = backend.create_task_sync(_payload(title="a"))
    with pytest.raises(PersistenceError):
        backend.update_task_sync(created.id.value, {"title": ""})
    with pytest.raises(TaskNotFoundError):
        backend.update_task_sync("missing", {"title": "x"})


def test_delete(backend: SqliteTaskBackend) -> None:
    created = backend.create_task_sync(_payload(title="a"))
    backend.delete_task_sync(created.id.value)
    assert backend.count_tasks() == 0
    with pytest.raises(TaskNotFoundError):
        backend.delete_task_sync(created.id.value)


def test_list_returns_window_undated_and_templates(backend: SqliteTaskBackend) -> None:
    rule = RecurrenceRule.build("daily", start_date=date(2024, 1, 1))
    backend.create_task_sync(_payload(title="in", scheduled_date=date(2024, 6, 12)))
    backend.create_task_sync(_payload(title="out", scheduled_date=date(2024, 8, 1)))
    backend.create_task_sync(_payload(title="undated"))
    template = backend.create_task_sync(_payload(title="template", recurrence=rule))
    backend.create_task_sync(
        _payload(title="instance", scheduled_date=date(2024, 8, 2), template_link_id=template.id.value)
    )
    backend.create_task_sync({**_payload(title="theirs", scheduled_date=date(2024, 6, 12)), "owner_id": "you"})

    listed = backend.list_tasks_sync("me", date(2024, 6, 1), date(2024, 6, 30))

    assert sorted(t.title for t in listed) == ["in", "template", "undated"]


@pytest.mark.asyncio
async def test_async_methods_run_in_worker_thread(backend: SqliteTaskBackend) -> None:
    created = await backend.create_task(_payload(title="async", scheduled_date=date(2024, 6, 12)))
    updated = await backend.update_task(created.id.value, {"urgency": True})
    listed = await backend.list_tasks("me", date(2024, 6, 12), date(2024, 6, 12))
    await backend.delete_task(created.id.value)

    assert updated.urgency is True
    assert [t.id for t in listed] == [created.id]
    assert backend.count_tasks() == 0


def test_migration_adds_missing_columns(tmp_path: Path) -> None:
    db = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            owner_id TEXT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            scheduled_date TEXT,
            completed INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            importance INTEGER NOT NULL DEFAULT 0,
            urgency INTEGER NOT NULL DEFAULT 0,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(id, owner_id, title, scheduled_date, created_at, updated_at) "
        "VALUES ('old-1', 'me', 'legacy', '2024-06-12', 1.0, 1.0)"
    )
    conn.commit()
    conn.close()

    backend = SqliteTaskBackend(db)
    listed = backend.list_tasks_sync("me", date(2024, 6, 1), date(2024, 6, 30))

    assert [t.id for t in listed] == [PersistedId("old-1")]
    assert listed[0].checklist == ()
    assert listed[0].recurrence is None
    assert listed[0].estimated_minutes == 0
