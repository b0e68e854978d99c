# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskweave.cli.bootstrap import create_initial_state
from taskweave.core.state import AppState
from taskweave.tasks.task_store import TaskStore
from taskweave.tasks.write_scheduler import WriteScheduler

from .fakes import FakePersistenceClient

# Short enough to keep tests fast, long enough that a second edit lands inside the window.
TEST_DEBOUNCE_S = 0.05


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskweave-test",
        log_level="DEBUG",
        owner_id="local",
        console_enabled=False,
        debounce_ms=int(TEST_DEBOUNCE_S * 1000),
        debounce_seconds=TEST_DEBOUNCE_S,
        load_days_back=7,
        load_days_ahead=30,
        page_size=5,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
    )


@pytest.fixture()
def client() -> FakePersistenceClient:
    return FakePersistenceClient()


@pytest.fixture()
def errors() -> list:
    return []


@pytest.fixture()
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture()
def scheduler(store: TaskStore, client: FakePersistenceClient, errors: list) -> WriteScheduler:
    return WriteScheduler(store, client, debounce_seconds=TEST_DEBOUNCE_S, on_error=errors.append)


@pytest.fixture()
def state(settings: SimpleNamespace, client: FakePersistenceClient) -> AppState:
    """AppState wired with the fake persistence client instead of SQLite."""
    return create_initial_state(settings=settings, backend=client)
