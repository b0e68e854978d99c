# src/taskweave/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the persistence backend, the canonical store and the write pipeline into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import PersistenceClient
from ..core.state import AppState
from ..errors import WriteFailedError
from ..storage.sqlite_backend import SqliteTaskBackend
from ..tasks.drafts import DraftLifecycle
from ..tasks.task_store import TaskStore
from ..tasks.write_scheduler import WriteScheduler

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, backend: PersistenceClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings and backend injectable makes the app easier to test and avoids
    hidden global config reads. If settings is None, falls back to get_settings();
    if backend is None, a SQLite backend at settings.tasks_db_path is used.
    """
    if settings is None:
        settings = get_settings()

    if backend is None:
        _ensure_local_dirs(settings)
        backend = SqliteTaskBackend(settings.tasks_db_path)

    errors: list[WriteFailedError] = []

    store = TaskStore()
    scheduler = WriteScheduler(
        store,
        backend,
        debounce_seconds=settings.debounce_seconds,
        on_error=errors.append,
    )
    drafts = DraftLifecycle(store, scheduler, owner_id=settings.owner_id)

    state = AppState(
        settings=settings,
        backend=backend,
        store=store,
        scheduler=scheduler,
        drafts=drafts,
        owner_id=settings.owner_id,
        errors=errors,
    )
    logger.debug("AppState ready owner=%s debounce=%.3fs", state.owner_id, scheduler.debounce_seconds)
    return state
