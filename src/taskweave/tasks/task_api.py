# src/taskweave/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, timedelta

from ..core.ports import ChangeListener
from ..core.state import AppState
from ..views.projection import ProjectionFilters
from ..views.task_view import TaskView
from .task_models import PersistedId, Task, TaskId
from .task_store import StoreChange

logger = logging.getLogger(__name__)


def load_window(state: AppState, today: date | None = None) -> tuple[date, date]:
    """Date range of the initial load, from settings (days back / ahead of today)."""
    today = today or date.today()
    back = int(getattr(state.settings, "load_days_back", 7))
    ahead = int(getattr(state.settings, "load_days_ahead", 30))
    return today - timedelta(days=back), today + timedelta(days=ahead)


def _in_window(task: Task, start: date, end: date) -> bool:
    if task.is_template:
        return True
    return task.scheduled_date is None or start <= task.scheduled_date <= end


async def reload(state: AppState, start: date, end: date) -> StoreChange:
    """
    Replace the persisted tasks of a date range with a fresh server snapshot.

    Used for the initial load and to recover after a failed optimistic write.
    Drafts, tasks outside the range and tasks with a write still pending are
    left as they are locally.
    """
    fresh = await state.backend.list_tasks(state.owner_id, start, end)

    pending = set(state.scheduler.pending_ids())
    incoming = [t for t in fresh if t.id not in pending]
    scope: list[TaskId] = [
        t.id
        for t in state.store.values()
        if isinstance(t.id, PersistedId) and t.id not in pending and _in_window(t, start, end)
    ]

    change = state.store.upsert(incoming, scope=scope)
    logger.info(
        "Reloaded %s..%s: %d tasks, %d removed, %d kept for pending writes",
        start.isoformat(),
        end.isoformat(),
        len(incoming),
        len(change.removed),
        len(fresh) - len(incoming),
    )
    return change


def open_view(
    state: AppState,
    name: str,
    *,
    filters: ProjectionFilters | None = None,
    on_change: ChangeListener | None = None,
    goal_areas: Mapping[str, str | None] | None = None,
) -> TaskView:
    """Create (or replace) a named view over the session's canonical collection."""
    old = state.views.pop(name, None)
    if old is not None:
        old.close()

    view = TaskView(
        state.store,
        state.scheduler,
        state.drafts,
        filters=filters,
        on_change=on_change,
        on_error=state.report_error,
        goal_areas=goal_areas,
        page_size=int(getattr(state.settings, "page_size", 20)),
        name=name,
    )
    state.views[name] = view
    return view


def can_leave(state: AppState) -> bool:
    """False while any write is pending; leaving now could lose an edit."""
    return not state.scheduler.has_pending


async def shutdown(state: AppState, *, force: bool = False) -> None:
    """Wait for pending writes (or drop them when forced) and close every view."""
    if force:
        await state.scheduler.aclose()
    else:
        await state.scheduler.flush()

    for view in list(state.views.values()):
        view.close()
    state.views.clear()
