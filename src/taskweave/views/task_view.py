# src/taskweave/views/task_view.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from typing import Any

from ..core.ports import ChangeListener, ErrorHandler
from ..tasks.drafts import DraftLifecycle
from ..tasks.task_models import DraftDefaults, Task, TaskId, apply_changes, changed_fields
from ..tasks.task_store import StoreChange, TaskStore
from ..tasks.write_scheduler import WriteMode, WriteScheduler, fields_payload
from .projection import Page, ProjectionFilters, SortContext, merge_back, paginate, project

logger = logging.getLogger(__name__)


class TaskView:
    """
    One visual consumer of the canonical collection (a day list, a goal page, ...).

    The view owns its filters, its expansion/selection state and a working copy of
    what it last displayed. Edits go to the working copy and through merge_back()
    into the TaskStore in the same step, then to the WriteScheduler. The view never
    talks to the persistence client.

    on_change is called after every canonical mutation; items() recomputes the
    projection from the current store state.
    """

    def __init__(
        self,
        store: TaskStore,
        scheduler: WriteScheduler,
        drafts: DraftLifecycle,
        *,
        filters: ProjectionFilters | None = None,
        on_change: ChangeListener | None = None,
        on_error: ErrorHandler | None = None,
        goal_areas: Mapping[str, str | None] | None = None,
        page_size: int = 20,
        name: str = "view",
    ) -> None:
        self.name = name
        self.filters = filters or ProjectionFilters()
        self.goal_areas: dict[str, str | None] = dict(goal_areas or {})
        self.page_size = max(1, int(page_size))

        self._store = store
        self._scheduler = scheduler
        self._drafts = drafts
        self._on_change = on_change
        self._on_error = on_error

        self.expanded: set[TaskId] = set()
        self.selected: set[TaskId] = set()
        self.new_ids: set[TaskId] = set()
        self._working: dict[TaskId, Task] = {}

        self._unsubscribe = store.subscribe(self._store_changed)
        store.add_reference_holder(self)

    # ---- reading ----

    def sort_context(self) -> SortContext:
        return SortContext(expanded_ids=frozenset(self.expanded), new_ids=frozenset(self.new_ids))

    def items(self, *, today: date | None = None) -> list[Task]:
        shown = project(
            self._store,
            self.filters,
            self.sort_context(),
            goal_areas=self.goal_areas,
            today=today,
        )
        self._working = {t.id: t for t in shown}
        return shown

    def page(self, number: int = 1, *, today: date | None = None) -> Page:
        return paginate(self.items(today=today), number, self.page_size)

    def get(self, task_id: TaskId) -> Task | None:
        return self._working.get(task_id) or self._store.get(task_id)

    def set_filters(self, **changes: Any) -> ProjectionFilters:
        self.filters = replace(self.filters, **changes)
        self._notify()
        return self.filters

    # ---- editing ----

    def edit(
        self,
        task_id: TaskId,
        mode: WriteMode = WriteMode.DEBOUNCED,
        **changes: Any,
    ) -> Task:
        """Apply an edit optimistically and schedule it for persistence."""
        current = self._store.require(task_id)
        edited = apply_changes(current, changes, self.goal_areas)
        touched = changed_fields(current, edited)
        if not touched:
            return current

        self._working[task_id] = edited
        merge_back(self._store, [edited])
        self._scheduler.schedule(task_id, fields_payload(*touched), mode, on_error=self._on_error)
        return edited

    def toggle_completed(self, task_id: TaskId, *, on_date: date | None = None) -> Task:
        """
        Tick a task off (or back on).

        For a recurring task the shown occurrence is what gets closed, so the
        next occurrence appears afterwards.
        """
        current = self._store.require(task_id)
        shown = self._working.get(task_id, current)

        if current.is_template:
            closed_on = shown.scheduled_date or on_date or date.today()
            return self.edit(task_id, WriteMode.IMMEDIATE, completed=True, completed_at=closed_on)

        if current.completed:
            return self.edit(task_id, WriteMode.IMMEDIATE, completed=False)
        return self.edit(task_id, WriteMode.IMMEDIATE, completed=True, completed_at=on_date or date.today())

    def delete(self, task_id: TaskId) -> asyncio.Task[None] | None:
        self._forget(task_id)
        return self._scheduler.delete(task_id, on_error=self._on_error)

    # ---- expansion / selection ----

    def expand(self, task_id: TaskId) -> None:
        self._store.require(task_id)
        self.expanded.add(task_id)
        self._notify()

    def collapse(self, task_id: TaskId) -> asyncio.Task[Task | None] | None:
        """
        Leave edit mode for a task.

        An incomplete recurrence rule is reset before the task collapses.
        """
        handle = self._drafts.settle_recurrence(task_id, on_error=self._on_error)
        self.expanded.discard(task_id)
        self._notify()
        return handle

    def select(self, task_id: TaskId, selected: bool = True) -> None:
        if selected:
            self.selected.add(task_id)
        else:
            self.selected.discard(task_id)

    # ---- drafts ----

    def new_task(self, **prefill: Any) -> Task:
        """Start a draft with this view's goal/area/date as defaults."""
        goal_id = self.filters.goal_id if isinstance(self.filters.goal_id, str) else None
        defaults = DraftDefaults(
            goal_id=goal_id,
            area_id=self.goal_areas.get(goal_id) if goal_id else self.filters.area_id,
            scheduled_date=self.filters.on_date,
            extra=dict(prefill),
        )
        draft = self._drafts.begin_draft(defaults)
        self.new_ids.add(draft.id)
        self.expanded.add(draft.id)
        return draft

    def commit(self, task_id: TaskId, title: str | None = None) -> asyncio.Task[Task | None] | None:
        """Commit point for a draft (blur, explicit save, navigating away)."""
        task = self._store.get(task_id)
        final_title = title if title is not None else (task.title if task is not None else "")
        handle = self._drafts.commit_or_discard(task_id, final_title, on_error=self._on_error)
        if task_id not in self._store:
            self._forget(task_id)
        return handle

    # ---- lifecycle ----

    def rename_identity(self, old_id: TaskId, new_id: TaskId) -> None:
        for ids in (self.expanded, self.selected, self.new_ids):
            if old_id in ids:
                ids.discard(old_id)
                ids.add(new_id)
        task = self._working.pop(old_id, None)
        if task is not None:
            self._working[new_id] = replace(task, id=new_id)

    def close(self) -> None:
        self._unsubscribe()
        self._store.remove_reference_holder(self)
        logger.debug("View %s closed", self.name)

    def _forget(self, task_id: TaskId) -> None:
        for ids in (self.expanded, self.selected, self.new_ids):
            ids.discard(task_id)
        self._working.pop(task_id, None)

    def _store_changed(self, change: StoreChange) -> None:
        for task_id in change.removed:
            self._forget(task_id)
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception:
            logger.exception("on_change failed for view %s", self.name)
