# src/taskweave/views/projection.py

"""
View projection: what one consumer shows out of the canonical collection.

project() is a pure function of (tasks, filters, sort context, today). It is cheap
and meant to be recomputed on every read after a store change.

merge_back() is the only way a view's local edits reach the canonical collection;
it never drops tasks the view was not looking at.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum

from ..tasks.recurrence import current_occurrence, is_valid_rule
from ..tasks.task_models import Task, TaskId
from ..tasks.task_store import StoreChange, TaskStore


class GoalFilter(Enum):
    NO_GOAL = "no_goal"


NO_GOAL = GoalFilter.NO_GOAL


@dataclass(slots=True, frozen=True)
class ProjectionFilters:
    """
    None means "do not filter on this".

    goal_id=NO_GOAL selects tasks without a goal. area_id matches the task's
    effective area (own area, else its goal's area).
    """

    goal_id: str | GoalFilter | None = None
    area_id: str | None = None
    on_date: date | None = None
    show_completed: bool = True


@dataclass(slots=True, frozen=True)
class SortContext:
    expanded_ids: frozenset[TaskId] = frozenset()
    new_ids: frozenset[TaskId] = frozenset()

    def is_pinned(self, task: Task) -> bool:
        return task.is_draft or task.id in self.expanded_ids or task.id in self.new_ids


@dataclass(slots=True, frozen=True)
class Page:
    items: list[Task]
    number: int
    size: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.size)) if self.size > 0 else 1

    @property
    def has_next(self) -> bool:
        return self.number < self.pages


@dataclass(slots=True, frozen=True)
class _Candidate:
    task: Task
    recurring: bool
    fresh: bool

    def outranks(self, other: _Candidate) -> bool:
        return (self.recurring, self.fresh) > (other.recurring, other.fresh)


def effective_area(task: Task, goal_areas: Mapping[str, str | None] | None = None) -> str | None:
    if task.area_id:
        return task.area_id
    if task.goal_id and goal_areas:
        return goal_areas.get(task.goal_id)
    return None


def _representations(
    tasks: list[Task],
    reference: date,
    materialized: set[tuple[str, date | None]],
    fresh_ids: frozenset[TaskId] = frozenset(),
) -> Iterator[_Candidate]:
    for task in tasks:
        fresh = task.is_draft or task.id in fresh_ids

        if not task.is_template:
            yield _Candidate(task, recurring=False, fresh=fresh)
            continue

        rule = task.recurrence
        if not is_valid_rule(rule):
            # Half-configured rule: behaves as a plain task until it is settled.
            yield _Candidate(task, recurring=False, fresh=fresh)
            continue

        last_closed = task.completed_at if task.completed else None
        occurrence = current_occurrence(rule, reference, last_closed=last_closed)
        if occurrence is None:
            continue
        if (str(task.id), occurrence) in materialized:
            continue

        shown = replace(task, scheduled_date=occurrence, completed=False, completed_at=None)
        yield _Candidate(shown, recurring=True, fresh=fresh)


def _dedupe(candidates: Iterable[_Candidate]) -> list[Task]:
    best: dict[TaskId, _Candidate] = {}
    for cand in candidates:
        seen = best.get(cand.task.id)
        if seen is None or cand.outranks(seen):
            best[cand.task.id] = cand
    return [c.task for c in best.values()]


def _matches(
    task: Task,
    filters: ProjectionFilters,
    sort: SortContext,
    goal_areas: Mapping[str, str | None] | None,
) -> bool:
    if filters.goal_id is NO_GOAL:
        if task.goal_id is not None:
            return False
    elif filters.goal_id is not None and task.goal_id != filters.goal_id:
        return False

    if filters.area_id is not None and effective_area(task, goal_areas) != filters.area_id:
        return False

    if filters.on_date is not None and task.scheduled_date != filters.on_date:
        return False

    # A task being edited stays on screen even once it is ticked off.
    if not filters.show_completed and task.completed and not sort.is_pinned(task):
        return False

    return True


def _sort_key(task: Task, sort: SortContext) -> tuple[int, float, float, float]:
    created = task.created_at or 0.0

    if sort.is_pinned(task):
        return (0, 0.0, 0.0, -created)

    if not task.completed:
        day = task.scheduled_date.toordinal() if task.scheduled_date is not None else math.inf
        return (1, day, -task.priority, -created)

    closed = task.completed_at.toordinal() if task.completed_at is not None else 0
    return (2, -closed, 0.0, -created)


def project(
    canonical: Iterable[Task] | Mapping[TaskId, Task] | TaskStore,
    filters: ProjectionFilters | None = None,
    sort: SortContext | None = None,
    *,
    goal_areas: Mapping[str, str | None] | None = None,
    today: date | None = None,
    local: Iterable[Task] = (),
) -> list[Task]:
    """
    Ordered list of tasks one view displays.

    Recurring templates are replaced by their current occurrence (relative to
    filters.on_date when set, else today).

    `local` holds copies the view keeps of its own drafts and just-created tasks;
    their canonical copy may lag behind. Duplicate ids keep the recurring
    representation over a plain one, then a local copy of a draft or of a task
    in sort.new_ids over the canonical one.

    Order: pinned (being edited or new), then open tasks by date, priority and
    newest first, then completed tasks by completion date, newest first.
    """
    filters = filters or ProjectionFilters()
    sort = sort or SortContext()
    reference = filters.on_date or today or date.today()

    if isinstance(canonical, Mapping):
        tasks = list(canonical.values())
    else:
        tasks = list(canonical)

    mine = list(local)
    materialized = {
        (t.template_link_id, t.scheduled_date) for t in (*tasks, *mine) if t.template_link_id is not None
    }
    candidates = [
        *_representations(tasks, reference, materialized),
        *_representations(mine, reference, materialized, sort.new_ids),
    ]
    visible = [t for t in _dedupe(candidates) if _matches(t, filters, sort, goal_areas)]
    visible.sort(key=lambda t: _sort_key(t, sort))
    return visible


def paginate(items: list[Task], page: int, page_size: int) -> Page:
    """1-based pages; out-of-range page numbers are clamped."""
    size = max(1, int(page_size))
    total = len(items)
    last = max(1, math.ceil(total / size))
    number = min(max(1, int(page)), last)
    start = (number - 1) * size
    return Page(items=items[start : start + size], number=number, size=size, total=total)


def merge_back(canonical: TaskStore, local_edits: Iterable[Task]) -> StoreChange:
    """
    Fold a view's edited tasks into the canonical collection.

    Only the edited ids are overwritten; everything outside the view's filter
    stays exactly as it was.
    """
    return canonical.upsert(local_edits)
