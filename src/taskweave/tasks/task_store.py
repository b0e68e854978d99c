# src/taskweave/tasks/task_store.py

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any

from ..core.ports import IdentityReferenceHolder
from ..errors import UnknownTaskError
from .task_models import Task, TaskId

logger = logging.getLogger(__name__)

_TASK_FIELDS = frozenset(f.name for f in fields(Task))


@dataclass(slots=True, frozen=True)
class StoreChange:
    """What one mutation did to the canonical collection."""

    upserted: tuple[TaskId, ...] = ()
    removed: tuple[TaskId, ...] = ()
    renamed: tuple[tuple[TaskId, TaskId], ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.upserted or self.removed or self.renamed)


StoreListener = Callable[[StoreChange], None]
RemovalHook = Callable[[TaskId], Any]


@dataclass(slots=True)
class _Subscribers:
    listeners: list[StoreListener] = field(default_factory=list)
    removal_hooks: list[RemovalHook] = field(default_factory=list)
    reference_holders: list[IdentityReferenceHolder] = field(default_factory=list)


class TaskStore:
    """
    The canonical in-memory task collection for one session.

    Every view projection is derived from this map and merged back into it.
    Mutation entry points are upsert(), remove() and swap_identity(); nothing
    else writes the map. All mutations are synchronous, so two of them never
    interleave on the event loop.

    Other components plug in through:
    - subscribe(): called once per mutation with a StoreChange
    - add_removal_hook(): called for every removed id (pending writes are dropped there)
    - add_reference_holder(): ids held outside the store, renamed on identity swap
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[TaskId, Task] = {t.id: t for t in tasks}
        self._subs = _Subscribers()
        logger.debug("TaskStore ready total=%s", len(self._tasks))

    # ---- read API ----

    def get(self, task_id: TaskId) -> Task | None:
        return self._tasks.get(task_id)

    def require(self, task_id: TaskId) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    def ids(self) -> list[TaskId]:
        return list(self._tasks)

    def values(self) -> list[Task]:
        return list(self._tasks.values())

    def snapshot(self) -> Mapping[TaskId, Task]:
        """Read-only copy of the collection as it is right now."""
        return MappingProxyType(dict(self._tasks))

    # ---- wiring ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._subs.listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._subs.listeners:
                self._subs.listeners.remove(listener)

        return _unsubscribe

    def add_removal_hook(self, hook: RemovalHook) -> None:
        self._subs.removal_hooks.append(hook)

    def add_reference_holder(self, holder: IdentityReferenceHolder) -> None:
        if holder not in self._subs.reference_holders:
            self._subs.reference_holders.append(holder)

    def remove_reference_holder(self, holder: IdentityReferenceHolder) -> None:
        if holder in self._subs.reference_holders:
            self._subs.reference_holders.remove(holder)

    # ---- mutations ----

    def upsert(self, tasks: Iterable[Task], scope: Iterable[TaskId] | None = None) -> StoreChange:
        """
        Merge tasks into the collection.

        Every given task overwrites the canonical entry with the same id. Entries
        that are not given are left alone, whatever subset the caller was looking at.

        scope names the ids the caller owns for removal purposes: an id in scope
        that is missing from `tasks` is removed. Ids outside scope are never removed.
        """
        incoming: dict[TaskId, Task] = {}
        for task in tasks:
            incoming[task.id] = task

        upserted: list[TaskId] = []
        for task_id, task in incoming.items():
            if self._tasks.get(task_id) is task:
                continue
            self._tasks[task_id] = task
            upserted.append(task_id)

        removed: list[TaskId] = []
        if scope is not None:
            for task_id in list(dict.fromkeys(scope)):
                if task_id in incoming or task_id not in self._tasks:
                    continue
                del self._tasks[task_id]
                removed.append(task_id)

        for task_id in removed:
            self._run_removal_hooks(task_id)

        change = StoreChange(upserted=tuple(upserted), removed=tuple(removed))
        if not change.empty:
            logger.debug("upsert: upserted=%d removed=%d", len(upserted), len(removed))
            self._notify(change)
        return change

    def remove(self, task_id: TaskId) -> Task | None:
        """Delete an entry and drop any pending write for it. Unknown ids are a no-op."""
        task = self._tasks.pop(task_id, None)
        if task is None:
            return None
        self._run_removal_hooks(task_id)
        logger.debug("remove: %s", task_id)
        self._notify(StoreChange(removed=(task_id,)))
        return task

    def swap_identity(
        self,
        old_id: TaskId,
        new_id: TaskId,
        patch: Mapping[str, Any] | Task | None = None,
    ) -> Task:
        """
        Rename a task and merge `patch` into it, in one step.

        Used once per task, when a draft is confirmed by the remote store. The key,
        the task's own id and every registered reference holder are updated before
        listeners hear about it, so nobody observes the old id without its task.
        """
        current = self.require(old_id)
        if new_id != old_id and new_id in self._tasks:
            raise ValueError(f"cannot rename {old_id} to {new_id}: id already present")

        updates = _patch_values(patch)
        updates["id"] = new_id
        swapped = replace(current, **updates)

        del self._tasks[old_id]
        self._tasks[new_id] = swapped

        for holder in list(self._subs.reference_holders):
            try:
                holder.rename_identity(old_id, new_id)
            except Exception:
                logger.exception("rename_identity failed holder=%r %s -> %s", holder, old_id, new_id)

        logger.info("Task identity swapped %s -> %s", old_id, new_id)
        self._notify(StoreChange(upserted=(new_id,), renamed=((old_id, new_id),)))
        return swapped

    # ---- internals ----

    def _run_removal_hooks(self, task_id: TaskId) -> None:
        for hook in list(self._subs.removal_hooks):
            try:
                hook(task_id)
            except Exception:
                logger.exception("removal hook failed task_id=%s", task_id)

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._subs.listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("TaskStore listener failed")


def _patch_values(patch: Mapping[str, Any] | Task | None) -> dict[str, Any]:
    if patch is None:
        return {}
    if isinstance(patch, Task):
        return {name: getattr(patch, name) for name in _TASK_FIELDS if name != "id"}
    unknown = set(patch) - _TASK_FIELDS
    if unknown:
        raise ValueError(f"unknown task fields in patch: {', '.join(sorted(unknown))}")
    values = dict(patch)
    values.pop("id", None)
    return values
