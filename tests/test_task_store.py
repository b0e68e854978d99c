# tests/test_task_store.py

from __future__ import annotations

from dataclasses import replace

import pytest

from taskweave.errors import UnknownTaskError
from taskweave.tasks.task_models import PersistedId, Task, TemporaryId
from taskweave.tasks.task_store import StoreChange, TaskStore


def _task(value: str, **kw) -> Task:
    return Task(id=PersistedId(value), title=value, **kw)


def test_upsert_without_scope_never_removes() -> None:
    a, b = _task("a"), _task("b")
    store = TaskStore([a, b])

    change = store.upsert([replace(a, title="A")])

    assert change.upserted == (a.id,)
    assert change.removed == ()
    assert store.require(a.id).title == "A"
    assert b.id in store


def test_upsert_with_scope_removes_only_scoped_missing_ids() -> None:
    a, b, c = _task("a"), _task("b"), _task("c")
    store = TaskStore([a, b, c])

    change = store.upsert([a], scope=[a.id, b.id])

    assert change.removed == (b.id,)
    assert store.ids() == [a.id, c.id]


def test_upsert_same_object_is_not_a_change() -> None:
    a = _task("a")
    store = TaskStore([a])
    seen: list[StoreChange] = []
    store.subscribe(seen.append)

    assert store.upsert([a]).empty
    assert seen == []


def test_listeners_are_notified_once_per_mutation_and_can_unsubscribe() -> None:
    store = TaskStore()
    seen: list[StoreChange] = []
    unsubscribe = store.subscribe(seen.append)

    store.upsert([_task("a"), _task("b")])
    assert len(seen) == 1
    assert set(seen[0].upserted) == {PersistedId("a"), PersistedId("b")}

    unsubscribe()
    store.remove(PersistedId("a"))
    assert len(seen) == 1


def test_failing_listener_does_not_break_mutation() -> None:
    store = TaskStore()

    def boom(_change: StoreChange) -> None:
        raise RuntimeError("listener bug")

    seen: list[StoreChange] = []
    store.subscribe(boom)
    store.subscribe(seen.append)

    store.upsert([_task("a")])
    assert PersistedId("a") in store
    assert len(seen) == 1


def test_remove_runs_removal_hooks() -> None:
    store = TaskStore([_task("a")])
    removed: list = []
    store.add_removal_hook(removed.append)

    assert store.remove(PersistedId("a")) is not None
    assert store.remove(PersistedId("a")) is None
    assert removed == [PersistedId("a")]


def test_require_unknown_raises() -> None:
    with pytest.raises(UnknownTaskError) as ei:
        TaskStore().require(PersistedId("nope"))
    assert isinstance(ei.value, KeyError)


class _Holder:
    def __init__(self, store: TaskStore) -> None:
        self.store = store
        self.renames: list = []
        self.seen_in_store: list[bool] = []

    def rename_identity(self, old_id, new_id) -> None:
        self.renames.append((old_id, new_id))
        self.seen_in_store.append(new_id in self.store and old_id not in self.store)


def test_swap_identity_renames_holders_before_listeners() -> None:
    temp = TemporaryId.new()
    store = TaskStore([Task(id=temp, title="draft")])
    holder = _Holder(store)
    store.add_reference_holder(holder)

    order: list[str] = []
    store.subscribe(lambda change: order.append("listener" if holder.renames else "listener-before-holder"))

    swapped = store.swap_identity(temp, PersistedId("srv-1"), {"owner_id": "me"})

    assert swapped.id == PersistedId("srv-1")
    assert swapped.owner_id == "me"
    assert swapped.title == "draft"
    assert temp not in store
    assert holder.renames == [(temp, PersistedId("srv-1"))]
    assert holder.seen_in_store == [True]
    assert order == ["listener"]


def test_swap_identity_rejects_taken_id_and_unknown_fields() -> None:
    temp = TemporaryId.new()
    store = TaskStore([Task(id=temp), _task("srv-1")])

    with pytest.raises(ValueError):
        store.swap_identity(temp, PersistedId("srv-1"))
    with pytest.raises(ValueError):
        store.swap_identity(temp, PersistedId("srv-2"), {"colour": "red"})
    assert temp in store


def test_snapshot_is_read_only_copy() -> None:
    store = TaskStore([_task("a")])
    snap = store.snapshot()
    store.upsert([_task("b")])

    assert list(snap) == [PersistedId("a")]
    with pytest.raises(TypeError):
        snap[PersistedId("c")] = _task("c")  # type: ignore[index]
