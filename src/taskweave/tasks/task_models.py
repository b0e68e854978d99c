# src/taskweave/tasks/task_models.py

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import StrEnum
from typing import Any, TypeAlias

logger = logging.getLogger(__name__)


# ---- identity ----


@dataclass(frozen=True, slots=True)
class TemporaryId:
    """Client-generated identity of a task the remote store has not confirmed yet."""

    token: str

    @classmethod
    def new(cls) -> TemporaryId:
        return cls(uuid.uuid4().hex)

    def __str__(self) -> str:
        return f"draft:{self.token}"


@dataclass(frozen=True, slots=True)
class PersistedId:
    """Identity assigned by the remote store."""

    value: str

    def __str__(self) -> str:
        return self.value


TaskId: TypeAlias = TemporaryId | PersistedId


class Lifecycle(StrEnum):
    DRAFT = "draft"
    PERSISTED = "persisted"


# ---- recurrence ----


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, raw: str | Frequency) -> Frequency:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValueError(f"unsupported recurrence frequency: {raw!r}") from None


WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def _parse_selected_day(frequency: Frequency, raw: Any) -> int:
    if frequency == Frequency.WEEKLY and isinstance(raw, str) and not raw.strip().isdigit():
        name = raw.strip().lower()
        if name not in WEEKDAY_NAMES:
            raise ValueError(f"unknown weekday: {raw!r}")
        return WEEKDAY_NAMES.index(name)

    day = int(raw)
    if frequency == Frequency.WEEKLY and not 0 <= day <= 6:
        raise ValueError(f"weekday index out of range: {day}")
    if frequency == Frequency.MONTHLY and not 1 <= day <= 31:
        raise ValueError(f"day of month out of range: {day}")
    return day


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """
    How a task repeats.

    selected_days holds weekday indices (Monday=0 .. Sunday=6) for weekly rules and
    day-of-month numbers (1-31) for monthly rules. Daily rules ignore it.

    A weekly/monthly rule with no selected days is not an active recurrence; see
    recurrence.is_valid_rule().
    """

    frequency: Frequency
    start_date: date
    selected_days: frozenset[int] = frozenset()
    end_date: date | None = None

    @classmethod
    def build(
        cls,
        frequency: str | Frequency,
        start_date: date,
        selected_days: Iterable[Any] = (),
        end_date: date | None = None,
    ) -> RecurrenceRule:
        freq = Frequency.parse(frequency)
        days: frozenset[int] = frozenset()
        if freq != Frequency.DAILY:
            days = frozenset(_parse_selected_day(freq, d) for d in selected_days)
        return cls(frequency=freq, start_date=start_date, selected_days=days, end_date=end_date)


# ---- task ----


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    id: str
    text: str
    completed: bool = False


@dataclass(frozen=True, slots=True)
class Task:
    id: TaskId
    title: str = ""
    description: str = ""
    checklist: tuple[ChecklistItem, ...] = ()

    scheduled_date: date | None = None
    completed: bool = False
    completed_at: date | None = None

    importance: bool = False
    urgency: bool = False
    estimated_minutes: int = 0

    recurrence: RecurrenceRule | None = None
    goal_id: str | None = None
    area_id: str | None = None
    template_link_id: str | None = None

    # Server-computed.
    owner_id: str | None = None
    created_at: float | None = None
    updated_at: float | None = None

    @property
    def lifecycle(self) -> Lifecycle:
        match self.id:
            case TemporaryId():
                return Lifecycle.DRAFT
            case PersistedId():
                return Lifecycle.PERSISTED

    @property
    def is_draft(self) -> bool:
        return self.lifecycle == Lifecycle.DRAFT

    @property
    def is_template(self) -> bool:
        """A recurrence definition rather than a concrete task."""
        return self.recurrence is not None and self.template_link_id is None

    @property
    def priority(self) -> int:
        return int(self.importance) * 2 + int(self.urgency)


SERVER_FIELDS: frozenset[str] = frozenset({"id", "owner_id", "created_at", "updated_at"})
EDITABLE_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(Task) if f.name not in SERVER_FIELDS
)


def _coerce_checklist(raw: Iterable[Any]) -> tuple[ChecklistItem, ...]:
    items: list[ChecklistItem] = []
    for item in raw:
        if isinstance(item, ChecklistItem):
            items.append(item)
        elif isinstance(item, Mapping):
            items.append(
                ChecklistItem(
                    id=str(item.get("id") or uuid.uuid4().hex),
                    text=str(item.get("text") or ""),
                    completed=bool(item.get("completed", False)),
                )
            )
        else:
            raise TypeError(f"checklist item must be a mapping or ChecklistItem, got {type(item).__name__}")
    return tuple(items)


def _coerce_recurrence(raw: Any) -> RecurrenceRule | None:
    if raw is None or isinstance(raw, RecurrenceRule):
        return raw
    if isinstance(raw, Mapping):
        return recurrence_from_payload(raw)
    raise TypeError(f"recurrence must be a RecurrenceRule, mapping or None, got {type(raw).__name__}")


def apply_changes(
    task: Task,
    changes: Mapping[str, Any],
    goal_areas: Mapping[str, str | None] | None = None,
) -> Task:
    """
    Apply user edits to a task and return the edited copy.

    Rules:
    - only EDITABLE_FIELDS may be changed
    - while a goal is set, the area follows the goal (goal_areas) and direct area edits are ignored
    - completing stamps completed_at (today unless given), un-completing clears it
    - estimated_minutes never goes below zero
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"fields are not editable: {', '.join(sorted(unknown))}")

    updates: dict[str, Any] = dict(changes)

    if "checklist" in updates:
        updates["checklist"] = _coerce_checklist(updates["checklist"] or ())
    if "recurrence" in updates:
        updates["recurrence"] = _coerce_recurrence(updates["recurrence"])
    if "estimated_minutes" in updates:
        updates["estimated_minutes"] = max(0, int(updates["estimated_minutes"] or 0))

    goal_id = updates.get("goal_id", task.goal_id)
    if goal_id:
        if "area_id" in updates and "goal_id" not in updates:
            logger.debug("Ignoring area edit on task %s: area follows goal %s", task.id, goal_id)
            updates.pop("area_id")
        if goal_areas is not None and goal_id in goal_areas:
            updates["area_id"] = goal_areas[goal_id]
        elif "goal_id" in updates:
            updates.pop("area_id", None)

    if "completed" in updates:
        if updates["completed"]:
            updates["completed"] = True
            updates["completed_at"] = updates.get("completed_at") or task.completed_at or date.today()
        else:
            updates["completed"] = False
            updates["completed_at"] = None

    return replace(task, **updates)


def changed_fields(before: Task, after: Task) -> list[str]:
    return [name for name in EDITABLE_FIELDS if getattr(before, name) != getattr(after, name)]


# ---- payloads ----


def _iso(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None


def _parse_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def recurrence_to_payload(rule: RecurrenceRule | None) -> dict[str, Any] | None:
    if rule is None:
        return None
    return {
        "frequency": rule.frequency.value,
        "selected_days": sorted(rule.selected_days),
        "start_date": rule.start_date.isoformat(),
        "end_date": _iso(rule.end_date),
    }


def recurrence_from_payload(data: Mapping[str, Any] | None) -> RecurrenceRule | None:
    if not data:
        return None
    start = _parse_date(data.get("start_date"))
    if start is None:
        raise ValueError("recurrence requires start_date")
    return RecurrenceRule.build(
        frequency=data.get("frequency") or Frequency.DAILY,
        start_date=start,
        selected_days=data.get("selected_days") or (),
        end_date=_parse_date(data.get("end_date")),
    )


def task_to_payload(task: Task, fields_: Iterable[str] | None = None) -> dict[str, Any]:
    """
    Serialize the editable part of a task for the persistence client.

    With fields_ given, only those fields are included (partial update).
    """
    names = list(EDITABLE_FIELDS) if fields_ is None else list(fields_)
    out: dict[str, Any] = {}
    for name in names:
        value = getattr(task, name)
        if name == "checklist":
            value = [{"id": i.id, "text": i.text, "completed": i.completed} for i in value]
        elif name == "recurrence":
            value = recurrence_to_payload(value)
        elif isinstance(value, date):
            value = value.isoformat()
        out[name] = value
    if fields_ is None and task.owner_id is not None:
        out["owner_id"] = task.owner_id
    return out


def task_from_payload(data: Mapping[str, Any]) -> Task:
    """Build a persisted Task from a persistence response body."""
    raw_id = data.get("id")
    if raw_id is None or str(raw_id) == "":
        raise ValueError("task payload has no id")

    created_at = data.get("created_at")
    updated_at = data.get("updated_at")
    return Task(
        id=PersistedId(str(raw_id)),
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        checklist=_coerce_checklist(data.get("checklist") or ()),
        scheduled_date=_parse_date(data.get("scheduled_date")),
        completed=bool(data.get("completed", False)),
        completed_at=_parse_date(data.get("completed_at")),
        importance=bool(data.get("importance", False)),
        urgency=bool(data.get("urgency", False)),
        estimated_minutes=max(0, int(data.get("estimated_minutes") or 0)),
        recurrence=recurrence_from_payload(data.get("recurrence")),
        goal_id=data.get("goal_id"),
        area_id=data.get("area_id"),
        template_link_id=data.get("template_link_id"),
        owner_id=data.get("owner_id"),
        created_at=float(created_at) if created_at is not None else None,
        updated_at=float(updated_at) if updated_at is not None else None,
    )


@dataclass(slots=True)
class DraftDefaults:
    """Values a new draft inherits from the view that created it."""

    goal_id: str | None = None
    area_id: str | None = None
    scheduled_date: date | None = None
    importance: bool = False
    urgency: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
