# src/taskweave/tasks/recurrence.py

"""
Recurrence rules: validity and occurrence dates.

Pure functions over RecurrenceRule. A weekly/monthly rule without selected days is
"recurrence disabled"; callers check is_valid_rule() first, next_occurrence()
refuses invalid rules.

Monthly rules select days of month. A selected day the month does not have
(31 in June, 30 in February) falls on the month's last day.
"""

from __future__ import annotations

import calendar
from dataclasses import replace
from datetime import date, timedelta

from .task_models import Frequency, PersistedId, RecurrenceRule, Task, TemporaryId

ONE_DAY = timedelta(days=1)
DEFAULT_HORIZON_DAYS = 30


def is_valid_rule(rule: RecurrenceRule | None) -> bool:
    if rule is None:
        return False
    if rule.frequency == Frequency.DAILY:
        return True
    return bool(rule.selected_days)


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _month_days(rule: RecurrenceRule, year: int, month: int) -> list[int]:
    last = _days_in_month(year, month)
    return sorted({min(day, last) for day in rule.selected_days})


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def _matches(rule: RecurrenceRule, day: date) -> bool:
    if rule.frequency == Frequency.DAILY:
        return True
    if rule.frequency == Frequency.WEEKLY:
        return day.weekday() in rule.selected_days
    return day.day in _month_days(rule, day.year, day.month)


def next_occurrence(rule: RecurrenceRule, reference_date: date) -> date:
    """
    Earliest date d >= max(rule.start_date, reference_date) that satisfies the rule.

    end_date is not applied here; see is_exhausted().
    """
    if not is_valid_rule(rule):
        raise ValueError(f"recurrence rule is not active: {rule!r}")

    start = max(rule.start_date, reference_date)

    if rule.frequency == Frequency.DAILY:
        return start

    if rule.frequency == Frequency.WEEKLY:
        for offset in range(7):
            candidate = start + timedelta(days=offset)
            if candidate.weekday() in rule.selected_days:
                return candidate
        raise AssertionError("weekly rule with selected days always matches within a week")

    for day in _month_days(rule, start.year, start.month):
        if day >= start.day:
            return start.replace(day=day)
    year, month = _next_month(start.year, start.month)
    return date(year, month, _month_days(rule, year, month)[0])


def occurrence_after(rule: RecurrenceRule, occurrence: date) -> date:
    """The next occurrence strictly after `occurrence` (used once it is closed)."""
    return next_occurrence(rule, occurrence + ONE_DAY)


def is_exhausted(rule: RecurrenceRule, occurrence: date) -> bool:
    return rule.end_date is not None and rule.end_date < occurrence


def is_scheduled_for_day(rule: RecurrenceRule | None, day: date) -> bool:
    if rule is None or not is_valid_rule(rule):
        return False
    if day < rule.start_date or is_exhausted(rule, day):
        return False
    return _matches(rule, day)


def current_occurrence(
    rule: RecurrenceRule | None,
    reference_date: date,
    last_closed: date | None = None,
) -> date | None:
    """
    The occurrence a view should show for a recurring task, or None.

    None means there is nothing to show: the rule is not active or the series
    ended before its next occurrence. An occurrence closed on `last_closed` is
    skipped.
    """
    if rule is None or not is_valid_rule(rule):
        return None

    occurrence = next_occurrence(rule, reference_date)
    if last_closed is not None and last_closed >= occurrence:
        occurrence = occurrence_after(rule, last_closed)

    if is_exhausted(rule, occurrence):
        return None
    return occurrence


def upcoming_occurrences(
    rule: RecurrenceRule,
    reference_date: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> list[date]:
    """All occurrences in [reference_date, reference_date + horizon_days]."""
    if not is_valid_rule(rule):
        return []

    limit = reference_date + timedelta(days=max(0, int(horizon_days)))
    out: list[date] = []
    occurrence = next_occurrence(rule, reference_date)
    while occurrence <= limit and not is_exhausted(rule, occurrence):
        out.append(occurrence)
        occurrence = occurrence_after(rule, occurrence)
    return out


def materialize_occurrence(template: Task, on_date: date) -> Task:
    """
    Concrete, not-yet-saved instance of a recurring template for one date.

    The instance links back to the template and does not repeat itself.
    """
    if not isinstance(template.id, PersistedId):
        raise ValueError("only a saved template can be materialized")
    if not is_scheduled_for_day(template.recurrence, on_date):
        raise ValueError(f"template {template.id} has no occurrence on {on_date.isoformat()}")

    return replace(
        template,
        id=TemporaryId.new(),
        scheduled_date=on_date,
        completed=False,
        completed_at=None,
        recurrence=None,
        template_link_id=template.id.value,
        checklist=tuple(replace(item, completed=False) for item in template.checklist),
        created_at=None,
        updated_at=None,
    )
