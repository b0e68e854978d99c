# tests/test_recurrence.py

from __future__ import annotations

from datetime import date

import pytest

from taskweave.tasks.recurrence import (
    current_occurrence,
    is_scheduled_for_day,
    is_valid_rule,
    materialize_occurrence,
    next_occurrence,
    occurrence_after,
    upcoming_occurrences,
)
from taskweave.tasks.task_models import (
    ChecklistItem,
    Frequency,
    PersistedId,
    RecurrenceRule,
    Task,
    TemporaryId,
)

# 2024-06-12 is a Wednesday.
WED = date(2024, 6, 12)


def weekly(*days: str, start: date = date(2024, 6, 1), end: date | None = None) -> RecurrenceRule:
    return RecurrenceRule.build("weekly", start_date=start, selected_days=days, end_date=end)


def test_build_parses_weekday_names_and_indices() -> None:
    rule = RecurrenceRule.build("Weekly", start_date=WED, selected_days=["monday", "2", 4])
    assert rule.frequency == Frequency.WEEKLY
    assert rule.selected_days == frozenset({0, 2, 4})


def test_build_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        RecurrenceRule.build("yearly", start_date=WED)
    with pytest.raises(ValueError):
        RecurrenceRule.build("weekly", start_date=WED, selected_days=["funday"])
    with pytest.raises(ValueError):
        RecurrenceRule.build("monthly", start_date=WED, selected_days=[32])


def test_daily_ignores_selected_days() -> None:
    rule = RecurrenceRule.build("daily", start_date=WED, selected_days=[1, 2])
    assert rule.selected_days == frozenset()
    assert is_valid_rule(rule)


def test_empty_weekly_or_monthly_is_not_valid() -> None:
    assert not is_valid_rule(None)
    assert not is_valid_rule(weekly())
    assert not is_valid_rule(RecurrenceRule.build("monthly", start_date=WED))
    with pytest.raises(ValueError):
        next_occurrence(weekly(), WED)


def test_weekly_next_occurrence_is_nearest_matching_day() -> None:
    assert next_occurrence(weekly("wednesday"), WED) == WED
    assert next_occurrence(weekly("monday"), WED) == date(2024, 6, 17)
    assert next_occurrence(weekly("monday", "friday"), WED) == date(2024, 6, 14)


def test_weekly_respects_future_start_date() -> None:
    rule = weekly("wednesday", start=date(2024, 7, 1))
    assert next_occurrence(rule, WED) == date(2024, 7, 3)


def test_daily_next_occurrence() -> None:
    rule = RecurrenceRule.build("daily", start_date=date(2024, 6, 1))
    assert next_occurrence(rule, WED) == WED
    assert occurrence_after(rule, WED) == date(2024, 6, 13)


def test_monthly_rolls_over_and_clamps_short_months() -> None:
    rule = RecurrenceRule.build("monthly", start_date=date(2024, 1, 1), selected_days=[31])
    assert next_occurrence(rule, date(2024, 6, 1)) == date(2024, 6, 30)
    assert next_occurrence(rule, date(2024, 2, 10)) == date(2024, 2, 29)
    assert occurrence_after(rule, date(2024, 6, 30)) == date(2024, 7, 31)

    mid = RecurrenceRule.build("monthly", start_date=date(2024, 1, 1), selected_days=[5, 20])
    assert next_occurrence(mid, date(2024, 6, 21)) == date(2024, 7, 5)
    assert next_occurrence(mid, date(2024, 12, 25)) == date(2025, 1, 5)


def test_current_occurrence_skips_closed_one() -> None:
    rule = weekly("wednesday")
    assert current_occurrence(rule, WED) == WED
    assert current_occurrence(rule, WED, last_closed=WED) == date(2024, 6, 19)
    # An older closure does not affect today's occurrence.
    assert current_occurrence(rule, WED, last_closed=date(2024, 6, 5)) == WED


def test_current_occurrence_none_after_end_date() -> None:
    rule = weekly("wednesday", end=date(2024, 6, 15))
    assert current_occurrence(rule, WED) == WED
    assert current_occurrence(rule, WED, last_closed=WED) is None
    assert current_occurrence(weekly(), WED) is None


def test_is_scheduled_for_day() -> None:
    rule = weekly("wednesday", start=date(2024, 6, 10), end=date(2024, 6, 30))
    assert is_scheduled_for_day(rule, WED)
    assert not is_scheduled_for_day(rule, date(2024, 6, 13))
    assert not is_scheduled_for_day(rule, date(2024, 6, 5))
    assert not is_scheduled_for_day(rule, date(2024, 7, 3))
    assert not is_scheduled_for_day(None, WED)


def test_upcoming_occurrences_within_horizon() -> None:
    rule = weekly("monday", "wednesday", end=date(2024, 6, 24))
    assert upcoming_occurrences(rule, WED, horizon_days=30) == [
        date(2024, 6, 12),
        date(2024, 6, 17),
        date(2024, 6, 19),
        date(2024, 6, 24),
    ]
    assert upcoming_occurrences(weekly(), WED) == []


def test_materialize_occurrence_links_back_to_template() -> None:
    template = Task(
        id=PersistedId("tpl-1"),
        title="Water plants",
        checklist=(ChecklistItem("c1", "kitchen", completed=True),),
        recurrence=weekly("wednesday"),
        completed=True,
        completed_at=date(2024, 6, 5),
    )
    inst = materialize_occurrence(template, WED)

    assert isinstance(inst.id, TemporaryId)
    assert inst.template_link_id == "tpl-1"
    assert inst.scheduled_date == WED
    assert inst.recurrence is None
    assert not inst.is_template
    assert not inst.completed and inst.completed_at is None
    assert inst.checklist[0].completed is False


def test_materialize_requires_saved_template_and_matching_day() -> None:
    rule = weekly("wednesday")
    with pytest.raises(ValueError):
        materialize_occurrence(Task(id=TemporaryId.new(), recurrence=rule), WED)
    with pytest.raises(ValueError):
        materialize_occurrence(Task(id=PersistedId("tpl"), recurrence=rule), date(2024, 6, 13))


def test_weekly_from_monday_then_past_the_occurrence() -> None:
    rule = weekly("wednesday", start=date(2024, 6, 1))
    monday = date(2024, 6, 10)

    first = next_occurrence(rule, monday)
    assert first == date(2024, 6, 12)
    assert occurrence_after(rule, first) == date(2024, 6, 19)
    assert current_occurrence(rule, monday, last_closed=first) == date(2024, 6, 19)
