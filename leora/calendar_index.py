"""
Per-day calendar index merging planner and finance activity.

Each ISO date key maps to exactly one of two shapes:

- ``EventCountDay``: how many task, habit, goal and finance events fall on
  the day, used whenever the day has any explicit event;
- ``StatusVectorDay``: three indicator slots (tasks, budget, habits) derived
  from the day's progress, used for days without events.

Consumers branch on ``kind`` instead of guessing the shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Literal, Optional, Sequence, Union

from leora.budget_health import compute_budget_score
from leora.dates import DateInput, as_reference, iso_date_key, local_date, month_grid
from leora.domain import Budget, Goal, Habit, Task, Transaction
from leora.progress import IndicatorStatus, ProgressData, build_indicators, compute_progress_data


@dataclass(frozen=True)
class EventCountDay:
    counts: dict[str, int]
    kind: Literal["events"] = "events"


@dataclass(frozen=True)
class StatusVectorDay:
    statuses: tuple[IndicatorStatus, IndicatorStatus, IndicatorStatus]
    progress: ProgressData
    kind: Literal["status"] = "status"


CalendarDay = Union[EventCountDay, StatusVectorDay]
CalendarIndex = dict[str, CalendarDay]


@dataclass
class _EventCollector:
    reference: datetime
    events: dict[str, dict[str, int]] = field(default_factory=dict)

    def register(self, value: DateInput, event_type: str) -> None:
        day = local_date(value, self.reference)
        if day is None:
            return
        counts = self.events.setdefault(iso_date_key(day), {})
        counts[event_type] = counts.get(event_type, 0) + 1


def _habit_day(date_key: str) -> Optional[date]:
    try:
        return date.fromisoformat(date_key[:10])
    except (TypeError, ValueError):
        return None


def _milestone_due_keys(goals: Iterable[Goal], reference: datetime) -> set[str]:
    # A completed milestone counts on its completion day, but its due day is
    # still a referenced date.
    keys = set()
    for goal in goals:
        for milestone in goal.milestones:
            day = local_date(milestone.due_date, reference)
            if day is not None:
                keys.add(iso_date_key(day))
    return keys


def build_calendar_events(
    tasks: Iterable[Task] = (),
    habits: Iterable[Habit] = (),
    goals: Iterable[Goal] = (),
    transactions: Iterable[Transaction] = (),
    reference: DateInput = None,
) -> dict[str, dict[str, int]]:
    collector = _EventCollector(reference=as_reference(reference))

    for task in tasks:
        collector.register(task.due_date, "tasks")
    for habit in habits:
        for date_key in habit.completion_history:
            collector.register(_habit_day(date_key), "habits")
    for goal in goals:
        for check_in in goal.check_ins:
            collector.register(check_in.date_key or check_in.created_at, "goals")
        for milestone in goal.milestones:
            collector.register(milestone.completed_at or milestone.due_date, "goals")
    for txn in transactions:
        collector.register(txn.date, "finance")

    return collector.events


def build_calendar_index(
    tasks: Sequence[Task] = (),
    habits: Sequence[Habit] = (),
    goals: Sequence[Goal] = (),
    transactions: Sequence[Transaction] = (),
    budgets: Sequence[Budget] = (),
    selected: DateInput = None,
    include_month_grid: bool = False,
) -> CalendarIndex:
    selected_moment = as_reference(selected)
    selected_day = selected_moment.date()
    events = build_calendar_events(tasks, habits, goals, transactions, selected_moment)

    date_keys = set(events)
    date_keys.update(_milestone_due_keys(goals, selected_moment))
    date_keys.add(iso_date_key(selected_day))
    if include_month_grid:
        date_keys.update(iso_date_key(day) for day in month_grid(selected_day))

    budget_score = compute_budget_score(budgets)
    index: CalendarIndex = {}
    for key in sorted(date_keys):
        counts = events.get(key)
        if counts:
            index[key] = EventCountDay(counts=dict(counts))
            continue
        day = date.fromisoformat(key)
        progress = compute_progress_data(day, tasks, habits, budget_score)
        index[key] = StatusVectorDay(statuses=build_indicators(progress), progress=progress)
    return index
