"""
Daily progress scores for the planner.

Every score is a 0-100 integer. Days with nothing scheduled score 0 rather
than 100 so an empty day never reads as a perfect one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from leora.dates import iso_date_key, js_weekday, local_date
from leora.domain import Goal, Habit, Task, coerce_amount

SUCCESS_THRESHOLD = 70
WARNING_THRESHOLD = 40

TASK_WEIGHT = Decimal("0.4")
HABIT_WEIGHT = Decimal("0.3")
GOAL_WEIGHT = Decimal("0.3")


class IndicatorStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    MUTED = "muted"


@dataclass(frozen=True)
class ProgressData:
    tasks: int
    budget: int
    focus: int

    def as_slots(self) -> tuple[int, int, int]:
        return (self.tasks, self.budget, self.focus)


def map_value_to_status(value: Optional[float]) -> IndicatorStatus:
    if value is None:
        return IndicatorStatus.MUTED
    if value >= SUCCESS_THRESHOLD:
        return IndicatorStatus.SUCCESS
    if value >= WARNING_THRESHOLD:
        return IndicatorStatus.WARNING
    return IndicatorStatus.DANGER


def build_indicators(progress: Optional[ProgressData]) -> tuple[IndicatorStatus, ...]:
    if progress is None:
        return (IndicatorStatus.MUTED,) * 3
    return tuple(map_value_to_status(value) for value in progress.as_slots())


def _percent(done: int, total: int) -> int:
    if total == 0:
        return 0
    ratio = Decimal(done) / Decimal(total) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _reference_for(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def calculate_task_progress(tasks: Iterable[Task], day: date) -> int:
    reference = _reference_for(day)
    day_tasks = [
        task
        for task in tasks
        if not task.is_excluded and local_date(task.due_date, reference) == day
    ]
    completed = sum(1 for task in day_tasks if task.status == "completed")
    return _percent(completed, len(day_tasks))


def is_habit_scheduled(habit: Habit, day: date) -> bool:
    if habit.status != "active":
        return False
    if habit.frequency == "weekly" and habit.days_of_week:
        return js_weekday(day) in habit.days_of_week
    return True


def calculate_habit_progress(habits: Iterable[Habit], day: date) -> int:
    key = iso_date_key(day)
    scheduled = [habit for habit in habits if is_habit_scheduled(habit, day)]
    completed = sum(1 for habit in scheduled if habit.status_on(key) == "done")
    return _percent(completed, len(scheduled))


def calculate_goal_progress(goals: Iterable[Goal]) -> int:
    active = [goal for goal in goals if goal.status == "active"]
    if not active:
        return 0
    total = sum((coerce_amount(goal.progress_percent) * 100 for goal in active), Decimal("0"))
    average = total / len(active)
    return int(average.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_overall_progress(
    tasks: Iterable[Task],
    habits: Iterable[Habit],
    goals: Iterable[Goal],
    day: date,
) -> int:
    overall = (
        calculate_task_progress(tasks, day) * TASK_WEIGHT
        + calculate_habit_progress(habits, day) * HABIT_WEIGHT
        + calculate_goal_progress(goals) * GOAL_WEIGHT
    )
    return int(overall.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_progress_data(
    day: date,
    tasks: Iterable[Task],
    habits: Iterable[Habit],
    budget_score: int,
) -> ProgressData:
    return ProgressData(
        tasks=calculate_task_progress(tasks, day),
        budget=budget_score,
        focus=calculate_habit_progress(habits, day),
    )
