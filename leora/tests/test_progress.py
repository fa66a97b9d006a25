import unittest
from datetime import date
from decimal import Decimal

from leora.domain import Goal, Habit, Task
from leora.progress import (
    IndicatorStatus,
    ProgressData,
    build_indicators,
    calculate_goal_progress,
    calculate_habit_progress,
    calculate_overall_progress,
    calculate_task_progress,
    compute_progress_data,
    is_habit_scheduled,
    map_value_to_status,
)

# A Tuesday.
DAY = date(2024, 3, 12)


class StatusMappingTests(unittest.TestCase):
    def test_thresholds(self) -> None:
        self.assertEqual(map_value_to_status(70), IndicatorStatus.SUCCESS)
        self.assertEqual(map_value_to_status(69), IndicatorStatus.WARNING)
        self.assertEqual(map_value_to_status(40), IndicatorStatus.WARNING)
        self.assertEqual(map_value_to_status(39), IndicatorStatus.DANGER)
        self.assertEqual(map_value_to_status(None), IndicatorStatus.MUTED)

    def test_indicators_follow_tasks_budget_focus_order(self) -> None:
        statuses = build_indicators(ProgressData(tasks=90, budget=10, focus=50))

        self.assertEqual(
            statuses,
            (IndicatorStatus.SUCCESS, IndicatorStatus.DANGER, IndicatorStatus.WARNING),
        )

    def test_missing_progress_is_muted(self) -> None:
        self.assertEqual(build_indicators(None), (IndicatorStatus.MUTED,) * 3)


class TaskProgressTests(unittest.TestCase):
    def test_counts_only_the_days_live_tasks(self) -> None:
        tasks = [
            Task(id="1", status="completed", due_date="2024-03-12T09:00:00"),
            Task(id="2", status="planned", due_date="2024-03-12T12:00:00"),
            Task(id="3", status="archived", due_date="2024-03-12T12:00:00"),
            Task(id="4", status="completed", due_date="2024-03-13T12:00:00"),
            Task(id="5", status="completed", due_date=None),
        ]

        self.assertEqual(calculate_task_progress(tasks, DAY), 50)

    def test_empty_day_scores_zero(self) -> None:
        self.assertEqual(calculate_task_progress([], DAY), 0)


class HabitProgressTests(unittest.TestCase):
    def test_weekly_habit_uses_sunday_based_weekdays(self) -> None:
        monday_only = Habit(id="h", frequency="weekly", days_of_week=(1,))
        tuesday_only = Habit(id="t", frequency="weekly", days_of_week=(2,))

        self.assertFalse(is_habit_scheduled(monday_only, DAY))
        self.assertTrue(is_habit_scheduled(tuesday_only, DAY))

    def test_only_scheduled_active_habits_count(self) -> None:
        habits = [
            Habit(id="a", completion_history={"2024-03-12": "done"}),
            Habit(id="b", completion_history={"2024-03-12": {"status": "miss"}}),
            Habit(id="c", status="paused", completion_history={"2024-03-12": "done"}),
            Habit(id="d", frequency="weekly", days_of_week=(1,)),
        ]

        self.assertEqual(calculate_habit_progress(habits, DAY), 50)

    def test_structured_history_entries(self) -> None:
        habit = Habit(id="a", completion_history={"2024-03-12": {"status": "done"}})

        self.assertEqual(calculate_habit_progress([habit], DAY), 100)


class GoalAndOverallProgressTests(unittest.TestCase):
    def setUp(self) -> None:
        self.goals = [
            Goal(id="g1", progress_percent=Decimal("0.5")),
            Goal(id="g2", progress_percent=Decimal("0.25")),
            Goal(id="g3", status="completed", progress_percent=Decimal("1")),
        ]

    def test_goal_progress_averages_active_goals(self) -> None:
        self.assertEqual(calculate_goal_progress(self.goals), 38)
        self.assertEqual(calculate_goal_progress([]), 0)

    def test_overall_progress_is_weighted(self) -> None:
        tasks = [
            Task(id="1", status="completed", due_date="2024-03-12"),
            Task(id="2", status="planned", due_date="2024-03-12"),
        ]
        habits = [
            Habit(id="a", completion_history={"2024-03-12": "done"}),
            Habit(id="b"),
        ]

        # 50 * 0.4 + 50 * 0.3 + 38 * 0.3
        self.assertEqual(calculate_overall_progress(tasks, habits, self.goals, DAY), 46)

    def test_progress_data_slots(self) -> None:
        data = compute_progress_data(DAY, [], [Habit(id="a", completion_history={"2024-03-12": "done"})], 80)

        self.assertEqual(data.as_slots(), (0, 80, 100))


if __name__ == "__main__":
    unittest.main()
