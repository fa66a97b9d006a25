import unittest
from datetime import datetime
from decimal import Decimal

from leora.budget_health import build_budget_views
from leora.domain import Account, Budget, Debt, Transaction
from leora.finance_summary import build_finance_summary, day_part, spending_patterns
from leora.period_aggregation import ReportingConverter

REFERENCE = datetime(2024, 3, 15, 12, 0)


class FinanceSummaryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.converter = ReportingConverter("USD")
        self.accounts = [
            Account(id="cash", currency="USD", current_balance=Decimal("500")),
            Account(id="save", currency="USD", current_balance=Decimal("500"), account_type="savings"),
            Account(id="old", currency="USD", current_balance=Decimal("9000"), is_archived=True),
        ]
        self.transactions = [
            Transaction(id="n", type="expense", amount=Decimal("250"), date="2024-03-14T23:00:00", currency="USD"),
            Transaction(id="m", type="expense", amount=Decimal("250"), date="2024-03-13T09:00:00", currency="USD"),
            Transaction(id="i", type="income", amount=Decimal("1000"), date="2024-03-01T10:00:00", currency="USD"),
        ]
        self.debts = [
            Debt(id="d1", principal_amount=Decimal("200"), principal_currency="USD"),
            Debt(id="d2", principal_amount=Decimal("999"), principal_currency="USD", direction="they_owe_me"),
            Debt(id="d3", principal_amount=Decimal("999"), principal_currency="USD", status="paid"),
        ]
        self.views = build_budget_views(
            [
                Budget(id="b1", name="Food", limit_amount=Decimal("100"), spent_amount=Decimal("150")),
                Budget(id="b2", name="Coffee shop", limit_amount=Decimal("100"), spent_amount=Decimal("50")),
            ],
            "USD",
        )

    def build(self):
        return build_finance_summary(
            self.transactions, self.accounts, self.debts, self.views, self.converter, REFERENCE
        )

    def test_indicator_scores(self) -> None:
        indicators = self.build().indicators

        self.assertEqual(indicators["liquidity"].score, 1.0)
        self.assertEqual(indicators["savings"].score, 0.5)
        self.assertAlmostEqual(indicators["debt"].score, 1 - 200 / 1200)
        self.assertAlmostEqual(indicators["capital"].score, 0.8)
        self.assertEqual(indicators["goals"].score, 0.5)
        self.assertEqual(indicators["liquidity"].metric, "500.00 USD")
        self.assertEqual(indicators["goals"].metric, "50%")

    def test_health_score_is_mean_on_ten_point_scale(self) -> None:
        self.assertEqual(self.build().health_score, 7.3)

    def test_patterns_cover_recent_week(self) -> None:
        summary = self.build()

        self.assertEqual(summary.weekly_pattern["thu"], 0.5)
        self.assertEqual(summary.weekly_pattern["wed"], 0.5)
        self.assertEqual(summary.weekly_pattern["mon"], 0.0)
        self.assertEqual(summary.day_pattern["night"], 0.5)
        self.assertEqual(summary.day_pattern["morning"], 0.5)
        self.assertEqual(summary.night_share, 0.5)

    def test_savings_and_change_signals(self) -> None:
        summary = self.build()

        self.assertEqual(summary.savings, {"food": Decimal("50")})
        self.assertEqual(summary.change_signals.upgrades, ["Coffee shop: 50% free"])
        self.assertEqual(summary.change_signals.attention, ["Food: 50.00 USD over"])

    def test_no_budgets_uses_default_goal_score(self) -> None:
        summary = build_finance_summary([], [], [], [], self.converter, REFERENCE)

        self.assertEqual(summary.indicators["goals"].score, 0.75)
        self.assertEqual(summary.components["discipline"].progress, 0.6)


class PatternTests(unittest.TestCase):
    def test_no_spending_is_uniform(self) -> None:
        weekly, parts, night = spending_patterns([], ReportingConverter("USD"), REFERENCE)

        self.assertAlmostEqual(weekly["mon"], 1 / 7)
        self.assertEqual(parts["day"], 0.25)
        self.assertEqual(night, 0.0)

    def test_day_part_boundaries(self) -> None:
        self.assertEqual(day_part(datetime(2024, 3, 15, 10, 59)), "morning")
        self.assertEqual(day_part(datetime(2024, 3, 15, 11, 0)), "day")
        self.assertEqual(day_part(datetime(2024, 3, 15, 17, 0)), "evening")
        self.assertEqual(day_part(datetime(2024, 3, 15, 22, 0)), "night")


if __name__ == "__main__":
    unittest.main()
