import unittest
from datetime import date, datetime
from decimal import Decimal

from leora.budget_health import build_budget_views
from leora.domain import Account, Budget, Debt, Transaction
from leora.period_aggregation import (
    ReportingConverter,
    build_analytics_snapshot,
    build_cash_flow_timeline,
    build_spending_summary,
    find_peak,
    percentage_delta,
    percentage_delta_or_none,
    rank_categories,
)

REFERENCE = datetime(2024, 3, 15, 12, 0)


def expense(txn_id, amount, when, category=None, currency="USD"):
    return Transaction(
        id=txn_id,
        type="expense",
        amount=Decimal(str(amount)),
        date=when,
        currency=currency,
        category_id=category,
    )


def income(txn_id, amount, when, currency="USD"):
    return Transaction(
        id=txn_id, type="income", amount=Decimal(str(amount)), date=when, currency=currency
    )


class PercentageDeltaTests(unittest.TestCase):
    def test_decrease_is_negative_and_rounded_to_one_decimal(self) -> None:
        self.assertEqual(percentage_delta(800, 1000), Decimal("-20.0"))
        self.assertEqual(percentage_delta(1, 3), Decimal("-66.7"))

    def test_zero_base(self) -> None:
        self.assertEqual(percentage_delta(5, 0), Decimal("100"))
        self.assertEqual(percentage_delta(0, 0), Decimal("0"))

    def test_delta_or_none_needs_base_of_at_least_one(self) -> None:
        self.assertIsNone(percentage_delta_or_none(5, Decimal("0.5")))
        self.assertIsNone(percentage_delta_or_none(5, Decimal("-0.99")))
        self.assertEqual(percentage_delta_or_none(2, 1), Decimal("100.0"))


class AnalyticsSnapshotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transactions = [
            expense("t1", 300, "2024-03-02T09:00:00", "food"),
            expense("t2", 100, "2024-03-02T18:00:00", "taxi"),
            expense("t3", 200, "2024-03-10T10:00:00", "food"),
            income("t4", 1000, "2024-03-05T10:00:00"),
            expense("t5", 1000, "2024-02-10T10:00:00", "rent"),
            income("t6", 1000, "2024-02-01T10:00:00"),
        ]

    def build(self, **kwargs):
        return build_analytics_snapshot(
            self.transactions, "USD", reference=REFERENCE, **kwargs
        )

    def test_period_bounds(self) -> None:
        snapshot = self.build()

        self.assertEqual(snapshot.period_from, date(2024, 2, 1))
        self.assertEqual(snapshot.period_to, date(2024, 3, 1))

    def test_peak_average_and_trend(self) -> None:
        snapshot = self.build()

        self.assertEqual(snapshot.peak.day, date(2024, 3, 2))
        self.assertEqual(snapshot.peak.value, Decimal("400"))
        self.assertEqual(snapshot.average, Decimal("300"))
        self.assertEqual(snapshot.trend, Decimal("-40.0"))

    def test_comparison_rows(self) -> None:
        rows = {row.id: row for row in self.build().comparison}

        self.assertEqual(rows["expense"].direction, "up")
        self.assertEqual(rows["expense"].delta, Decimal("-40.0"))
        self.assertEqual(rows["income"].delta, Decimal("0.0"))
        self.assertEqual(rows["savings"].previous, Decimal("0"))
        self.assertIsNone(rows["savings"].delta)
        self.assertEqual(rows["savings"].direction, "up")

    def test_spending_more_points_down(self) -> None:
        self.transactions.append(expense("t7", 900, "2024-03-12T10:00:00", "food"))

        rows = {row.id: row for row in self.build().comparison}

        self.assertEqual(rows["expense"].direction, "down")
        self.assertEqual(rows["expense"].delta, Decimal("50.0"))

    def test_top_categories_cover_whole_history(self) -> None:
        categories = self.build().top_categories

        self.assertEqual([item.name for item in categories], ["rent", "food", "taxi"])
        self.assertEqual([item.share for item in categories], [63, 31, 6])
        self.assertEqual(categories[0].id, "rent-0")

    def test_no_current_month_activity_means_zero_average(self) -> None:
        snapshot = build_analytics_snapshot(
            [expense("old", 50, "2024-02-20T10:00:00")], "USD", reference=REFERENCE
        )

        self.assertEqual(snapshot.average, Decimal("0"))
        self.assertIsNone(snapshot.peak.day)
        self.assertEqual(snapshot.trend, Decimal("-100.0"))

    def test_malformed_dates_are_skipped(self) -> None:
        snapshot = build_analytics_snapshot(
            [expense("bad", 999, "not-a-date")], "USD", reference=REFERENCE
        )

        self.assertIsNone(snapshot.peak.day)
        self.assertEqual(snapshot.average, Decimal("0"))
        self.assertEqual(snapshot.trend, Decimal("0"))

    def test_amounts_are_converted_to_reporting_currency(self) -> None:
        snapshot = build_analytics_snapshot(
            [expense("uzs", 124500, "2024-03-03T10:00:00", currency="UZS")],
            "USD",
            reference=REFERENCE,
        )

        self.assertEqual(snapshot.peak.value, Decimal("10"))

    def test_transaction_without_currency_uses_account(self) -> None:
        txn = Transaction(
            id="a", type="expense", amount=Decimal("24900"), date="2024-03-03", account_id="cash"
        )
        snapshot = build_analytics_snapshot(
            [txn],
            "USD",
            reference=REFERENCE,
            accounts=[Account(id="cash", currency="UZS")],
        )

        self.assertEqual(snapshot.peak.value, Decimal("2"))

    def test_highlights(self) -> None:
        views = build_budget_views(
            [Budget(id="b1", name="Fun", limit_amount=Decimal("10"), spent_amount=Decimal("20"))],
            "USD",
        )
        debts = [
            Debt(id="late", principal_amount=Decimal("5"), principal_currency="USD",
                 counterparty_name="Ann", due_date="2024-04-01"),
            Debt(id="soon", principal_amount=Decimal("5"), principal_currency="USD",
                 counterparty_name="Bob", due_date="2024-03-20"),
        ]

        highlights = self.build(budget_views=views, debts=debts).highlights

        self.assertEqual([item.id for item in highlights], ["top-category", "budget-alert", "debt-due"])
        self.assertEqual(highlights[1].target_id, "b1")
        self.assertEqual(highlights[2].target_id, "soon")


class RankingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.converter = ReportingConverter("USD")

    def test_at_most_five_categories_sorted_descending(self) -> None:
        transactions = [
            expense(f"t{index}", index + 1, "2024-03-01", f"cat{index}") for index in range(7)
        ]

        ranked = rank_categories(transactions, self.converter)

        self.assertEqual(len(ranked), 5)
        amounts = [item.amount for item in ranked]
        self.assertEqual(amounts, sorted(amounts, reverse=True))
        self.assertLessEqual(sum(item.share for item in ranked), 100)

    def test_rounded_shares_never_exceed_one_hundred(self) -> None:
        transactions = [
            expense("a", 101, "2024-03-01", "rent"),
            expense("b", 99, "2024-03-01", "food"),
        ]

        ranked = rank_categories(transactions, self.converter)

        self.assertEqual([item.share for item in ranked], [51, 49])

    def test_ties_keep_first_seen_order(self) -> None:
        transactions = [
            expense("a", 10, "2024-03-01", "beta"),
            expense("b", 10, "2024-03-01", "alpha"),
        ]

        ranked = rank_categories(transactions, self.converter)

        self.assertEqual([item.name for item in ranked], ["beta", "alpha"])

    def test_uncategorized_expenses_group_under_other(self) -> None:
        ranked = rank_categories([expense("a", 10, "2024-03-01")], self.converter)

        self.assertEqual(ranked[0].name, "Other")
        self.assertEqual(ranked[0].share, 100)

    def test_peak_tie_keeps_earliest_inserted_day(self) -> None:
        peak = find_peak({date(2024, 3, 1): Decimal("5"), date(2024, 3, 2): Decimal("5")})

        self.assertEqual(peak.day, date(2024, 3, 1))


class DashboardSummaryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.converter = ReportingConverter("USD")

    def test_spending_summary_keeps_top_three_of_current_month(self) -> None:
        transactions = [
            expense("a", 10.4, "2024-03-01", "coffee"),
            expense("b", 50, "2024-03-02", "food"),
            expense("c", 30, "2024-03-03", "taxi"),
            expense("d", 20, "2024-03-04", "books"),
            expense("e", 500, "2024-02-04", "rent"),
        ]

        summary = build_spending_summary(transactions, self.converter, REFERENCE)

        self.assertEqual([item.label for item in summary.categories], ["food", "taxi", "books"])
        self.assertEqual(summary.total, 100)

    def test_cash_flow_covers_last_five_days(self) -> None:
        transactions = [
            expense("a", 50.4, "2024-03-15T08:00:00"),
            income("b", 100, "2024-03-14T08:00:00"),
            expense("c", 70, "2024-03-05T08:00:00"),
        ]

        timeline = build_cash_flow_timeline(transactions, self.converter, REFERENCE)

        self.assertEqual([item.day for item in timeline][0], date(2024, 3, 11))
        self.assertEqual(len(timeline), 5)
        self.assertEqual(timeline[-1].expense, 50)
        self.assertEqual(timeline[-2].income, 100)
        self.assertEqual(sum(item.expense for item in timeline), 50)


if __name__ == "__main__":
    unittest.main()
