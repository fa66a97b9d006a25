from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Sequence

from leora.budget_health import BudgetHealthState, BudgetView
from leora.currency_conversion import RateTable, convert_amount, normalize_currency
from leora.dates import DateInput, as_reference, local_date, month_start, shift_month
from leora.domain import ZERO, Account, Amount, Debt, Transaction, coerce_amount

HUNDRED = Decimal("100")
ONE_DECIMAL = Decimal("0.1")
TOP_CATEGORY_LIMIT = 5
SPENDING_SUMMARY_LIMIT = 3
CASH_FLOW_DAYS = 5
UNCATEGORIZED = "Other"


@dataclass(frozen=True)
class ReportingConverter:
    """Converts transactions into one reporting currency.

    A transaction without its own currency uses its account's currency, and
    failing that the reporting currency itself.
    """

    reporting_currency: str
    rate_table: Optional[RateTable] = None
    account_currencies: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reporting_currency", normalize_currency(self.reporting_currency))

    @classmethod
    def from_accounts(
        cls,
        reporting_currency: str,
        accounts: Iterable[Account] = (),
        rate_table: Optional[RateTable] = None,
    ) -> "ReportingConverter":
        return cls(
            reporting_currency=reporting_currency,
            rate_table=rate_table,
            account_currencies=account_currency_map(accounts),
        )

    def currency_of(self, transaction: Transaction) -> str:
        if transaction.currency:
            return normalize_currency(transaction.currency, self.reporting_currency)
        account_currency = (
            self.account_currencies.get(transaction.account_id)
            if transaction.account_id
            else None
        )
        return normalize_currency(account_currency, self.reporting_currency)

    def convert(self, amount: Amount, currency: Optional[str]) -> Decimal:
        return convert_amount(amount, currency, self.reporting_currency, self.rate_table)

    def amount_of(self, transaction: Transaction) -> Decimal:
        return self.convert(transaction.amount, self.currency_of(transaction))


def account_currency_map(accounts: Iterable[Account]) -> dict[str, str]:
    return {account.id: normalize_currency(account.currency) for account in accounts}


@dataclass(frozen=True)
class MonthWindow:
    start: date
    end: date

    def contains(self, value: Optional[date]) -> bool:
        return value is not None and self.start <= value < self.end


def month_windows(reference: datetime) -> tuple[MonthWindow, MonthWindow]:
    """Current and previous calendar month around the reference's local date."""
    current_start = month_start(reference.date())
    current = MonthWindow(start=current_start, end=shift_month(current_start, 1))
    previous = MonthWindow(start=shift_month(current_start, -1), end=current_start)
    return current, previous


def percentage_delta(current: Amount, previous: Amount) -> Decimal:
    current_value = coerce_amount(current)
    previous_value = coerce_amount(previous)
    if previous_value == ZERO:
        return HUNDRED if current_value > ZERO else ZERO
    change = (current_value - previous_value) / previous_value * HUNDRED
    return change.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def percentage_delta_or_none(current: Amount, previous: Amount) -> Optional[Decimal]:
    """Like ``percentage_delta`` but ``None`` when the base is under 1 in size."""
    if abs(coerce_amount(previous)) < 1:
        return None
    return percentage_delta(current, previous)


@dataclass(frozen=True)
class DayPeak:
    day: Optional[date]
    value: Decimal


@dataclass(frozen=True)
class CategoryShare:
    id: str
    name: str
    amount: Decimal
    share: int


@dataclass(frozen=True)
class ComparisonRow:
    id: str
    previous: Decimal
    current: Decimal
    direction: str
    delta: Optional[Decimal]


@dataclass(frozen=True)
class AnalyticsHighlight:
    id: str
    title: str
    detail: str
    target_id: Optional[str] = None


@dataclass(frozen=True)
class AnalyticsSnapshot:
    reporting_currency: str
    period_from: date
    period_to: date
    peak: DayPeak
    average: Decimal
    trend: Decimal
    comparison: list[ComparisonRow]
    top_categories: list[CategoryShare]
    highlights: list[AnalyticsHighlight] = field(default_factory=list)


@dataclass(frozen=True)
class SpendingCategory:
    label: str
    amount: int


@dataclass(frozen=True)
class SpendingSummary:
    categories: list[SpendingCategory]
    total: int


@dataclass(frozen=True)
class CashFlowDay:
    day: date
    income: int
    expense: int


def sum_by_type(
    transactions: Iterable[Transaction],
    txn_type: str,
    converter: ReportingConverter,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.normalized_type != txn_type:
            continue
        total += converter.amount_of(txn)
    return total


def daily_expense_totals(
    transactions: Iterable[tuple[date, Transaction]],
    converter: ReportingConverter,
) -> dict[date, Decimal]:
    totals: dict[date, Decimal] = {}
    for day, txn in transactions:
        if txn.normalized_type != "expense":
            continue
        totals[day] = totals.get(day, ZERO) + converter.amount_of(txn)
    return totals


def find_peak(day_totals: Mapping[date, Decimal]) -> DayPeak:
    ranked = sorted(day_totals.items(), key=lambda item: item[1], reverse=True)
    if not ranked:
        return DayPeak(day=None, value=ZERO)
    day, value = ranked[0]
    return DayPeak(day=day, value=value)


def rank_categories(
    transactions: Iterable[Transaction],
    converter: ReportingConverter,
    limit: int = TOP_CATEGORY_LIMIT,
) -> list[CategoryShare]:
    """Top expense categories over the whole history.

    Shares are against the total of every category, not just the ones shown.
    """
    category_totals: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.normalized_type != "expense":
            continue
        key = txn.category_id or UNCATEGORIZED
        category_totals[key] = category_totals.get(key, ZERO) + converter.amount_of(txn)

    overall = sum(category_totals.values(), ZERO)
    ranked = sorted(category_totals.items(), key=lambda item: item[1], reverse=True)
    shares: list[CategoryShare] = []
    remaining = 100
    for index, (name, amount) in enumerate(ranked[:limit]):
        # Rounded shares are capped so the shown ones never add up past 100.
        share = min(_share_percent(amount, overall), remaining)
        remaining -= share
        shares.append(CategoryShare(id=f"{name}-{index}", name=name, amount=amount, share=share))
    return shares


def _share_percent(amount: Decimal, overall: Decimal) -> int:
    if overall == ZERO:
        return 0
    share = (amount / overall * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(share)


def build_comparison_rows(
    current_income: Decimal,
    previous_income: Decimal,
    current_expense: Decimal,
    previous_expense: Decimal,
) -> list[ComparisonRow]:
    current_savings = current_income - current_expense
    previous_savings = previous_income - previous_expense
    rows = [
        ("income", previous_income, current_income, current_income >= previous_income),
        # Spending less than last month is the favorable direction.
        ("expense", previous_expense, current_expense, current_expense <= previous_expense),
        ("savings", previous_savings, current_savings, current_savings >= previous_savings),
    ]
    return [
        ComparisonRow(
            id=row_id,
            previous=previous,
            current=current,
            direction="up" if favorable else "down",
            delta=percentage_delta_or_none(current, previous),
        )
        for row_id, previous, current, favorable in rows
    ]


def build_highlights(
    top_categories: Sequence[CategoryShare],
    budget_views: Sequence[BudgetView] = (),
    debts: Sequence[Debt] = (),
    reference: Optional[datetime] = None,
) -> list[AnalyticsHighlight]:
    highlights: list[AnalyticsHighlight] = []
    if top_categories:
        leader = top_categories[0]
        highlights.append(
            AnalyticsHighlight(
                id="top-category",
                title=f"{leader.name} takes the lead",
                detail="Try capping this category for the week.",
                target_id=leader.name,
            )
        )

    over_budget = next(
        (view for view in budget_views if view.state is BudgetHealthState.EXCEEDING),
        None,
    )
    if over_budget is not None:
        highlights.append(
            AnalyticsHighlight(
                id="budget-alert",
                title=f"{over_budget.name} exceeded limit",
                detail="Adjust the limit or slow down spending.",
                target_id=over_budget.id,
            )
        )

    due_debt = _earliest_active_debt(debts, reference or datetime.now())
    if due_debt is not None:
        highlights.append(
            AnalyticsHighlight(
                id="debt-due",
                title=f"Debt with {due_debt.counterparty_name} due soon",
                detail="Send a reminder or plan repayment.",
                target_id=due_debt.id,
            )
        )
    return highlights


def _earliest_active_debt(debts: Sequence[Debt], reference: datetime) -> Optional[Debt]:
    active = [debt for debt in debts if (debt.status or "").lower() == "active"]
    if not active:
        return None

    def due_key(debt: Debt) -> date:
        due = local_date(debt.due_date, reference)
        return due if due is not None else date.max

    return sorted(active, key=due_key)[0]


def build_analytics_snapshot(
    transactions: Sequence[Transaction],
    reporting_currency: str,
    reference: DateInput = None,
    accounts: Iterable[Account] = (),
    rate_table: Optional[RateTable] = None,
    budget_views: Sequence[BudgetView] = (),
    debts: Sequence[Debt] = (),
) -> AnalyticsSnapshot:
    moment = as_reference(reference)
    converter = ReportingConverter.from_accounts(reporting_currency, accounts, rate_table)
    current_window, previous_window = month_windows(moment)

    current_txns: list[tuple[date, Transaction]] = []
    previous_txns: list[Transaction] = []
    for txn in transactions:
        day = local_date(txn.date, moment)
        if current_window.contains(day):
            current_txns.append((day, txn))
        elif previous_window.contains(day):
            previous_txns.append(txn)

    current_only = [txn for _, txn in current_txns]
    current_income = sum_by_type(current_only, "income", converter)
    previous_income = sum_by_type(previous_txns, "income", converter)
    current_expense = sum_by_type(current_only, "expense", converter)
    previous_expense = sum_by_type(previous_txns, "expense", converter)

    day_totals = daily_expense_totals(current_txns, converter)
    average = ZERO
    if current_txns:
        average = current_expense / max(len(day_totals), 1)

    top_categories = rank_categories(transactions, converter)
    return AnalyticsSnapshot(
        reporting_currency=converter.reporting_currency,
        period_from=previous_window.start,
        period_to=current_window.start,
        peak=find_peak(day_totals),
        average=average,
        trend=percentage_delta(current_expense, previous_expense),
        comparison=build_comparison_rows(
            current_income, previous_income, current_expense, previous_expense
        ),
        top_categories=top_categories,
        highlights=build_highlights(top_categories, budget_views, debts, moment),
    )


def build_spending_summary(
    transactions: Iterable[Transaction],
    converter: ReportingConverter,
    reference: DateInput = None,
    limit: int = SPENDING_SUMMARY_LIMIT,
) -> SpendingSummary:
    moment = as_reference(reference)
    window, _ = month_windows(moment)
    category_totals: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.normalized_type != "expense":
            continue
        if not window.contains(local_date(txn.date, moment)):
            continue
        key = txn.category_id or UNCATEGORIZED
        amount = converter.convert(abs(coerce_amount(txn.amount)), converter.currency_of(txn))
        category_totals[key] = category_totals.get(key, ZERO) + amount

    ranked = sorted(category_totals.items(), key=lambda item: item[1], reverse=True)[:limit]
    categories = [
        SpendingCategory(label=label, amount=_round_int(amount)) for label, amount in ranked
    ]
    return SpendingSummary(
        categories=categories,
        total=sum(category.amount for category in categories),
    )


def build_cash_flow_timeline(
    transactions: Iterable[Transaction],
    converter: ReportingConverter,
    reference: DateInput = None,
    days: int = CASH_FLOW_DAYS,
) -> list[CashFlowDay]:
    moment = as_reference(reference)
    last_day = moment.date()
    buckets = {last_day - timedelta(days=offset): [ZERO, ZERO] for offset in range(days)}
    for txn in transactions:
        day = local_date(txn.date, moment)
        if day not in buckets:
            continue
        amount = abs(converter.amount_of(txn))
        if txn.normalized_type == "income":
            buckets[day][0] += amount
        elif txn.normalized_type == "expense":
            buckets[day][1] += amount

    return [
        CashFlowDay(day=day, income=_round_int(income), expense=_round_int(expense))
        for day, (income, expense) in sorted(buckets.items())
    ]


def _round_int(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
