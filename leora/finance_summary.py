"""
Finance health summary behind the insights overview.

Indicator scores are ratios clamped to 0-1; the overall health score is their
mean on a 0-10 scale with one decimal. Spending patterns cover the trailing
seven calendar days (today included) and fall back to a uniform split when
nothing was spent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from leora.budget_health import BudgetHealthState, BudgetView
from leora.currency_conversion import format_amount
from leora.dates import parse_timestamp, start_of_day, to_local
from leora.domain import ZERO, Account, Debt, Task, Transaction
from leora.period_aggregation import ReportingConverter

WEEK_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
DAY_PART_KEYS = ("morning", "day", "evening", "night")
SAVING_KEYWORDS = (
    ("subscription", "subscriptions"),
    ("food", "food"),
    ("transport", "transport"),
    ("coffee", "coffee"),
)
RECENT_WINDOW_DAYS = 30
PATTERN_WINDOW_DAYS = 7
DEFAULT_GOAL_SCORE = 0.75
ONE = Decimal("1")


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _ratio(numerator: Decimal, denominator: Decimal) -> float:
    return float(numerator / max(denominator, ONE))


def _score_10(value: float) -> float:
    scaled = Decimal(str(value)) * 10
    return float(scaled.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def day_part(moment: datetime) -> str:
    if moment.hour < 11:
        return "morning"
    if moment.hour < 17:
        return "day"
    if moment.hour < 22:
        return "evening"
    return "night"


@dataclass(frozen=True)
class IndicatorScore:
    score: float
    metric: str


@dataclass(frozen=True)
class ComponentScore:
    score: float
    progress: float


@dataclass(frozen=True)
class AccountTotals:
    total: Decimal = ZERO
    savings: Decimal = ZERO
    cash: Decimal = ZERO


@dataclass(frozen=True)
class ChangeSignals:
    upgrades: list[str] = field(default_factory=list)
    attention: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FinanceSummary:
    reporting_currency: str
    health_score: float
    indicators: dict[str, IndicatorScore]
    components: dict[str, ComponentScore]
    weekly_pattern: dict[str, float]
    day_pattern: dict[str, float]
    night_share: float
    savings: dict[str, Decimal]
    change_signals: ChangeSignals


def summarize_accounts(
    accounts: Iterable[Account],
    converter: ReportingConverter,
) -> AccountTotals:
    total = savings = cash = ZERO
    for account in accounts:
        if account.is_archived:
            continue
        value = converter.convert(account.current_balance, account.currency)
        total += value
        if account.account_type == "savings":
            savings += value
        if account.account_type in ("cash", "card"):
            cash += value
    return AccountTotals(total=total, savings=savings, cash=cash)


def outstanding_debt(debts: Iterable[Debt], converter: ReportingConverter) -> Decimal:
    return sum(
        (
            converter.convert(debt.principal_amount, debt.principal_currency)
            for debt in debts
            if debt.is_open and debt.direction == "i_owe"
        ),
        ZERO,
    )


def spending_patterns(
    transactions: Iterable[Transaction],
    converter: ReportingConverter,
    reference: datetime,
) -> tuple[dict[str, float], dict[str, float], float]:
    """Weekday shares, day-part shares and the night share of recent spending."""
    window_start = start_of_day(reference) - timedelta(days=PATTERN_WINDOW_DAYS - 1)
    weekly = {key: ZERO for key in WEEK_KEYS}
    parts = {key: ZERO for key in DAY_PART_KEYS}
    total = ZERO
    for txn in transactions:
        if txn.normalized_type != "expense":
            continue
        parsed = parse_timestamp(txn.date)
        if parsed is None:
            continue
        moment = to_local(parsed, reference)
        if not window_start <= moment <= reference:
            continue
        value = converter.amount_of(txn)
        weekly[WEEK_KEYS[moment.weekday()]] += value
        parts[day_part(moment)] += value
        total += value

    if total <= ZERO:
        return (
            {key: 1 / len(WEEK_KEYS) for key in WEEK_KEYS},
            {key: 1 / len(DAY_PART_KEYS) for key in DAY_PART_KEYS},
            0.0,
        )
    return (
        {key: float(value / total) for key, value in weekly.items()},
        {key: float(value / total) for key, value in parts.items()},
        float(parts["night"] / total),
    )


def savings_opportunities(budget_views: Iterable[BudgetView]) -> dict[str, Decimal]:
    """Overspend per saving area, matched on the budget name."""
    savings: dict[str, Decimal] = {}
    for view in budget_views:
        if view.overspend <= ZERO:
            continue
        name = view.name.lower()
        for keyword, area in SAVING_KEYWORDS:
            if keyword in name:
                savings[area] = savings.get(area, ZERO) + view.overspend
                break
    return savings


def change_signals(budget_views: Iterable[BudgetView]) -> ChangeSignals:
    upgrades: list[str] = []
    attention: list[str] = []
    for view in budget_views:
        if view.summary_state is BudgetHealthState.WITHIN:
            free = 100
            if view.limit > ZERO:
                free = int(((ONE - view.spent / view.limit) * 100).quantize(ONE, rounding=ROUND_HALF_UP))
            upgrades.append(f"{view.name}: {free}% free")
        elif view.summary_state is BudgetHealthState.EXCEEDING:
            attention.append(
                f"{view.name}: {format_amount(view.spent - view.limit, view.currency)} over"
            )
    return ChangeSignals(upgrades=upgrades, attention=attention)


def _task_components(tasks: Sequence[Task]) -> ComponentScore:
    live = [task for task in tasks if not task.is_excluded]
    if not live:
        return ComponentScore(score=_score_10(1.0), progress=0.6)
    open_count = sum(1 for task in live if task.status != "completed")
    done_count = len(live) - open_count
    discipline = clamp01(1 - min(5, open_count / len(live)))
    return ComponentScore(score=_score_10(discipline), progress=clamp01(done_count / len(live)))


def build_finance_summary(
    transactions: Sequence[Transaction],
    accounts: Sequence[Account],
    debts: Sequence[Debt],
    budget_views: Sequence[BudgetView],
    converter: ReportingConverter,
    reference: datetime,
    tasks: Sequence[Task] = (),
) -> FinanceSummary:
    recent_start = reference - timedelta(days=RECENT_WINDOW_DAYS)
    income_30 = expense_30 = ZERO
    for txn in transactions:
        parsed = parse_timestamp(txn.date)
        if parsed is None or to_local(parsed, reference) < recent_start:
            continue
        if txn.normalized_type == "income":
            income_30 += converter.amount_of(txn)
        elif txn.normalized_type == "expense":
            expense_30 += converter.amount_of(txn)

    totals = summarize_accounts(accounts, converter)
    debt_total = outstanding_debt(debts, converter)
    over_limit = sum(1 for view in budget_views if view.state is BudgetHealthState.EXCEEDING)
    goal_score = (
        clamp01(1 - over_limit / len(budget_views)) if budget_views else DEFAULT_GOAL_SCORE
    )

    liquidity = clamp01(_ratio(totals.cash, expense_30))
    savings_score = clamp01(_ratio(totals.savings, totals.total))
    debt_score = clamp01(1 - _ratio(debt_total, totals.total + debt_total))
    capital = clamp01(_ratio(totals.total - debt_total, totals.total))
    health = (liquidity + savings_score + debt_score + capital + goal_score) / 5

    currency = converter.reporting_currency
    indicators = {
        "liquidity": IndicatorScore(liquidity, format_amount(totals.cash, currency)),
        "savings": IndicatorScore(savings_score, format_amount(totals.savings, currency)),
        "debt": IndicatorScore(debt_score, format_amount(debt_total, currency)),
        "capital": IndicatorScore(capital, format_amount(totals.total, currency)),
        "goals": IndicatorScore(goal_score, f"{round(goal_score * 100)}%"),
    }

    if income_30 > ZERO:
        productivity = ComponentScore(
            score=_score_10(clamp01(float(income_30 / (expense_30 + ONE)))),
            progress=clamp01(float(income_30 / (expense_30 + income_30))),
        )
    else:
        productivity = ComponentScore(score=_score_10(0.6), progress=0.5)
    components = {
        "financial": ComponentScore(score=_score_10(liquidity), progress=liquidity),
        "productivity": productivity,
        "balance": ComponentScore(
            score=_score_10(clamp01(_ratio(totals.cash + totals.savings, debt_total + totals.total))),
            progress=savings_score,
        ),
        "goals": ComponentScore(score=_score_10(goal_score), progress=goal_score),
        "discipline": _task_components(tasks),
    }

    weekly, parts, night_share = spending_patterns(transactions, converter, reference)
    return FinanceSummary(
        reporting_currency=currency,
        health_score=_score_10(health),
        indicators=indicators,
        components=components,
        weekly_pattern=weekly,
        day_pattern=parts,
        night_share=night_share,
        savings=savings_opportunities(budget_views),
        change_signals=change_signals(budget_views),
    )
