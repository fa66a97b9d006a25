from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Mapping, Optional

from leora.currency_conversion import RateTable, convert_amount, normalize_currency
from leora.domain import ZERO, Amount, Budget, coerce_amount

WARNING_RATIO = Decimal("0.9")
HUNDRED = Decimal("100")


class BudgetHealthState(str, Enum):
    EXCEEDING = "exceeding"
    WARNING = "warning"
    WITHIN = "within"
    FIXED = "fixed"


@dataclass(frozen=True)
class BudgetView:
    id: str
    name: str
    currency: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    overspend: Decimal
    percent_used: Decimal
    state: BudgetHealthState
    summary_state: BudgetHealthState
    notify_on_exceed: bool = False


def resolve_budget_state(limit: Amount, spent: Amount) -> BudgetHealthState:
    """Four-state health used by detail views.

    A budget without a positive limit is a savings target, not a cap.
    """
    limit_value = coerce_amount(limit)
    spent_value = coerce_amount(spent)
    if limit_value <= ZERO:
        return BudgetHealthState.FIXED
    if spent_value > limit_value:
        return BudgetHealthState.EXCEEDING
    if spent_value >= limit_value * WARNING_RATIO:
        return BudgetHealthState.WARNING
    return BudgetHealthState.WITHIN


def resolve_budget_summary_state(limit: Amount, spent: Amount) -> BudgetHealthState:
    """Three-state health used by list views; warning reads as within."""
    state = resolve_budget_state(limit, spent)
    if state is BudgetHealthState.WARNING:
        return BudgetHealthState.WITHIN
    return state


def percent_used(limit: Amount, spent: Amount) -> Decimal:
    limit_value = coerce_amount(limit)
    if limit_value <= ZERO:
        return ZERO
    return coerce_amount(spent) / limit_value * HUNDRED


def resolve_budget_currency(
    budget: Budget,
    reporting_currency: str,
    account_currencies: Optional[Mapping[str, str]] = None,
) -> str:
    if budget.currency:
        return normalize_currency(budget.currency, reporting_currency)
    if budget.account_id and account_currencies and budget.account_id in account_currencies:
        return normalize_currency(account_currencies[budget.account_id], reporting_currency)
    return normalize_currency(reporting_currency)


def build_budget_view(
    budget: Budget,
    reporting_currency: str,
    rate_table: Optional[RateTable] = None,
    account_currencies: Optional[Mapping[str, str]] = None,
) -> BudgetView:
    target = normalize_currency(reporting_currency)
    source = resolve_budget_currency(budget, target, account_currencies)
    limit = convert_amount(budget.limit_amount, source, target, rate_table)
    spent = convert_amount(budget.spent_amount, source, target, rate_table)
    return BudgetView(
        id=budget.id,
        name=budget.name,
        currency=target,
        limit=limit,
        spent=spent,
        remaining=max(ZERO, limit - spent) if limit > ZERO else ZERO,
        overspend=max(ZERO, spent - limit) if limit > ZERO else ZERO,
        percent_used=percent_used(limit, spent),
        state=resolve_budget_state(limit, spent),
        summary_state=resolve_budget_summary_state(limit, spent),
        notify_on_exceed=budget.notify_on_exceed,
    )


def build_budget_views(
    budgets: Iterable[Budget],
    reporting_currency: str,
    rate_table: Optional[RateTable] = None,
    account_currencies: Optional[Mapping[str, str]] = None,
) -> list[BudgetView]:
    return [
        build_budget_view(budget, reporting_currency, rate_table, account_currencies)
        for budget in budgets
    ]


def compute_budget_score(budgets: Iterable[Budget]) -> int:
    """0-100 headroom score across budgets; 0 when there are none."""
    usages = [min(Decimal("1"), budget.percent_used) for budget in budgets]
    if not usages:
        return 0
    average_usage = sum(usages, ZERO) / len(usages)
    score = max(ZERO, HUNDRED - average_usage * HUNDRED)
    return int(score.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
