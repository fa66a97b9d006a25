from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Union

from leora.dates import DateInput

ZERO = Decimal("0")

TRANSACTION_TYPES = {"income", "expense", "transfer", "adjustment"}
ACCOUNT_TYPES = {"cash", "card", "savings", "investment", "debt"}
DEBT_DIRECTIONS = {"i_owe", "they_owe_me"}
CLOSED_DEBT_STATUSES = {"paid", "canceled"}
EXCLUDED_TASK_STATUSES = {"archived", "deleted"}

Amount = Union[Decimal, int, float, str]
HabitEntry = Union[str, Mapping[str, object], None]


@dataclass(frozen=True)
class MoneyAmount:
    value: Decimal
    currency: str


@dataclass(frozen=True)
class Account:
    id: str
    currency: str
    current_balance: Decimal = ZERO
    account_type: str = "cash"
    is_archived: bool = False
    name: str = ""


@dataclass(frozen=True)
class Transaction:
    id: str
    type: str
    amount: Decimal
    date: DateInput
    currency: Optional[str] = None
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    budget_id: Optional[str] = None
    goal_id: Optional[str] = None
    debt_id: Optional[str] = None

    @property
    def normalized_type(self) -> str:
        return (self.type or "").strip().lower()


@dataclass(frozen=True)
class Budget:
    id: str
    name: str
    limit_amount: Decimal
    spent_amount: Decimal = ZERO
    currency: Optional[str] = None
    category_ids: tuple[str, ...] = ()
    account_id: Optional[str] = None
    notify_on_exceed: bool = False
    start_date: DateInput = None
    end_date: DateInput = None

    @property
    def percent_used(self) -> Decimal:
        limit = coerce_amount(self.limit_amount)
        if limit <= ZERO:
            return ZERO
        return coerce_amount(self.spent_amount) / limit


@dataclass(frozen=True)
class Debt:
    id: str
    principal_amount: Decimal
    principal_currency: str
    counterparty_name: str = ""
    direction: str = "i_owe"
    due_date: DateInput = None
    status: str = "active"

    @property
    def is_open(self) -> bool:
        return (self.status or "").strip().lower() not in CLOSED_DEBT_STATUSES


@dataclass(frozen=True)
class Task:
    id: str
    title: str = ""
    status: str = "planned"
    due_date: DateInput = None
    priority: str = "medium"

    @property
    def is_excluded(self) -> bool:
        return self.status in EXCLUDED_TASK_STATUSES


@dataclass(frozen=True)
class Habit:
    id: str
    title: str = ""
    status: str = "active"
    frequency: str = "daily"
    days_of_week: tuple[int, ...] = ()
    completion_history: Mapping[str, HabitEntry] = field(default_factory=dict)

    def status_on(self, date_key: str) -> Optional[str]:
        entry = self.completion_history.get(date_key)
        if isinstance(entry, str):
            return entry
        if isinstance(entry, Mapping):
            status = entry.get("status")
            return status if isinstance(status, str) else None
        return None


@dataclass(frozen=True)
class GoalCheckIn:
    date_key: Optional[str] = None
    created_at: DateInput = None


@dataclass(frozen=True)
class GoalMilestone:
    due_date: DateInput = None
    completed_at: DateInput = None


@dataclass(frozen=True)
class Goal:
    id: str
    title: str = ""
    status: str = "active"
    progress_percent: Decimal = ZERO
    check_ins: tuple[GoalCheckIn, ...] = ()
    milestones: tuple[GoalMilestone, ...] = ()


def coerce_amount(amount: Amount | None) -> Decimal:
    """Coerce a record amount to a finite Decimal; anything else is 0."""
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return ZERO
    if not value.is_finite():
        return ZERO
    return value
