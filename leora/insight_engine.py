"""
Rule-based insight cards.

The catalog is an ordered list of declarative ``ScenarioRule`` records. Each
rule pairs a pure detector over an ``InsightContext`` with a card template
and a fixed priority. Cards come out sorted by descending priority; equal
priorities keep catalog order. New scenarios are appended to the catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import structlog

from leora.budget_health import BudgetView
from leora.currency_conversion import RateTable, format_amount, normalize_currency
from leora.dates import (
    DateInput,
    as_reference,
    days_between,
    local_date,
    parse_timestamp,
    to_local,
)
from leora.domain import ZERO, Account, Debt, Transaction, coerce_amount
from leora.period_aggregation import ReportingConverter

logger = structlog.get_logger(__name__)

TONES = {"friend", "polite", "strict"}
CATEGORIES = {"overview", "finance", "productivity", "wisdom"}

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
NIGHT_WINDOW_DAYS = 7
NIGHT_SHARE_THRESHOLD = Decimal("0.35")
MISSING_EXPENSE_MIN_DAYS = 2
NO_EXPENSE_FALLBACK_DAYS = 10
SHORTFALL_HORIZON_DAYS = 3
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class InsightCta:
    label: str
    action: str
    target_id: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class InsightCard:
    id: str
    title: str
    body: str
    tone: str
    category: str
    priority: int
    created_at: datetime
    cta: InsightCta
    payload: Optional[dict[str, Any]] = None
    explain: Optional[str] = None
    push: Optional[str] = None
    source: str = "local"


@dataclass(frozen=True)
class InsightContext:
    reference: datetime
    converter: ReportingConverter
    transactions: Sequence[Transaction] = ()
    accounts: Sequence[Account] = ()
    debts: Sequence[Debt] = ()
    budget_views: Sequence[BudgetView] = ()

    @classmethod
    def build(
        cls,
        reporting_currency: str,
        reference: DateInput = None,
        transactions: Sequence[Transaction] = (),
        accounts: Sequence[Account] = (),
        debts: Sequence[Debt] = (),
        budget_views: Sequence[BudgetView] = (),
        rate_table: Optional[RateTable] = None,
    ) -> "InsightContext":
        return cls(
            reference=as_reference(reference),
            converter=ReportingConverter.from_accounts(reporting_currency, accounts, rate_table),
            transactions=tuple(transactions),
            accounts=tuple(accounts),
            debts=tuple(debts),
            budget_views=tuple(budget_views),
        )

    @property
    def reporting_currency(self) -> str:
        return self.converter.reporting_currency

    def days_until(self, value: DateInput) -> Optional[int]:
        due = local_date(value, self.reference)
        if due is None:
            return None
        return days_between(self.reference.date(), due)


@dataclass(frozen=True)
class ScenarioMatch:
    params: Mapping[str, Any] = field(default_factory=dict)
    key_suffix: Optional[str] = None
    target_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class ScenarioTemplate:
    title: str
    body: str
    cta: str
    explain: str = ""
    push: str = ""


Detector = Callable[[InsightContext], Sequence[ScenarioMatch]]


@dataclass(frozen=True)
class ScenarioRule:
    key: str
    priority: int
    tone: str
    category: str
    action: str
    template: ScenarioTemplate
    detect: Detector

    def __post_init__(self) -> None:
        if self.tone not in TONES:
            raise ValueError(f"Unsupported tone for scenario {self.key}: {self.tone}")
        if self.category not in CATEGORIES:
            raise ValueError(f"Unsupported category for scenario {self.key}: {self.category}")
        if not isinstance(self.priority, int):
            raise ValueError(f"Scenario {self.key} priority must be an int.")

    def build_cards(self, context: InsightContext) -> list[InsightCard]:
        cards = []
        for match in self.detect(context):
            params = dict(match.params)
            card_id = f"{self.key}-{match.key_suffix}" if match.key_suffix else self.key
            cards.append(
                InsightCard(
                    id=card_id,
                    title=self.template.title.format(**params),
                    body=self.template.body.format(**params),
                    tone=self.tone,
                    category=self.category,
                    priority=self.priority,
                    created_at=context.reference,
                    cta=InsightCta(
                        label=self.template.cta,
                        action=self.action,
                        target_id=match.target_id,
                    ),
                    payload=match.payload,
                    explain=self.template.explain.format(**params) or None,
                    push=self.template.push.format(**params) or None,
                )
            )
        return cards


def _is_night(moment: datetime) -> bool:
    return moment.hour >= NIGHT_START_HOUR or moment.hour < NIGHT_END_HOUR


def night_spending_share(context: InsightContext) -> Decimal:
    """Share (0-1) of the trailing week's spending made between 22:00 and 06:00."""
    window_start = context.reference - timedelta(days=NIGHT_WINDOW_DAYS)
    total = ZERO
    night = ZERO
    for txn in context.transactions:
        if txn.normalized_type != "expense":
            continue
        parsed = parse_timestamp(txn.date)
        if parsed is None:
            continue
        moment = to_local(parsed, context.reference)
        if not window_start <= moment <= context.reference:
            continue
        value = context.converter.amount_of(txn)
        total += value
        if _is_night(moment):
            night += value
    if total <= ZERO:
        return ZERO
    return night / total


def days_since_last_expense(context: InsightContext) -> Optional[int]:
    latest: Optional[datetime] = None
    for txn in context.transactions:
        if txn.normalized_type != "expense":
            continue
        parsed = parse_timestamp(txn.date)
        if parsed is None:
            continue
        moment = to_local(parsed, context.reference)
        if latest is None or moment > latest:
            latest = moment
    if latest is None:
        return None
    elapsed = context.reference - latest
    return int(elapsed.total_seconds() // SECONDS_PER_DAY)


def balance_in_currency(accounts: Iterable[Account], currency: str) -> Decimal:
    total = ZERO
    for account in accounts:
        if account.is_archived:
            continue
        if normalize_currency(account.currency) != currency:
            continue
        total += coerce_amount(account.current_balance)
    return total


def detect_night_spending(context: InsightContext) -> list[ScenarioMatch]:
    share = night_spending_share(context)
    if share <= NIGHT_SHARE_THRESHOLD:
        return []
    percent = int((share * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return [ScenarioMatch(params={"percent": f"{percent}%"}, payload={"share": percent})]


def detect_missing_expense(context: InsightContext) -> list[ScenarioMatch]:
    days = days_since_last_expense(context)
    if days is None:
        days = NO_EXPENSE_FALLBACK_DAYS
    if days < MISSING_EXPENSE_MIN_DAYS:
        return []
    return [ScenarioMatch(params={"days": days}, payload={"days": days})]


def detect_currency_shortfall(context: InsightContext) -> list[ScenarioMatch]:
    matches = []
    for debt in context.debts:
        if not debt.is_open or debt.direction != "i_owe":
            continue
        currency = normalize_currency(debt.principal_currency, context.reporting_currency)
        if currency == context.reporting_currency:
            continue
        days = context.days_until(debt.due_date)
        if days is None or not 0 <= days <= SHORTFALL_HORIZON_DAYS:
            continue
        principal = coerce_amount(debt.principal_amount)
        balance = balance_in_currency(context.accounts, currency)
        if balance >= principal:
            continue
        shortfall = principal - balance
        matches.append(
            ScenarioMatch(
                params={
                    "amount": format_amount(shortfall, currency),
                    "balance": format_amount(balance, currency),
                    "name": debt.counterparty_name,
                    "days": days,
                },
                key_suffix=debt.id,
                target_id=debt.id,
                payload={
                    "debtId": debt.id,
                    "currency": currency,
                    "shortfall": shortfall,
                    "shortfallReporting": context.converter.convert(shortfall, currency),
                },
            )
        )
    return matches


def detect_debt_due_tomorrow(context: InsightContext) -> list[ScenarioMatch]:
    matches = []
    for debt in context.debts:
        if not debt.is_open:
            continue
        if context.days_until(debt.due_date) != 1:
            continue
        amount = context.converter.convert(debt.principal_amount, debt.principal_currency)
        matches.append(
            ScenarioMatch(
                params={
                    "name": debt.counterparty_name,
                    "amount": format_amount(amount, context.reporting_currency),
                },
                key_suffix=debt.id,
                target_id=debt.id,
                payload={"debtId": debt.id},
            )
        )
    return matches


SCENARIO_CATALOG: tuple[ScenarioRule, ...] = (
    ScenarioRule(
        key="night-spending",
        priority=4,
        tone="friend",
        category="finance",
        action="review_budget",
        template=ScenarioTemplate(
            title="Late-night spending",
            body="{percent} of this week's spending happened after 22:00.",
            cta="Review budget",
            explain="Night purchases are often impulsive.",
            push="Most of your spending this week was at night.",
        ),
        detect=detect_night_spending,
    ),
    ScenarioRule(
        key="missing-expense",
        priority=3,
        tone="polite",
        category="finance",
        action="quick_add",
        template=ScenarioTemplate(
            title="No expenses recorded",
            body="You haven't logged an expense for {days} days. Anything to add?",
            cta="Quick add",
            explain="Last expense was recorded {days} days ago.",
            push="Keep your records current.",
        ),
        detect=detect_missing_expense,
    ),
    ScenarioRule(
        key="currency-shortfall",
        priority=5,
        tone="strict",
        category="finance",
        action="open_exchange",
        template=ScenarioTemplate(
            title="Not enough currency for a payment",
            body="A payment to {name} is due in {days} days. You are short {amount}.",
            cta="Exchange currency",
            explain="Current balance in that currency: {balance}.",
            push="Top up before the due date.",
        ),
        detect=detect_currency_shortfall,
    ),
    ScenarioRule(
        key="debt-due",
        priority=6,
        tone="friend",
        category="finance",
        action="open_debt",
        template=ScenarioTemplate(
            title="Debt due tomorrow",
            body="Your debt with {name} is due tomorrow.",
            cta="Open debt",
            explain="Amount due: {amount}.",
            push="Payment due tomorrow.",
        ),
        detect=detect_debt_due_tomorrow,
    ),
)


def rank_cards(cards: Iterable[InsightCard]) -> list[InsightCard]:
    return sorted(cards, key=lambda card: -card.priority)


class InsightScenarioEngine:
    def __init__(
        self,
        catalog: Sequence[ScenarioRule] = SCENARIO_CATALOG,
        strict: bool = False,
    ) -> None:
        self._catalog = tuple(catalog)
        self._strict = strict

    @property
    def catalog(self) -> tuple[ScenarioRule, ...]:
        return self._catalog

    def evaluate(self, context: InsightContext) -> list[InsightCard]:
        ranked: list[tuple[tuple[int, int, int], InsightCard]] = []
        for ordinal, rule in enumerate(self._catalog):
            try:
                cards = rule.build_cards(context)
            except Exception:
                if self._strict:
                    raise
                logger.exception("scenario_rule_failed", scenario=rule.key)
                continue
            for emitted, card in enumerate(cards):
                ranked.append(((-card.priority, ordinal, emitted), card))
        ranked.sort(key=lambda item: item[0])
        return [card for _, card in ranked]


def select_cards(
    remote_cards: Sequence[InsightCard],
    fallback_cards: Sequence[InsightCard],
) -> list[InsightCard]:
    """Remote cards, when there are any, replace the local list outright."""
    if remote_cards:
        return rank_cards(remote_cards)
    return list(fallback_cards)


TONE_BY_LEVEL = {
    "info": "friend",
    "warning": "polite",
    "critical": "strict",
    "celebration": "friend",
}
PRIORITY_BY_LEVEL = {"critical": 10, "warning": 7, "celebration": 6, "info": 5}
CATEGORY_BY_KIND = {
    "finance": "finance",
    "planner": "productivity",
    "habit": "productivity",
    "focus": "productivity",
    "combined": "overview",
    "wisdom": "wisdom",
}
ACTION_COMMANDS = {
    "create_task": "open_tasks",
    "create_habit": "open_habits",
    "create_budget": "open_budgets",
    "create_debt": "open_debt",
    "start_focus": "open_tasks",
    "open_budget": "open_budgets",
    "open_goal": "open_goals",
    "review_budget": "review_budget",
}
DEFAULT_CTA_LABEL = "Open"
DEFAULT_CTA_ACTION = "open_history"


@dataclass(frozen=True)
class RemoteAction:
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    label: Optional[str] = None

    @property
    def command(self) -> Optional[str]:
        return ACTION_COMMANDS.get(self.type)


@dataclass(frozen=True)
class RemoteInsight:
    id: str
    kind: str
    level: str
    title: str
    body: str
    created_at: datetime
    actions: tuple[RemoteAction, ...] = ()
    payload: Optional[dict[str, Any]] = None
    valid_until: Optional[datetime] = None
    scope: str = "daily"


def map_remote_insight(insight: RemoteInsight) -> InsightCard:
    primary = insight.actions[0] if insight.actions else None
    target_id = None
    note = None
    if primary is not None:
        raw_target = primary.payload.get("targetId")
        target_id = str(raw_target) if raw_target is not None else None
        raw_note = primary.payload.get("note")
        note = raw_note if isinstance(raw_note, str) else None

    return InsightCard(
        id=insight.id,
        title=insight.title,
        body=insight.body,
        tone=TONE_BY_LEVEL.get(insight.level, "friend"),
        category=CATEGORY_BY_KIND.get(insight.kind, "overview"),
        priority=PRIORITY_BY_LEVEL.get(insight.level, PRIORITY_BY_LEVEL["info"]),
        created_at=insight.created_at,
        cta=InsightCta(
            label=(primary.label if primary and primary.label else DEFAULT_CTA_LABEL),
            action=(primary.command if primary and primary.command else DEFAULT_CTA_ACTION),
            target_id=target_id,
            note=note,
        ),
        payload=insight.payload,
        source="remote",
    )
