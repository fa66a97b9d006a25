from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from leora.budget_health import build_budget_views, compute_budget_score
from leora.calendar_index import build_calendar_index
from leora.config import get_settings
from leora.currency_conversion import (
    build_rate_provider,
    convert_money,
    normalize_currency,
    round_for_currency,
)
from leora.dates import as_reference
from leora.domain import (
    ACCOUNT_TYPES,
    DEBT_DIRECTIONS,
    TRANSACTION_TYPES,
    Account,
    Budget,
    Debt,
    Goal,
    GoalCheckIn,
    GoalMilestone,
    Habit,
    MoneyAmount,
    Task,
    Transaction,
)
from leora.finance_summary import build_finance_summary
from leora.insight_engine import InsightContext, InsightScenarioEngine
from leora.insight_feed import InsightFeed
from leora.logging_config import configure_logging
from leora.period_aggregation import (
    ReportingConverter,
    build_analytics_snapshot,
    build_cash_flow_timeline,
    build_spending_summary,
)
from leora.progress import (
    build_indicators,
    calculate_goal_progress,
    calculate_overall_progress,
    compute_progress_data,
)

logger = structlog.get_logger(__name__)

settings = get_settings()
app = FastAPI(title="leora-metrics")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FX_PROVIDER = build_rate_provider()
app.state.insight_feed = InsightFeed.from_settings(settings)


@app.on_event("startup")
def init_logging() -> None:
    configure_logging(settings.log_level)
    logger.info(
        "service_started",
        default_currency=settings.default_currency,
        insights_enabled=settings.insights_enabled,
    )


def validate_choice(value: str, allowed: set[str], label: str) -> str:
    normalized = value.strip().lower()
    if normalized not in allowed:
        raise ValueError(f"Invalid {label}: {value}")
    return normalized


class AccountPayload(BaseModel):
    id: str
    currency: str
    current_balance: Decimal = Decimal("0")
    account_type: str = "cash"
    is_archived: bool = False
    name: str = ""

    def to_domain(self) -> Account:
        return Account(
            id=self.id,
            currency=self.currency,
            current_balance=self.current_balance,
            account_type=validate_choice(self.account_type, ACCOUNT_TYPES, "account type"),
            is_archived=self.is_archived,
            name=self.name,
        )


class TransactionPayload(BaseModel):
    id: str
    type: str
    amount: Decimal
    date: str | None = None
    currency: str | None = None
    category_id: str | None = None
    account_id: str | None = None
    budget_id: str | None = None
    goal_id: str | None = None
    debt_id: str | None = None

    def to_domain(self) -> Transaction:
        data = self.model_dump()
        data["type"] = validate_choice(self.type, TRANSACTION_TYPES, "transaction type")
        return Transaction(**data)


class BudgetPayload(BaseModel):
    id: str
    name: str
    limit_amount: Decimal
    spent_amount: Decimal = Decimal("0")
    currency: str | None = None
    category_ids: list[str] = Field(default_factory=list)
    account_id: str | None = None
    notify_on_exceed: bool = False
    start_date: str | None = None
    end_date: str | None = None

    def to_domain(self) -> Budget:
        data = self.model_dump()
        data["category_ids"] = tuple(self.category_ids)
        return Budget(**data)


class DebtPayload(BaseModel):
    id: str
    principal_amount: Decimal
    principal_currency: str
    counterparty_name: str = ""
    direction: str = "i_owe"
    due_date: str | None = None
    status: str = "active"

    def to_domain(self) -> Debt:
        data = self.model_dump()
        data["direction"] = validate_choice(self.direction, DEBT_DIRECTIONS, "debt direction")
        return Debt(**data)


class TaskPayload(BaseModel):
    id: str
    title: str = ""
    status: str = "planned"
    due_date: str | None = None
    priority: str = "medium"

    def to_domain(self) -> Task:
        return Task(**self.model_dump())


class HabitPayload(BaseModel):
    id: str
    title: str = ""
    status: str = "active"
    frequency: str = "daily"
    days_of_week: list[int] = Field(default_factory=list)
    completion_history: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> Habit:
        return Habit(
            id=self.id,
            title=self.title,
            status=self.status,
            frequency=self.frequency,
            days_of_week=tuple(self.days_of_week),
            completion_history=dict(self.completion_history),
        )


class GoalCheckInPayload(BaseModel):
    date_key: str | None = None
    created_at: str | None = None


class GoalMilestonePayload(BaseModel):
    due_date: str | None = None
    completed_at: str | None = None


class GoalPayload(BaseModel):
    id: str
    title: str = ""
    status: str = "active"
    progress_percent: Decimal = Decimal("0")
    check_ins: list[GoalCheckInPayload] = Field(default_factory=list)
    milestones: list[GoalMilestonePayload] = Field(default_factory=list)

    def to_domain(self) -> Goal:
        return Goal(
            id=self.id,
            title=self.title,
            status=self.status,
            progress_percent=self.progress_percent,
            check_ins=tuple(GoalCheckIn(**item.model_dump()) for item in self.check_ins),
            milestones=tuple(GoalMilestone(**item.model_dump()) for item in self.milestones),
        )


class SnapshotPayload(BaseModel):
    reporting_currency: str | None = None
    reference: str | None = None
    accounts: list[AccountPayload] = Field(default_factory=list)
    transactions: list[TransactionPayload] = Field(default_factory=list)
    budgets: list[BudgetPayload] = Field(default_factory=list)
    debts: list[DebtPayload] = Field(default_factory=list)
    tasks: list[TaskPayload] = Field(default_factory=list)
    habits: list[HabitPayload] = Field(default_factory=list)
    goals: list[GoalPayload] = Field(default_factory=list)


class CalendarPayload(SnapshotPayload):
    include_month_grid: bool = False


class ConvertPayload(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str


class Snapshot:
    """Domain records for one request."""

    def __init__(self, payload: SnapshotPayload) -> None:
        self.reporting_currency = normalize_currency(payload.reporting_currency)
        self.reference: datetime = as_reference(payload.reference)
        self.accounts = [item.to_domain() for item in payload.accounts]
        self.transactions = [item.to_domain() for item in payload.transactions]
        self.budgets = [item.to_domain() for item in payload.budgets]
        self.debts = [item.to_domain() for item in payload.debts]
        self.tasks = [item.to_domain() for item in payload.tasks]
        self.habits = [item.to_domain() for item in payload.habits]
        self.goals = [item.to_domain() for item in payload.goals]
        self.rate_table = FX_PROVIDER.get_table()
        self.converter = ReportingConverter.from_accounts(
            self.reporting_currency, self.accounts, self.rate_table
        )

    def budget_views(self):
        return build_budget_views(
            self.budgets,
            self.reporting_currency,
            self.rate_table,
            self.converter.account_currencies,
        )

    def progress(self):
        return compute_progress_data(
            self.reference.date(),
            self.tasks,
            self.habits,
            compute_budget_score(self.budgets),
        )


def load_snapshot(payload: SnapshotPayload) -> Snapshot:
    try:
        return Snapshot(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

def build_daily_context(snapshot: Snapshot) -> dict[str, Any]:
    progress = snapshot.progress()
    day = snapshot.reference.date()
    overall = calculate_overall_progress(snapshot.tasks, snapshot.habits, snapshot.goals, day)
    spending = build_spending_summary(
        snapshot.transactions, snapshot.converter, snapshot.reference
    )
    open_tasks = sum(
        1 for task in snapshot.tasks if not task.is_excluded and task.status != "completed"
    )
    return jsonable_encoder(
        {
            "baseCurrency": snapshot.reporting_currency,
            "indices": {
                "financeIndex": progress.budget,
                "productivityIndex": progress.tasks,
                "habitsIndex": progress.focus,
                "overallIndex": overall,
            },
            "financeSummary": {
                "topSpending": spending.categories,
                "totalSpending": spending.total,
            },
            "plannerSummary": {
                "tasks": len(snapshot.tasks),
                "openTasks": open_tasks,
                "habits": len(snapshot.habits),
                "goals": len(snapshot.goals),
            },
        }
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/currency/convert")
def convert_currency(payload: ConvertPayload) -> dict:
    source = MoneyAmount(value=payload.amount, currency=normalize_currency(payload.from_currency))
    converted = convert_money(source, payload.to_currency, FX_PROVIDER.get_table())
    return jsonable_encoder(
        {
            "amount": converted.value,
            "rounded": round_for_currency(converted.value, converted.currency),
            "from_currency": source.currency,
            "to_currency": converted.currency,
        }
    )


@app.post("/budgets/health")
def budgets_health(payload: SnapshotPayload) -> dict:
    snapshot = load_snapshot(payload)
    return jsonable_encoder(
        {
            "reporting_currency": snapshot.reporting_currency,
            "budgets": snapshot.budget_views(),
            "score": compute_budget_score(snapshot.budgets),
        }
    )


@app.post("/analytics")
def analytics(payload: SnapshotPayload) -> dict:
    snapshot = load_snapshot(payload)
    result = build_analytics_snapshot(
        snapshot.transactions,
        snapshot.reporting_currency,
        reference=snapshot.reference,
        accounts=snapshot.accounts,
        rate_table=snapshot.rate_table,
        budget_views=snapshot.budget_views(),
        debts=snapshot.debts,
    )
    return jsonable_encoder(
        {
            "snapshot": result,
            "spending_summary": build_spending_summary(
                snapshot.transactions, snapshot.converter, snapshot.reference
            ),
            "cash_flow": build_cash_flow_timeline(
                snapshot.transactions, snapshot.converter, snapshot.reference
            ),
        }
    )


@app.post("/progress")
def progress(payload: SnapshotPayload) -> dict:
    snapshot = load_snapshot(payload)
    data = snapshot.progress()
    day = snapshot.reference.date()
    return jsonable_encoder(
        {
            "date": day,
            "progress": data,
            "indicators": build_indicators(data),
            "goals": calculate_goal_progress(snapshot.goals),
            "overall": calculate_overall_progress(
                snapshot.tasks, snapshot.habits, snapshot.goals, day
            ),
        }
    )


@app.post("/calendar")
def calendar(payload: CalendarPayload) -> dict:
    snapshot = load_snapshot(payload)
    index = build_calendar_index(
        tasks=snapshot.tasks,
        habits=snapshot.habits,
        goals=snapshot.goals,
        transactions=snapshot.transactions,
        budgets=snapshot.budgets,
        selected=snapshot.reference,
        include_month_grid=payload.include_month_grid,
    )
    return jsonable_encoder({"days": index})


@app.post("/finance/summary")
def finance_summary(payload: SnapshotPayload) -> dict:
    snapshot = load_snapshot(payload)
    summary = build_finance_summary(
        snapshot.transactions,
        snapshot.accounts,
        snapshot.debts,
        snapshot.budget_views(),
        snapshot.converter,
        snapshot.reference,
        snapshot.tasks,
    )
    return jsonable_encoder(summary)


@app.post("/insights")
async def insights(payload: SnapshotPayload, force: bool = Query(False)) -> dict:
    snapshot = await run_in_threadpool(load_snapshot, payload)
    context = InsightContext(
        reference=snapshot.reference,
        converter=snapshot.converter,
        transactions=tuple(snapshot.transactions),
        accounts=tuple(snapshot.accounts),
        debts=tuple(snapshot.debts),
        budget_views=tuple(snapshot.budget_views()),
    )
    engine = InsightScenarioEngine(strict=settings.strict_rules)
    fallback = await run_in_threadpool(engine.evaluate, context)

    feed: InsightFeed = app.state.insight_feed
    if feed.enabled:
        await feed.refresh(snapshot.reference, build_daily_context(snapshot), force=force)
    state = feed.current(fallback, snapshot.reference)
    return jsonable_encoder(state)
