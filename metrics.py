"""Derived views over a ledger snapshot.

Everything here is a pure function of its arguments; the orchestrator in
``dashboard.py`` calls ``build_view`` again whenever any input changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence

from budget import BudgetTracker
from categories import resolve
from domain import Expense
from periods import Period, PeriodKind, classify, period_window, start_of_day, start_of_month

RECENT_LIMIT = 5


@dataclass(frozen=True)
class BreakdownEntry:
    category_id: str
    name: str
    icon: str
    color: str
    amount: float
    percent: float


@dataclass(frozen=True)
class BucketTotal:
    label: str
    amount: float


@dataclass(frozen=True)
class Totals:
    today: float
    month: float


@dataclass(frozen=True)
class BudgetStatus:
    budget: float
    spent: float
    utilization: float
    remaining: float


@dataclass(frozen=True)
class DayGroup:
    day: date
    expenses: list[Expense]
    total: float


@dataclass(frozen=True)
class AggregateView:
    period: PeriodKind
    reference: Optional[datetime]
    totals: Totals
    budget: BudgetStatus
    recent: list[Expense] = field(default_factory=list)
    breakdown: list[BreakdownEntry] = field(default_factory=list)
    series: list[BucketTotal] = field(default_factory=list)
    period_total: float = 0.0
    expense_count: int = 0
    error: Optional[str] = None  # transient store failure shown alongside the data

    @property
    def is_empty(self) -> bool:
        return self.expense_count == 0


def empty_view(period: PeriodKind = PeriodKind.month) -> AggregateView:
    return AggregateView(
        period=period,
        reference=None,
        totals=Totals(today=0.0, month=0.0),
        budget=BudgetStatus(budget=0.0, spent=0.0, utilization=0.0, remaining=0.0),
    )


def running_totals(expenses: Sequence[Expense], now: datetime) -> Totals:
    month_start = start_of_month(now)
    day_start = start_of_day(now)
    month_total = 0.0
    day_total = 0.0
    for expense in expenses:
        if expense.date is None or expense.date < month_start:
            continue
        month_total += expense.amount
        if expense.date >= day_start:
            day_total += expense.amount
    return Totals(today=day_total, month=month_total)


def recent_preview(
    expenses: Sequence[Expense], now: datetime, limit: int = RECENT_LIMIT
) -> list[Expense]:
    """First ``limit`` expenses of the current month, keeping snapshot order."""
    month_start = start_of_month(now)
    preview: list[Expense] = []
    for expense in expenses:
        if len(preview) >= limit:
            break
        if expense.date is not None and expense.date >= month_start:
            preview.append(expense)
    return preview


def in_period(expenses: Sequence[Expense], window: Period) -> list[Expense]:
    return [e for e in expenses if window.contains(e.date)]


def category_breakdown(
    expenses: Sequence[Expense], custom_categories: Optional[Sequence[dict]] = None
) -> list[BreakdownEntry]:
    totals: dict[str, float] = {}
    views = {}
    for expense in expenses:
        view = resolve(expense.category_id, custom_categories)
        views.setdefault(view.id, view)
        totals[view.id] = totals.get(view.id, 0.0) + expense.amount

    grand_total = sum(totals.values())
    if not grand_total:
        return []

    # sorted() is stable, equal totals keep first-encountered order
    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        BreakdownEntry(
            category_id=cat_id,
            name=views[cat_id].name,
            icon=views[cat_id].icon,
            color=views[cat_id].color,
            amount=amount,
            percent=round(amount / grand_total * 100, 1),
        )
        for cat_id, amount in ordered
    ]


def bucket_series(expenses: Sequence[Expense], window: Period) -> list[BucketTotal]:
    sums = {label: 0.0 for label in window.labels}
    for expense in expenses:
        if not window.contains(expense.date):
            continue
        label = classify(window.kind, expense.date)
        if label in sums:
            sums[label] += expense.amount
    return [BucketTotal(label, sums[label]) for label in window.labels]


def daily_groups(expenses: Sequence[Expense]) -> list[DayGroup]:
    """Group a date-descending snapshot by calendar day with per-day totals.

    Days keep the order of their first row; rows without a usable date are
    left out.
    """
    groups: dict[date, list[Expense]] = {}
    for expense in expenses:
        if expense.date is None:
            continue
        groups.setdefault(expense.date.date(), []).append(expense)
    return [
        DayGroup(day=day, expenses=rows, total=sum(e.amount for e in rows))
        for day, rows in groups.items()
    ]


def budget_status(month_total: float, budget: Optional[float]) -> BudgetStatus:
    ceiling = float(budget or 0)
    return BudgetStatus(
        budget=ceiling,
        spent=month_total,
        utilization=BudgetTracker.utilization(month_total, ceiling),
        remaining=BudgetTracker.remaining(month_total, ceiling),
    )


def build_view(
    expenses: Sequence[Expense],
    custom_categories: Optional[Sequence[dict]],
    period: object,
    budget: Optional[float],
    now: datetime,
    *,
    recent_limit: int = RECENT_LIMIT,
) -> AggregateView:
    window = period_window(period, now)
    totals = running_totals(expenses, now)
    selected = in_period(expenses, window)
    return AggregateView(
        period=window.kind,
        reference=now,
        totals=totals,
        budget=budget_status(totals.month, budget),
        recent=recent_preview(expenses, now, recent_limit),
        breakdown=category_breakdown(selected, custom_categories),
        series=bucket_series(selected, window),
        period_total=sum(e.amount for e in selected),
        expense_count=len(expenses),
    )
