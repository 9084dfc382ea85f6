"""
Dashboard Aggregation Engine

Pure function from raw collections to a DashboardStats snapshot.

Rules:
- Period is the calendar month (and year) of `now`
- Income and expense totals include every status in the period
- pending_balance sums the period's pending incomes; expenses have no
  scheduled-but-unpaid state, so they contribute nothing
- Invoice counts cover the whole collection, not just the period
- Recent transactions merge incomes then expenses and sort by date,
  newest first; equal dates keep that merged order

The function never raises: missing collections count as empty and rows
that cannot be read as records are skipped.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from src.config import get_settings
from src.models.derived import (
    DashboardStats,
    InvoiceStatusCounts,
    RecentTransaction,
)
from src.models.records import (
    Client,
    Expense,
    Income,
    IncomeStatus,
    Invoice,
    InvoiceStatus,
    TransactionKind,
)

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def coerce_records(rows: Optional[Iterable[Any]], model: type[M]) -> list[M]:
    """Read rows as `model`, dropping anything malformed."""
    records: list[M] = []
    if rows is None:
        return records
    try:
        iterator = iter(rows)
    except TypeError:
        return records

    for row in iterator:
        if isinstance(row, model):
            records.append(row)
            continue
        try:
            if isinstance(row, BaseModel):
                row = row.model_dump()
            records.append(model.model_validate(row))
        except (ValidationError, TypeError, ValueError):
            logger.debug("skipped_malformed_row", model=model.__name__)
    return records


def in_period(day: date, reference: Union[date, datetime]) -> bool:
    """True when `day` falls in the same calendar month and year as `reference`."""
    return day.year == reference.year and day.month == reference.month


def _total(records: Iterable[Union[Income, Expense]]) -> Decimal:
    return sum((r.amount for r in records), Decimal("0"))


def count_invoices(invoices: Iterable[Invoice]) -> InvoiceStatusCounts:
    counts = {status.value: 0 for status in InvoiceStatus}
    total = 0
    for invoice in invoices:
        counts[invoice.status.value] += 1
        total += 1
    return InvoiceStatusCounts(total=total, **counts)


def recent_transactions(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    limit: int = 5,
) -> list[RecentTransaction]:
    """Newest incomes/expenses; ties keep incomes first, then collection order."""
    merged = [
        RecentTransaction(
            kind=TransactionKind.INCOME,
            id=i.id,
            amount=i.amount,
            description=i.description,
            category=i.category,
            date=i.date,
            status=i.status,
            client_id=i.client_id,
        )
        for i in incomes
    ] + [
        RecentTransaction(
            kind=TransactionKind.EXPENSE,
            id=e.id,
            amount=e.amount,
            description=e.description,
            category=e.category,
            date=e.date,
        )
        for e in expenses
    ]
    # Python's sort is stable even with reverse=True
    merged.sort(key=lambda t: t.date, reverse=True)
    return merged[:limit]


def aggregate(
    incomes: Optional[Iterable[Any]],
    expenses: Optional[Iterable[Any]],
    clients: Optional[Iterable[Any]],
    invoices: Optional[Iterable[Any]],
    now: Optional[Union[date, datetime]] = None,
    recent_limit: Optional[int] = None,
) -> DashboardStats:
    """
    Compute dashboard statistics for the month of `now`.

    Args:
        incomes, expenses, clients, invoices: Entities or raw rows (None is empty)
        now: Reference time, defaults to the current local time
        recent_limit: Size of the recent list (defaults to configuration)
    """
    now = now or datetime.now()
    if recent_limit is None:
        recent_limit = get_settings().engine.recent_transactions_limit

    all_incomes = coerce_records(incomes, Income)
    all_expenses = coerce_records(expenses, Expense)
    all_clients = coerce_records(clients, Client)
    all_invoices = coerce_records(invoices, Invoice)

    period_incomes = [i for i in all_incomes if in_period(i.date, now)]
    period_expenses = [e for e in all_expenses if in_period(e.date, now)]
    paid = [i for i in period_incomes if i.status == IncomeStatus.PAID]
    pending = [i for i in period_incomes if i.status == IncomeStatus.PENDING]

    total_income = _total(period_incomes)
    total_expense = _total(period_expenses)

    return DashboardStats(
        period_year=now.year,
        period_month=now.month,
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        pending_balance=_total(pending),
        client_count=len(all_clients),
        invoice_counts=count_invoices(all_invoices),
        recent_transactions=recent_transactions(all_incomes, all_expenses, recent_limit),
        incomes_in_period=period_incomes,
        expenses_in_period=period_expenses,
        paid_incomes=paid,
        pending_incomes=pending,
        invoices=all_invoices,
    )
