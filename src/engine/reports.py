"""
Report Data Contract

The report exporter (PDF/CSV rendering) is an external collaborator. This
module builds the data it consumes: a date-filtered set of records, a
summary, and only the detail sections the user selected.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from src.engine.aggregation import coerce_records
from src.models.records import Client, Expense, Income, Invoice


class ReportSections(BaseModel):
    """Which detail sections go into the document."""

    incomes: bool = True
    expenses: bool = True
    clients: bool = True
    invoices: bool = True


class ReportPeriod(BaseModel):
    start: date
    end: date


class ReportSummary(BaseModel):
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    client_count: int = 0
    invoice_count: int = 0


class ReportDetails(BaseModel):
    incomes: list[Income] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    clients: list[Client] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)


class ReportData(BaseModel):
    period: ReportPeriod
    summary: ReportSummary
    details: ReportDetails


def build_report_data(
    incomes: Optional[Iterable[Any]],
    expenses: Optional[Iterable[Any]],
    clients: Optional[Iterable[Any]],
    invoices: Optional[Iterable[Any]],
    start: Optional[date] = None,
    end: Optional[date] = None,
    sections: Optional[ReportSections] = None,
    today: Optional[date] = None,
) -> ReportData:
    """
    Assemble report data for [start, end] (inclusive).

    Defaults to January 1st of the current year through today. Invoices
    are filtered by due date; clients are never date-filtered.
    """
    today = today or date.today()
    start = start or date(today.year, 1, 1)
    end = end or today
    sections = sections or ReportSections()

    def within(day: date) -> bool:
        return start <= day <= end

    period_incomes = [i for i in coerce_records(incomes, Income) if within(i.date)]
    period_expenses = [e for e in coerce_records(expenses, Expense) if within(e.date)]
    period_invoices = [v for v in coerce_records(invoices, Invoice) if within(v.due_date)]
    all_clients = coerce_records(clients, Client)

    total_income = sum((i.amount for i in period_incomes), Decimal("0"))
    total_expense = sum((e.amount for e in period_expenses), Decimal("0"))

    return ReportData(
        period=ReportPeriod(start=start, end=end),
        summary=ReportSummary(
            total_income=total_income,
            total_expense=total_expense,
            balance=total_income - total_expense,
            client_count=len(all_clients),
            invoice_count=len(period_invoices),
        ),
        details=ReportDetails(
            incomes=period_incomes if sections.incomes else [],
            expenses=period_expenses if sections.expenses else [],
            clients=all_clients if sections.clients else [],
            invoices=period_invoices if sections.invoices else [],
        ),
    )
