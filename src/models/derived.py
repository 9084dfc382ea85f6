"""
Derived State Models

Nothing in this module is persisted. Every instance is recomputed in full
from the raw collections: dashboard statistics on demand, calendar entries
whenever the invoice collection changes.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.models.records import (
    Expense,
    Income,
    IncomeStatus,
    Invoice,
    TransactionKind,
)


# =============================================================================
# DASHBOARD
# =============================================================================

class RecentTransaction(BaseModel):
    """An income or expense tagged with its kind, for the recent list."""

    kind: TransactionKind
    id: str
    amount: Decimal
    description: str
    category: str = ""
    date: date
    status: Optional[IncomeStatus] = None
    client_id: Optional[str] = None


class InvoiceStatusCounts(BaseModel):
    """Invoice counts by status over the whole collection."""

    total: int = 0
    pending: int = 0
    paid: int = 0
    overdue: int = 0
    cancelled: int = 0


class DashboardStats(BaseModel):
    """
    Snapshot of the current period.

    balance == total_income - total_expense always holds.
    """

    period_year: Optional[int] = None
    period_month: Optional[int] = None

    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    pending_balance: Decimal = Decimal("0")

    client_count: int = 0
    invoice_counts: InvoiceStatusCounts = Field(default_factory=InvoiceStatusCounts)
    recent_transactions: list[RecentTransaction] = Field(default_factory=list)

    # Period partitions
    incomes_in_period: list[Income] = Field(default_factory=list)
    expenses_in_period: list[Expense] = Field(default_factory=list)
    paid_incomes: list[Income] = Field(default_factory=list)
    pending_incomes: list[Income] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)


# =============================================================================
# CALENDAR
# =============================================================================

class EventKind(str, Enum):
    """What a calendar event stands for."""
    DUE = "due"              # Invoice due date
    REMINDER = "reminder"    # Heads-up before the due date
    CUSTOM = "custom"        # Added by the user


class EventPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def ical_value(self) -> int:
        """iCalendar PRIORITY: 1 is highest, 9 lowest."""
        return {"high": 1, "medium": 5, "low": 9}[self.value]


class ReminderKind(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    GOAL = "goal"
    REPORT = "report"


class CalendarEvent(BaseModel):
    """A dated entry on the calendar."""

    id: str
    title: str
    description: str = ""
    date: date
    kind: EventKind
    color: str
    priority: EventPriority = EventPriority.MEDIUM
    source_invoice_id: Optional[str] = None
    active: bool = True


class Reminder(BaseModel):
    """
    A notification scheduled for a date and time.

    Once fired it stays fired.
    """

    id: str
    title: str
    description: str = ""
    scheduled_for: datetime
    kind: ReminderKind = ReminderKind.INVOICE
    active: bool = True
    fired: bool = False
    source_invoice_id: Optional[str] = None
