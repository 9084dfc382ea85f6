"""
Core Record Models

These models define the strict schemas for every row owned by a user:
incomes, expenses, clients and invoices.

Each entity comes in two shapes:
1. A *draft* - what a form submits (no id, no owner)
2. The *entity* - the canonical row as the remote store returns it

DESIGN DECISION: Drafts are the validation boundary. A payload that does
not parse as a draft never reaches the mutation coordinator, so loosely
shaped dictionaries cannot leak into the local projection.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class Collection(str, Enum):
    """Owner-scoped collections held by the remote store."""
    INCOMES = "incomes"
    EXPENSES = "expenses"
    CLIENTS = "clients"
    INVOICES = "invoices"


class TransactionKind(str, Enum):
    """Direction of money flow for a record."""
    INCOME = "income"
    EXPENSE = "expense"


class IncomeStatus(str, Enum):
    """Settlement state of an income record."""
    PENDING = "pending"
    PAID = "paid"


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle.

    CRITICAL: OVERDUE is only ever set by the overdue sweep.
    PAID and CANCELLED are never overwritten by the sweep.
    """
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# =============================================================================
# SHARED IDENTITY
# =============================================================================

class StoredRecord(BaseModel):
    """Fields the remote store stamps on every row."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# INCOME / EXPENSE
# =============================================================================

class ExpenseDraft(BaseModel):
    """An expense line item as submitted by the user."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Decimal = Field(..., ge=0, description="Amount spent")
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(default="", max_length=100)
    date: date


class IncomeDraft(ExpenseDraft):
    """
    An income line item as submitted by the user.

    A pending income linked to a client spawns an invoice once stored.
    """

    status: IncomeStatus = Field(
        default=IncomeStatus.PENDING,
        description="Whether the money has been received"
    )
    client_id: Optional[str] = Field(
        default=None,
        description="Client who owes this income"
    )


class Expense(ExpenseDraft, StoredRecord):
    """A stored expense."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class Income(IncomeDraft, StoredRecord):
    """A stored income."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


# =============================================================================
# CLIENT
# =============================================================================

class ClientDraft(BaseModel):
    """A client as submitted by the user. Only the name is required."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


class Client(ClientDraft, StoredRecord):
    """A stored client."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


# =============================================================================
# INVOICE
# =============================================================================

class InvoiceDraft(BaseModel):
    """
    A billable amount owed by a client.

    source_income_id links an invoice derived from an income back to it,
    so the same income never produces two invoices.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    client_id: str = Field(..., min_length=1)
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., ge=0)
    due_date: date
    payment_date: Optional[datetime] = None
    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING)
    source_income_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_payment_date(self) -> 'InvoiceDraft':
        """Payment date is present exactly when the invoice is paid."""
        if self.status == InvoiceStatus.PAID and self.payment_date is None:
            raise ValueError("Paid invoice requires a payment date")
        if self.status != InvoiceStatus.PAID and self.payment_date is not None:
            raise ValueError("Only paid invoices carry a payment date")
        return self


class Invoice(InvoiceDraft, StoredRecord):
    """A stored invoice."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


# =============================================================================
# COLLECTION REGISTRY
# =============================================================================

DRAFT_MODELS: dict[Collection, type[BaseModel]] = {
    Collection.INCOMES: IncomeDraft,
    Collection.EXPENSES: ExpenseDraft,
    Collection.CLIENTS: ClientDraft,
    Collection.INVOICES: InvoiceDraft,
}

ENTITY_MODELS: dict[Collection, type[StoredRecord]] = {
    Collection.INCOMES: Income,
    Collection.EXPENSES: Expense,
    Collection.CLIENTS: Client,
    Collection.INVOICES: Invoice,
}

# Fields a user edit may never touch
PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})
