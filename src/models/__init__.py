"""
Data Models Package

This package contains all Pydantic models used by the engine.
All data flowing through the system must conform to these schemas.
"""

from src.models.records import (
    DRAFT_MODELS,
    ENTITY_MODELS,
    PROTECTED_FIELDS,
    Client,
    ClientDraft,
    Collection,
    Expense,
    ExpenseDraft,
    Income,
    IncomeDraft,
    IncomeStatus,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    StoredRecord,
    TransactionKind,
)
from src.models.derived import (
    CalendarEvent,
    DashboardStats,
    EventKind,
    EventPriority,
    InvoiceStatusCounts,
    RecentTransaction,
    Reminder,
    ReminderKind,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "DRAFT_MODELS",
    "ENTITY_MODELS",
    "PROTECTED_FIELDS",
    "Client",
    "ClientDraft",
    "Collection",
    "Expense",
    "ExpenseDraft",
    "Income",
    "IncomeDraft",
    "IncomeStatus",
    "Invoice",
    "InvoiceDraft",
    "InvoiceStatus",
    "StoredRecord",
    "TransactionKind",
    # Derived models
    "CalendarEvent",
    "DashboardStats",
    "EventKind",
    "EventPriority",
    "InvoiceStatusCounts",
    "RecentTransaction",
    "Reminder",
    "ReminderKind",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
