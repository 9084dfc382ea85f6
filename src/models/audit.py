"""
Audit Models

Every write, rollback, derived write and sweep leaves an audit event.
This provides:
1. Traceability of optimistic writes and their outcome
2. Debugging information when a rollback happens
3. Visibility into side effects the user did not trigger directly

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Mutation pipeline
    MUTATION_SUBMITTED = "mutation_submitted"
    MUTATION_CONFIRMED = "mutation_confirmed"
    MUTATION_ROLLED_BACK = "mutation_rolled_back"

    # Side effects
    DERIVED_INVOICE_CREATED = "derived_invoice_created"
    DERIVED_INVOICE_SKIPPED = "derived_invoice_skipped"
    DERIVED_INVOICE_FAILED = "derived_invoice_failed"
    INVOICE_MARKED_OVERDUE = "invoice_marked_overdue"

    # Calendar
    REMINDER_FIRED = "reminder_fired"

    # Scheduler
    SWEEP_FAILED = "sweep_failed"

    # Backup
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    IMPORT_REJECTED = "import_rejected"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    collection: Optional[str] = Field(
        default=None,
        description="Collection the entity belongs to (e.g., 'invoices')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - ties a mutation to its outcome and side effects
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.mutation_submitted("incomes", "create", temp_id, cid)
        event = AuditEventBuilder.reminder_fired(reminder_id, title)
    """

    @staticmethod
    def mutation_submitted(
        collection: str,
        action: str,
        entity_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_SUBMITTED,
            collection=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{action.capitalize()} submitted on {collection}",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def mutation_confirmed(
        collection: str,
        action: str,
        entity_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_CONFIRMED,
            collection=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{action.capitalize()} confirmed on {collection}",
            details={"action": action},
        )

    @staticmethod
    def mutation_rolled_back(
        collection: str,
        action: str,
        entity_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            collection=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{action.capitalize()} on {collection} failed, local state restored",
            details={"action": action},
            error_message=error_message,
        )

    @staticmethod
    def derived_invoice_created(
        income_id: str,
        invoice_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DERIVED_INVOICE_CREATED,
            collection="invoices",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice created from pending income",
            details={"source_income_id": income_id},
        )

    @staticmethod
    def derived_invoice_skipped(
        income_id: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DERIVED_INVOICE_SKIPPED,
            severity=AuditSeverity.DEBUG,
            collection="incomes",
            entity_id=income_id,
            description=f"No invoice derived: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def derived_invoice_failed(
        income_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DERIVED_INVOICE_FAILED,
            severity=AuditSeverity.ERROR,
            collection="incomes",
            entity_id=income_id,
            correlation_id=correlation_id,
            description="Automatic invoice creation failed",
            error_message=error_message,
        )

    @staticmethod
    def invoice_marked_overdue(
        invoice_id: str,
        due_date: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_MARKED_OVERDUE,
            collection="invoices",
            entity_id=invoice_id,
            description=f"Invoice past due since {due_date} marked overdue",
            details={"due_date": due_date},
        )

    @staticmethod
    def reminder_fired(
        reminder_id: str,
        title: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMINDER_FIRED,
            entity_id=reminder_id,
            description=f"Reminder fired: {title}",
        )

    @staticmethod
    def sweep_failed(
        job_name: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Periodic job failed: {job_name}",
            error_message=error_message,
            details={"job": job_name},
        )

    @staticmethod
    def backup_created(
        total_records: int,
        destination: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            description=f"Backup created with {total_records} records",
            details={
                "total_records": total_records,
                "destination": destination,
            },
            is_user_action=True,
        )

    @staticmethod
    def backup_restored(
        total_records: int,
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_RESTORED,
            description=f"Backup restored with {total_records} records",
            details={"total_records": total_records, "source": source},
            is_user_action=True,
        )

    @staticmethod
    def import_rejected(
        source: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"Import rejected: {source}",
            error_message=error_message,
            details={"source": source},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
