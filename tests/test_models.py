"""
Tests for Finance Record Keeper models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with an in-memory store)
3. No real Sheets calls in tests
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from src.audit import AuditLogger, create_correlation_id
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from src.models.derived import EventPriority
from src.models.records import (
    Client,
    ClientDraft,
    ExpenseDraft,
    Income,
    IncomeDraft,
    IncomeStatus,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
)


class TestRecordModels:
    """Tests for record Pydantic models."""

    def test_income_draft_defaults(self):
        """Test IncomeDraft defaults to pending with no client."""
        draft = IncomeDraft(amount=Decimal("100"), description="Project", date=date(2024, 3, 1))
        assert draft.status == IncomeStatus.PENDING
        assert draft.client_id is None
        assert draft.category == ""

    def test_draft_strips_whitespace(self):
        """Test that whitespace is stripped from names."""
        client = ClientDraft(name="  ACME  ")
        assert client.name == "ACME"

    def test_negative_amount_rejected(self):
        """Test that amounts must be non-negative."""
        with pytest.raises(ValidationError):
            ExpenseDraft(amount=Decimal("-1"), description="Taxi", date=date(2024, 3, 1))

    def test_draft_rejects_unknown_fields(self):
        """Test that drafts forbid fields they do not declare."""
        with pytest.raises(ValidationError):
            ClientDraft(name="ACME", vat="123")

    def test_entity_ignores_unknown_columns(self):
        """Test that stored rows tolerate extra store columns."""
        client = Client.model_validate({
            "id": "c1", "owner_id": "user-1", "name": "ACME", "sheet_row": 7,
        })
        assert client.id == "c1"

    def test_entity_requires_identity(self):
        """Test that stored rows need an id and an owner."""
        with pytest.raises(ValidationError):
            Income(amount=Decimal("1"), description="x", date=date(2024, 3, 1))

    def test_amount_parsed_from_string(self):
        """Test that store strings parse into decimals."""
        income = Income.model_validate({
            "id": "i1", "owner_id": "user-1", "amount": "99.90",
            "description": "Project", "date": "2024-03-01",
        })
        assert income.amount == Decimal("99.90")
        assert income.date == date(2024, 3, 1)


class TestInvoicePaymentDate:
    """Payment date is present exactly when the invoice is paid."""

    def test_paid_requires_payment_date(self):
        """Test that a paid invoice without payment date is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            InvoiceDraft(
                client_id="c1", amount=Decimal("10"),
                due_date=date(2024, 3, 1), status=InvoiceStatus.PAID,
            )
        assert "payment date" in str(exc_info.value)

    def test_pending_rejects_payment_date(self):
        """Test that only paid invoices carry a payment date."""
        with pytest.raises(ValidationError):
            InvoiceDraft(
                client_id="c1", amount=Decimal("10"),
                due_date=date(2024, 3, 1), payment_date=datetime(2024, 3, 2),
            )

    def test_paid_with_payment_date(self):
        """Test a valid paid invoice."""
        invoice = Invoice(
            id="inv-1", owner_id="user-1", client_id="c1", amount=Decimal("10"),
            due_date=date(2024, 3, 1), status=InvoiceStatus.PAID,
            payment_date=datetime(2024, 3, 2),
        )
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.source_income_id is None


class TestDerivedModels:

    def test_priority_ical_values(self):
        """Test iCalendar priority mapping."""
        assert EventPriority.HIGH.ical_value == 1
        assert EventPriority.MEDIUM.ical_value == 5
        assert EventPriority.LOW.ical_value == 9


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            description="Backup created",
        )
        assert event.event_type == AuditEventType.BACKUP_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.timestamp.tzinfo is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.MUTATION_CONFIRMED,
            collection="incomes",
            entity_id="i1",
            description="Create confirmed on incomes",
            details={"action": "create"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "mutation_confirmed"
        assert log_dict["collection"] == "incomes"
        assert log_dict["details"]["action"] == "create"
        assert log_dict["correlation_id"] is None

    def test_builder_mutation_submitted(self):
        """Test AuditEventBuilder.mutation_submitted."""
        correlation_id = uuid4()

        event = AuditEventBuilder.mutation_submitted(
            "incomes", "create", "temp-1", correlation_id,
        )

        assert event.event_type == AuditEventType.MUTATION_SUBMITTED
        assert event.entity_id == "temp-1"
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_builder_mutation_rolled_back(self):
        """Test AuditEventBuilder.mutation_rolled_back."""
        event = AuditEventBuilder.mutation_rolled_back(
            "invoices", "update", "inv-1", "timeout", uuid4(),
        )

        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "timeout"
        assert event.is_user_action is False

    def test_builder_sweep_failed(self):
        """Test AuditEventBuilder.sweep_failed."""
        event = AuditEventBuilder.sweep_failed("overdue_sweep", "boom")
        assert event.severity == AuditSeverity.ERROR
        assert event.details["job"] == "overdue_sweep"


class TestAuditLogger:

    def test_recent_is_newest_first_and_filtered(self):
        """Test recent() ordering and type filter."""
        audit = AuditLogger()
        audit.log(AuditEventBuilder.reminder_fired("r1", "First"))
        audit.log(AuditEventBuilder.sweep_failed("job", "boom"))
        audit.log(AuditEventBuilder.reminder_fired("r2", "Second"))

        assert [e.entity_id for e in audit.recent(event_type=AuditEventType.REMINDER_FIRED)] == ["r2", "r1"]
        assert len(audit.recent(limit=1)) == 1

    def test_history_is_bounded(self):
        """Test that only the newest events are kept."""
        audit = AuditLogger(history_size=2)
        for n in range(3):
            audit.log(AuditEventBuilder.reminder_fired(f"r{n}", "Tick"))
        assert [e.entity_id for e in audit.recent()] == ["r2", "r1"]

    def test_by_correlation_id(self):
        """Test that a mutation flow can be traced."""
        audit = AuditLogger()
        correlation_id = create_correlation_id()
        audit.log(AuditEventBuilder.mutation_submitted("clients", "create", "temp-1", correlation_id))
        audit.log(AuditEventBuilder.reminder_fired("r1", "Unrelated"))
        audit.log(AuditEventBuilder.mutation_confirmed("clients", "create", "c1", correlation_id))

        flow = audit.by_correlation_id(correlation_id)
        assert [e.event_type for e in flow] == [
            AuditEventType.MUTATION_SUBMITTED,
            AuditEventType.MUTATION_CONFIRMED,
        ]

    def test_log_error(self):
        """Test that log_error records a system error."""
        audit = AuditLogger()
        audit.log_error("StoreDown", "connection refused", details={"collection": "incomes"})

        [event] = audit.recent()
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.details["collection"] == "incomes"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
