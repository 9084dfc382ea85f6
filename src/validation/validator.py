"""
Payload Validation Boundary

DESIGN DECISION: Every write payload is validated here, before the
mutation coordinator touches local state or the network.

STAGE 1 - SHAPE:
- Unknown or protected fields
- Required field presence, types, formats (delegated to the draft models)

STAGE 2 - LIFECYCLE:
- Invoice invariants (payment date iff paid)
- Status transitions a user may not perform (manual overdue)

IMPORTANT: Validation NEVER silently fixes a payload.
It rejects it with the list of issues.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from src.models.records import (
    DRAFT_MODELS,
    ENTITY_MODELS,
    PROTECTED_FIELDS,
    Collection,
    Invoice,
    InvoiceStatus,
    StoredRecord,
)


class ValidationIssue(BaseModel):
    """A single validation problem."""

    field: str
    issue_type: str  # "missing", "invalid_value", "unknown_field", "transition"
    message: str


class ValidationFailed(Exception):
    """A payload was rejected before any network call."""

    def __init__(self, collection: str, issues: list[ValidationIssue]):
        self.collection = collection
        self.issues = issues
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues)
        super().__init__(f"Invalid {collection} payload: {summary}")


def _issues_from(error: ValidationError) -> list[ValidationIssue]:
    issues = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        issue_type = "missing" if item.get("type") == "missing" else "invalid_value"
        if item.get("type") == "extra_forbidden":
            issue_type = "unknown_field"
        issues.append(ValidationIssue(
            field=location,
            issue_type=issue_type,
            message=item.get("msg", "invalid"),
        ))
    return issues


def validate_create(collection: Collection, payload: Any) -> BaseModel:
    """
    Parse a create payload into the collection's draft model.

    Accepts a draft instance or a plain mapping.
    """
    draft_model = DRAFT_MODELS[collection]
    if isinstance(payload, draft_model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    if not isinstance(payload, dict):
        raise ValidationFailed(collection.value, [ValidationIssue(
            field="payload",
            issue_type="invalid_value",
            message=f"Expected a mapping, got {type(payload).__name__}",
        )])

    try:
        draft = draft_model.model_validate(payload)
    except ValidationError as e:
        raise ValidationFailed(collection.value, _issues_from(e))

    if collection == Collection.INVOICES and draft.status == InvoiceStatus.OVERDUE:
        raise ValidationFailed(collection.value, [ValidationIssue(
            field="status",
            issue_type="transition",
            message="Invoices become overdue automatically; it cannot be set by hand",
        )])
    return draft


def validate_update(
    collection: Collection,
    current: StoredRecord,
    changes: dict[str, Any],
    automatic: bool = False,
) -> StoredRecord:
    """
    Merge changes into the current entity and validate the result.

    Returns the updated entity. `automatic` marks writes issued by the
    engine itself (the overdue sweep) rather than by the user.
    """
    entity_model = ENTITY_MODELS[collection]
    issues = []

    for field in changes:
        if field in PROTECTED_FIELDS:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Field is managed by the store and cannot be edited",
            ))
        elif field not in entity_model.model_fields:
            issues.append(ValidationIssue(
                field=field,
                issue_type="unknown_field",
                message="Unknown field",
            ))

    if collection == Collection.INVOICES:
        issues.extend(_invoice_transition_issues(current, changes, automatic))

    if issues:
        raise ValidationFailed(collection.value, issues)

    merged = {**current.model_dump(), **changes}
    try:
        return entity_model.model_validate(merged)
    except ValidationError as e:
        raise ValidationFailed(collection.value, _issues_from(e))


def _invoice_transition_issues(
    current: StoredRecord,
    changes: dict[str, Any],
    automatic: bool,
) -> list[ValidationIssue]:
    if "status" not in changes:
        return []
    try:
        target = InvoiceStatus(changes["status"])
    except ValueError:
        # Left for the model to report
        return []

    if target == InvoiceStatus.OVERDUE and not automatic:
        return [ValidationIssue(
            field="status",
            issue_type="transition",
            message="Invoices become overdue automatically; it cannot be set by hand",
        )]
    if automatic and current.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
        return [ValidationIssue(
            field="status",
            issue_type="transition",
            message=f"Automatic updates never overwrite a {current.status.value} invoice",
        )]
    return []


def invoice_status_changes(
    invoice: Invoice,
    new_status: InvoiceStatus,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build the update payload for a manual status change.

    pending -> paid stamps the payment date, anything leaving paid clears
    it, any status may be cancelled. Overdue is reserved for the sweep.
    """
    new_status = InvoiceStatus(new_status)
    if new_status == InvoiceStatus.OVERDUE:
        raise ValidationFailed(Collection.INVOICES.value, [ValidationIssue(
            field="status",
            issue_type="transition",
            message="Invoices become overdue automatically; it cannot be set by hand",
        )])

    changes: dict[str, Any] = {"status": new_status.value}
    if new_status == InvoiceStatus.PAID:
        changes["payment_date"] = now or datetime.now()
    elif invoice.payment_date is not None:
        changes["payment_date"] = None
    return changes


class ImportFormatInvalid(Exception):
    """A backup or calendar file lacks the expected top-level keys."""

    def __init__(self, source: str, missing_keys: Optional[list[str]] = None, reason: str = ""):
        self.source = source
        self.missing_keys = missing_keys or []
        detail = reason or f"missing keys: {', '.join(self.missing_keys)}"
        super().__init__(f"Invalid {source} file ({detail})")


def require_keys(source: str, data: Any, keys: tuple[str, ...]) -> dict:
    """Check an imported document is an object carrying every key in `keys`."""
    if not isinstance(data, dict):
        raise ImportFormatInvalid(source, reason=f"expected an object, got {type(data).__name__}")
    missing = [key for key in keys if key not in data]
    if missing:
        raise ImportFormatInvalid(source, missing_keys=missing)
    return data
