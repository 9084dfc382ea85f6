"""Payload validation package."""

from src.validation.validator import (
    ImportFormatInvalid,
    ValidationFailed,
    ValidationIssue,
    invoice_status_changes,
    require_keys,
    validate_create,
    validate_update,
)

__all__ = [
    "ImportFormatInvalid",
    "ValidationFailed",
    "ValidationIssue",
    "invoice_status_changes",
    "require_keys",
    "validate_create",
    "validate_update",
]
