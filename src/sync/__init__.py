"""Optimistic write pipeline, local projection and background effects."""

from src.sync.coordinator import (
    CreateIntent,
    DeleteIntent,
    MutationCoordinator,
    MutationOutcome,
    PendingMutation,
    RemoteWriteFailed,
    UpdateIntent,
    is_temporary_id,
    parse_intent,
)
from src.sync.events import (
    INCOME_CREATED,
    INVOICE_CREATED,
    INVOICE_UPDATED,
    DomainEvent,
    EventBus,
    event_name,
)
from src.sync.projection import CALENDAR, DASHBOARD_STATS, LocalProjection
from src.sync.propagator import SideEffectPropagator
from src.sync.scheduler import PeriodicJob, SessionScheduler

__all__ = [
    "CreateIntent",
    "DeleteIntent",
    "MutationCoordinator",
    "MutationOutcome",
    "PendingMutation",
    "RemoteWriteFailed",
    "UpdateIntent",
    "is_temporary_id",
    "parse_intent",
    "INCOME_CREATED",
    "INVOICE_CREATED",
    "INVOICE_UPDATED",
    "DomainEvent",
    "EventBus",
    "event_name",
    "CALENDAR",
    "DASHBOARD_STATS",
    "LocalProjection",
    "SideEffectPropagator",
    "PeriodicJob",
    "SessionScheduler",
]
