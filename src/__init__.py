"""
Finance Record Keeper - Source Package

The client-side derived-state engine of a small-business finance record
keeper: optimistic writes with rollback, derived invoices, dashboard
statistics, description classification and an invoice calendar.

DESIGN PRINCIPLES:
1. Local state moves first, the remote store confirms
2. A failed write leaves no trace in local state
3. Derived state is recomputed, never patched
4. Every write and side effect is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Record Keeper Team"
