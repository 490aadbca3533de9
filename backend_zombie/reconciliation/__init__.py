"""Reconciliation — applies ledger-confirmed events to the beneficiary index."""

from backend_zombie.reconciliation.engine import (
    ReconcileOutcome,
    ReconcileResult,
    ReconciliationEngine,
    ResyncReport,
)

__all__ = [
    "ReconcileOutcome",
    "ReconcileResult",
    "ReconciliationEngine",
    "ResyncReport",
]
