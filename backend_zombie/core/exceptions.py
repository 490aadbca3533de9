"""
Application-level exceptions.

Every error carries a human-readable `reason` distinct from its `kind`, and the
HTTP status the API maps it to. Validation and not-found errors are terminal;
ledger errors abort the operation before any store write; store-availability
errors on the reconciliation path are retried before being surfaced.
"""

from __future__ import annotations

from typing import Any


class ZombieError(Exception):
    """Base class for all domain errors."""

    kind = "internal_error"
    http_status = 500

    def __init__(self, reason: str, **context: Any) -> None:
        super().__init__(reason)
        self.reason = reason
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "kind": self.kind, "error": self.reason}


class ValidationError(ZombieError):
    """Malformed or missing fields, bad enum values, non-positive numbers. Rejected before any mutation."""

    kind = "validation_error"
    http_status = 400


# Store-level name for a record that breaks a data-model invariant.
InvalidRecord = ValidationError


class NotFound(ZombieError):
    """A mutation targeted a record that does not exist."""

    kind = "not_found"
    http_status = 404


class DuplicateRecord(ZombieError):
    """An active record for the (owner, beneficiary) pair already exists."""

    kind = "duplicate_record"
    http_status = 409


class LedgerError(ZombieError):
    """The ledger rejected the call or the transaction failed on-chain."""

    kind = "ledger_error"
    http_status = 502


class LedgerTimeout(LedgerError):
    """
    Confirmation was not observed before the timeout.

    The outcome is indeterminate, not failed: callers must re-query ledger
    state before retrying to avoid double submission.
    """

    kind = "ledger_indeterminate"
    http_status = 504

    def __init__(self, reason: str, *, digest: str | None = None, **context: Any) -> None:
        super().__init__(reason, **context)
        self.digest = digest

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.digest:
            out["digest"] = self.digest
        return out


class LedgerDecodeError(LedgerError):
    """A ledger payload did not match the expected tagged shape."""

    kind = "ledger_decode_error"


class StoreUnavailable(ZombieError):
    """Persistence layer unreachable. `recoverable` marks confirmed-but-unmirrored ledger events."""

    kind = "store_unavailable"
    http_status = 500

    def __init__(self, reason: str, *, recoverable: bool = False, **context: Any) -> None:
        super().__init__(reason, **context)
        self.recoverable = recoverable
        if recoverable:
            self.http_status = 503

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["retryable"] = self.recoverable
        return out


class EventAlreadyApplied(ZombieError):
    """
    The ledger event identity was already mirrored into the store.

    Raised by the store and absorbed by the reconciliation engine as a
    `duplicate` outcome; it never reaches the API.
    """

    kind = "event_already_applied"
