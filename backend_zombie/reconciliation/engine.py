"""
Reconciliation engine — mirrors ledger-confirmed events into the beneficiary store.

Responsibilities:
- Apply confirmed adds, check-ins, claims, transfers, revocations and
  withdrawals to the store; never called before the ledger confirmed.
- Serialize mutations per wallet (KeyedLocks); different wallets never contend.
- Detect out-of-order delivery: an event at or before the wallet's closure
  tombstone is discarded, so a delayed check-in cannot resurrect records after
  a transfer regardless of arrival order.
- Self-heal: a check-in for a record the index lost is re-derived from the
  ledger snapshot; resync_wallet() rebuilds a whole wallet.
- Retry store-availability failures with exponential backoff; once exhausted,
  raise StoreUnavailable(recoverable=True). Confirmed ledger state is never
  rolled back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

from backend_zombie.core.exceptions import (
    DuplicateRecord,
    EventAlreadyApplied,
    NotFound,
    StoreUnavailable,
)
from backend_zombie.core.expiry import InactivityUnit, now_ms, split_threshold
from backend_zombie.core.locks import KeyedLocks
from backend_zombie.database.models import BeneficiaryRecord, EventId, NewBeneficiary
from backend_zombie.database.store import BeneficiaryStore
from backend_zombie.ledger.gateway import LedgerGateway
from backend_zombie.ledger.models import (
    AllocationClaimed,
    BeneficiaryAdded,
    BeneficiaryRemoved,
    CheckedIn,
    Confirmation,
    LedgerEvent,
    TransferExecuted,
    Withdrawn,
)
from backend_zombie.zombie_logging import bind_wallet, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SEC = 0.5


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    HEALED = "healed"
    DISCARDED = "discarded"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReconcileResult:
    """What happened to one ledger event."""

    outcome: ReconcileOutcome
    action: str
    wallet: str
    beneficiary: str | None = None
    record: BeneficiaryRecord | None = None
    removed: int = 0
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "action": self.action,
            "walletAddress": self.wallet,
            "beneAddress": self.beneficiary,
            "record": self.record.to_dict() if self.record else None,
            "removed": self.removed,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ResyncReport:
    wallet: str
    created: int = 0
    removed: int = 0
    refreshed: int = 0
    ledger_missing: bool = False

    def to_dict(self) -> dict:
        return {
            "walletAddress": self.wallet,
            "created": self.created,
            "removed": self.removed,
            "refreshed": self.refreshed,
            "ledgerMissing": self.ledger_missing,
        }


class ReconciliationEngine:
    """
    Applies confirmed ledger events to the store.

    Args:
        store: Beneficiary store.
        ledger: Gateway used to re-derive records (self-heal, resync).
        retry_attempts: Store attempts per event before surfacing StoreUnavailable.
        retry_backoff_sec: Base delay; doubles per attempt.
        sleep: Injected for tests.
        clock: Local clock (ms); caps re-derived check-ins so none is in the future.
    """

    def __init__(
        self,
        store: BeneficiaryStore,
        ledger: LedgerGateway,
        *,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_backoff_sec: float = DEFAULT_RETRY_BACKOFF_SEC,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff_sec = max(0.0, retry_backoff_sec)
        self._sleep = sleep
        self._clock = clock
        self._locks = KeyedLocks()

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _retrying(self, action: str, wallet: str, fn: Callable[[], T]) -> T:
        last: StoreUnavailable | None = None
        for attempt in range(self._retry_attempts):
            try:
                return fn()
            except StoreUnavailable as e:
                last = e
                backoff = self._retry_backoff_sec * (2 ** attempt)
                logger.warning(
                    "reconcile_store_unavailable",
                    action=action,
                    wallet=wallet,
                    attempt=attempt + 1,
                    error=e.reason,
                    backoff_sec=round(backoff, 2),
                )
                if attempt < self._retry_attempts - 1:
                    self._sleep(backoff)
        logger.error("reconcile_retries_exhausted", action=action, wallet=wallet, attempts=self._retry_attempts)
        raise StoreUnavailable(
            "Ledger change confirmed but not yet reflected in the index; retry shortly",
            recoverable=True,
            wallet=wallet,
        ) from last

    def _is_stale(self, wallet: str, at_ms: int) -> bool:
        closed_at = self._store.wallet_closed_at(wallet)
        return closed_at is not None and at_ms <= closed_at

    def _already_applied(self, event_id: EventId | None) -> bool:
        return event_id is not None and self._store.is_event_applied(event_id)

    def _duplicate(self, action: str, wallet: str, bene: str | None, event_id: EventId | None) -> ReconcileResult:
        logger.info("reconcile_event_duplicate", action=action, wallet=wallet, event_id=str(event_id))
        return ReconcileResult(ReconcileOutcome.DUPLICATE, action, wallet, bene, reason="event already applied")

    def _discard(
        self,
        action: str,
        wallet: str,
        bene: str | None,
        event_id: EventId | None,
        reason: str,
    ) -> ReconcileResult:
        """Log and drop an event; remember its identity so redelivery is a no-op."""
        logger.info("reconcile_event_discarded", action=action, wallet=wallet, beneficiary=bene, reason=reason)
        if event_id is not None:
            try:
                self._store.mark_event_applied(event_id, wallet=wallet)
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, bene, event_id)
        return ReconcileResult(ReconcileOutcome.DISCARDED, action, wallet, bene, reason=reason)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def on_beneficiary_added(
        self,
        owner: str,
        bene: str,
        wallet: str,
        allocation: int,
        duration: int,
        unit: InactivityUnit | str,
        *,
        confirmed_at_ms: int,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        """Mirror a confirmed add as a new record checked in at the confirmation time."""
        action = "beneficiary_added"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, bene, event_id)
            if self._is_stale(wallet, confirmed_at_ms):
                return self._discard(action, wallet, bene, event_id, "wallet closed after this add")
            now = self._clock()
            new = NewBeneficiary.build(
                owner_address=owner,
                bene_address=bene,
                wallet_address=wallet,
                allocation=allocation,
                inactivity_duration=duration,
                inactivity_unit=unit,
                last_checkin=min(confirmed_at_ms, now),
            )
            try:
                record = self._store.create(new, now_ms=now, event_id=event_id)
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, bene, event_id)
            except DuplicateRecord:
                existing = self._store.get(new.owner_address, new.bene_address)
                if existing is None or existing.wallet_address != new.wallet_address:
                    raise
                # Already mirrored (e.g. healed from a later check-in)
                return self._discard(action, wallet, bene, event_id, "record already present")
            logger.info("beneficiary_mirrored", wallet=wallet, owner=owner, beneficiary=bene, record_id=record.id)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet, bene, record=record)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    def on_check_in(
        self,
        owner: str,
        bene: str,
        wallet: str,
        *,
        confirmed_at_ms: int,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        """
        Mirror a confirmed check-in. Discarded when the wallet was closed at or
        after the check-in's ledger time, or when the pair is indexed under a
        different wallet; re-derived from the ledger when the record is missing
        but the ledger still has the beneficiary.
        """
        action = "check_in"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, bene, event_id)
            if self._is_stale(wallet, confirmed_at_ms):
                return self._discard(action, wallet, bene, event_id, "wallet closed after this check-in")
            at_ms = min(confirmed_at_ms, self._clock())
            try:
                record = self._store.touch(owner, bene, at_ms=at_ms, wallet=wallet, event_id=event_id)
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, bene, event_id)
            except NotFound:
                return self._heal_from_ledger(action, owner, bene, wallet, confirmed_at_ms, event_id)
            logger.info("checkin_mirrored", wallet=wallet, beneficiary=bene, last_checkin=record.last_checkin)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet, bene, record=record)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    def _heal_from_ledger(
        self,
        action: str,
        owner: str,
        bene: str,
        wallet: str,
        confirmed_at_ms: int,
        event_id: EventId | None,
    ) -> ReconcileResult:
        held = self._store.get(owner, bene)
        if held is not None and held.wallet_address != wallet:
            return self._discard(action, wallet, bene, event_id, "pair is held by another wallet")
        snapshot = self._ledger.get_wallet(wallet)
        entry = snapshot.beneficiary(bene) if snapshot is not None else None
        if snapshot is None or entry is None or snapshot.owner != owner:
            return self._discard(action, wallet, bene, event_id, "no active record on the ledger")
        duration, unit = split_threshold(entry.threshold_ms)
        now = self._clock()
        new = NewBeneficiary.build(
            owner_address=owner,
            bene_address=bene,
            wallet_address=wallet,
            allocation=entry.allocation,
            inactivity_duration=duration,
            inactivity_unit=unit,
            last_checkin=min(max(entry.last_checkin_ms, confirmed_at_ms), now),
        )
        try:
            record = self._store.create(new, now_ms=now, event_id=event_id)
        except EventAlreadyApplied:
            return self._duplicate(action, wallet, bene, event_id)
        logger.warning("beneficiary_record_healed", wallet=wallet, owner=owner, beneficiary=bene, record_id=record.id)
        return ReconcileResult(ReconcileOutcome.HEALED, action, wallet, bene, record=record)

    def on_claim(
        self,
        bene: str,
        wallet: str,
        *,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        """Mirror a confirmed claim. The ledger already decided; nothing is gated here."""
        action = "claim"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, bene, event_id)
            record = self._store.find_by_wallet_beneficiary(wallet, bene)
            if record is None:
                return self._discard(action, wallet, bene, event_id, "record already gone")
            try:
                removed = self._store.remove(record.owner_address, bene, wallet=wallet, event_id=event_id)
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, bene, event_id)
            except NotFound:
                return self._discard(action, wallet, bene, event_id, "record already gone")
            logger.info("claim_mirrored", wallet=wallet, beneficiary=bene, allocation=removed.allocation)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet, bene, record=removed, removed=1)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    def on_transfer_executed(
        self,
        owner: str,
        wallet: str,
        *,
        confirmed_at_ms: int,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        """Remove every record of the wallet and write the closure tombstone atomically."""
        action = "transfer_executed"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, None, event_id)
            try:
                removed = self._store.remove_all_for_wallet(
                    owner, wallet, closed_at_ms=confirmed_at_ms, event_id=event_id
                )
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, None, event_id)
            logger.info("transfer_mirrored", wallet=wallet, owner=owner, removed=removed)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet, removed=removed)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    def on_beneficiary_revoked(
        self,
        owner: str,
        bene: str,
        wallet: str,
        *,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        action = "beneficiary_revoked"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, bene, event_id)
            try:
                removed = self._store.remove(owner, bene, wallet=wallet, event_id=event_id)
            except EventAlreadyApplied:
                return self._duplicate(action, wallet, bene, event_id)
            except NotFound:
                return self._discard(action, wallet, bene, event_id, "record already gone")
            logger.info("revocation_mirrored", wallet=wallet, owner=owner, beneficiary=bene)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet, bene, record=removed, removed=1)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    def on_withdrawn(
        self,
        owner: str,
        wallet: str,
        amount: int,
        *,
        event_id: EventId | None = None,
    ) -> ReconcileResult:
        """Owner withdrawal of unallocated balance: no record changes."""
        action = "withdrawn"

        def run() -> ReconcileResult:
            if self._already_applied(event_id):
                return self._duplicate(action, wallet, None, event_id)
            if event_id is not None:
                try:
                    self._store.mark_event_applied(event_id, wallet=wallet)
                except EventAlreadyApplied:
                    return self._duplicate(action, wallet, None, event_id)
            logger.info("withdrawal_observed", wallet=wallet, owner=owner, amount=amount)
            return ReconcileResult(ReconcileOutcome.APPLIED, action, wallet)

        with self._locks.hold(wallet):
            return self._retrying(action, wallet, run)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def apply(self, event: LedgerEvent) -> ReconcileResult:
        """Dispatch one decoded ledger event to its handler."""
        if isinstance(event, BeneficiaryAdded):
            return self.on_beneficiary_added(
                event.owner,
                event.beneficiary,
                event.wallet,
                event.allocation,
                event.duration,
                event.unit,
                confirmed_at_ms=event.timestamp_ms,
                event_id=event.event_id,
            )
        if isinstance(event, CheckedIn):
            return self.on_check_in(
                event.owner,
                event.beneficiary,
                event.wallet,
                confirmed_at_ms=event.timestamp_ms,
                event_id=event.event_id,
            )
        if isinstance(event, AllocationClaimed):
            return self.on_claim(event.beneficiary, event.wallet, event_id=event.event_id)
        if isinstance(event, TransferExecuted):
            return self.on_transfer_executed(
                event.owner, event.wallet, confirmed_at_ms=event.timestamp_ms, event_id=event.event_id
            )
        if isinstance(event, BeneficiaryRemoved):
            return self.on_beneficiary_revoked(
                event.owner, event.beneficiary, event.wallet, event_id=event.event_id
            )
        if isinstance(event, Withdrawn):
            return self.on_withdrawn(event.owner, event.wallet, event.amount, event_id=event.event_id)
        raise TypeError(f"Unsupported ledger event {type(event).__name__}")

    def apply_confirmation(self, confirmation: Confirmation) -> list[ReconcileResult]:
        """Apply every event of a confirmed transaction in emission order."""
        results = [self.apply(ev) for ev in confirmation.events]
        logger.debug(
            "confirmation_reconciled",
            digest=confirmation.digest,
            outcomes=[r.outcome.value for r in results],
        )
        return results

    # -------------------------------------------------------------------------
    # Resync
    # -------------------------------------------------------------------------

    def resync_wallet(self, wallet: str, *, now_ms: int | None = None) -> ResyncReport:
        """
        Rebuild a wallet's records from the ledger snapshot: create what the
        index is missing, drop what the ledger no longer has, and advance
        last_checkin where the ledger is ahead.
        """
        log = bind_wallet(wallet)
        now = now_ms if now_ms is not None else self._clock()

        def run() -> ResyncReport:
            snapshot = self._ledger.get_wallet(wallet)
            existing = self._store.list_by_wallet(wallet)
            if snapshot is None:
                removed = 0
                for owner in {r.owner_address for r in existing}:
                    removed += self._store.remove_all_for_wallet(owner, wallet, closed_at_ms=now)
                log.warning("wallet_resync_ledger_missing", removed=removed)
                return ResyncReport(wallet, removed=removed, ledger_missing=True)

            created = removed = refreshed = 0
            by_bene = {}
            for record in existing:
                entry = snapshot.beneficiary(record.bene_address)
                if entry is None or record.owner_address != snapshot.owner:
                    self._store.remove(record.owner_address, record.bene_address, wallet=wallet)
                    removed += 1
                    continue
                by_bene[record.bene_address] = record
                checkin = min(entry.last_checkin_ms, now)
                if checkin > record.last_checkin:
                    self._store.touch(record.owner_address, record.bene_address, at_ms=checkin, wallet=wallet)
                    refreshed += 1

            for address, entry in snapshot.beneficiaries.items():
                if address in by_bene:
                    continue
                duration, unit = split_threshold(entry.threshold_ms)
                new = NewBeneficiary.build(
                    owner_address=snapshot.owner,
                    bene_address=address,
                    wallet_address=wallet,
                    allocation=entry.allocation,
                    inactivity_duration=duration,
                    inactivity_unit=unit,
                    last_checkin=min(entry.last_checkin_ms, now),
                )
                try:
                    self._store.create(new, now_ms=now)
                except DuplicateRecord:
                    # Same (owner, beneficiary) pair registered under another wallet
                    log.warning("wallet_resync_pair_conflict", beneficiary=address)
                    continue
                created += 1

            log.info("wallet_resynced", created=created, removed=removed, refreshed=refreshed)
            return ResyncReport(wallet, created=created, removed=removed, refreshed=refreshed)

        with self._locks.hold(wallet):
            return self._retrying("resync", wallet, run)
