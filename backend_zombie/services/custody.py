"""
Custody service — confirm-then-mirror orchestration.

Every owner or beneficiary action is validated against the index first, sent
to the ledger (blocking until confirmed or timed out), and only then mirrored
into the index through the reconciliation engine. A ledger error or timeout
leaves the index untouched.
"""

from __future__ import annotations

from typing import Callable

from backend_zombie.core.addresses import normalize_address
from backend_zombie.core.exceptions import DuplicateRecord, NotFound, ValidationError
from backend_zombie.core.expiry import now_ms
from backend_zombie.database.models import BeneficiaryRecord, NewBeneficiary
from backend_zombie.database.store import BeneficiaryStore
from backend_zombie.ledger.gateway import LedgerGateway
from backend_zombie.ledger.models import Confirmation
from backend_zombie.reconciliation.engine import ReconcileResult, ReconciliationEngine, ResyncReport
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)


class CustodyService:
    def __init__(
        self,
        store: BeneficiaryStore,
        ledger: LedgerGateway,
        engine: ReconciliationEngine,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.engine = engine
        self._clock = clock

    def _mirror(self, confirmation: Confirmation) -> list[ReconcileResult]:
        if not confirmation.events:
            logger.warning("ledger_tx_without_zombie_events", digest=confirmation.digest)
        return self.engine.apply_confirmation(confirmation)

    def _require_record(self, owner: str, bene: str) -> BeneficiaryRecord:
        record = self.store.get(owner, bene)
        if record is None:
            raise NotFound("Beneficiary not found", owner=owner, beneficiary=bene)
        return record

    @staticmethod
    def _mirrored_record(results: list[ReconcileResult]) -> BeneficiaryRecord | None:
        return next((r.record for r in results if r.record is not None), None)

    # -------------------------------------------------------------------------
    # Owner actions
    # -------------------------------------------------------------------------

    def add_beneficiary(
        self,
        *,
        owner: object,
        bene: object,
        wallet: object,
        allocation: object,
        duration: object,
        unit: object,
    ) -> BeneficiaryRecord:
        """Validate, submit add_beneficiary to the ledger, mirror the confirmed record."""
        new = NewBeneficiary.build(
            owner_address=owner,
            bene_address=bene,
            wallet_address=wallet,
            allocation=allocation,
            inactivity_duration=duration,
            inactivity_unit=unit,
        )
        if self.store.get(new.owner_address, new.bene_address) is not None:
            raise DuplicateRecord(
                "Beneficiary already registered for this owner",
                owner=new.owner_address,
                beneficiary=new.bene_address,
            )
        confirmation = self.ledger.add_beneficiary(
            new.wallet_address,
            new.bene_address,
            new.allocation,
            new.inactivity_duration,
            new.inactivity_unit,
        )
        results = self._mirror(confirmation)
        record = self._mirrored_record(results) or self.store.get(new.owner_address, new.bene_address)
        if record is None:
            raise NotFound(
                "Ledger confirmed the add but no record was mirrored",
                digest=confirmation.digest,
            )
        return record

    def check_in(self, *, owner: object, bene: object) -> BeneficiaryRecord:
        owner_addr = normalize_address(owner, field="ownerAddress")
        bene_addr = normalize_address(bene, field="beneAddress")
        record = self._require_record(owner_addr, bene_addr)
        confirmation = self.ledger.check_in(record.wallet_address, bene_addr)
        self._mirror(confirmation)
        return self._require_record(owner_addr, bene_addr)

    def revoke(self, *, owner: object, bene: object) -> int:
        """Revoke on the ledger; returns the number of index records the mirror removed."""
        owner_addr = normalize_address(owner, field="ownerAddress")
        bene_addr = normalize_address(bene, field="beneAddress")
        record = self._require_record(owner_addr, bene_addr)
        confirmation = self.ledger.revoke_beneficiary(record.wallet_address, bene_addr)
        return sum(r.removed for r in self._mirror(confirmation))

    def execute_transfer(self, *, owner: object, wallet: object) -> int:
        """Close the wallet on the ledger; returns the number of index records removed."""
        owner_addr = normalize_address(owner, field="ownerAddress")
        wallet_addr = normalize_address(wallet, field="walletAddress")
        records = [r for r in self.store.list_by_wallet(wallet_addr) if r.owner_address == owner_addr]
        if not records:
            raise NotFound("No beneficiaries found for this wallet", owner=owner_addr, wallet=wallet_addr)
        confirmation = self.ledger.execute_transfer(wallet_addr)
        results = self._mirror(confirmation)
        return sum(r.removed for r in results)

    def withdraw(self, *, owner: object, wallet: object, amount: object) -> Confirmation:
        normalize_address(owner, field="ownerAddress")
        wallet_addr = normalize_address(wallet, field="walletAddress")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Withdrawal amount must be a positive integer amount of base units", field="amount")
        confirmation = self.ledger.withdraw(wallet_addr, amount)
        self._mirror(confirmation)
        return confirmation

    # -------------------------------------------------------------------------
    # Beneficiary actions
    # -------------------------------------------------------------------------

    def claim(self, *, bene: object, wallet: object) -> BeneficiaryRecord | None:
        """Submit a claim; the ledger decides whether the window elapsed. Returns the removed record."""
        bene_addr = normalize_address(bene, field="beneAddress")
        wallet_addr = normalize_address(wallet, field="walletAddress")
        confirmation = self.ledger.claim(wallet_addr, bene_addr)
        return self._mirrored_record(self._mirror(confirmation))

    # -------------------------------------------------------------------------
    # Client-submitted transactions and repair
    # -------------------------------------------------------------------------

    def ingest_transaction(self, digest: str) -> list[ReconcileResult]:
        """Wait for a transaction the client submitted itself, then mirror its events."""
        digest = (digest or "").strip()
        if not digest:
            raise ValidationError("digest must be non-empty", field="digest")
        confirmation = self.ledger.confirm(digest)
        logger.info("ledger_tx_ingested", digest=digest, events=len(confirmation.events))
        return self._mirror(confirmation)

    def resync(self, wallet: object) -> ResyncReport:
        wallet_addr = normalize_address(wallet, field="walletAddress")
        return self.engine.resync_wallet(wallet_addr, now_ms=self._clock())
