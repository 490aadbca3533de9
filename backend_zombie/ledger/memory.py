"""Deterministic in-process ledger.

Simulates the zombie contract: wallet balances, per-beneficiary BeneficiaryData
and the rules the real contract enforces (a claim only succeeds once the
inactivity window has elapsed at ledger time). Every accepted call is recorded
as a confirmed transaction with a digest and emitted events, so the same
confirm-then-mirror path runs against it as against Sui.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from typing import Callable

from backend_zombie.core.addresses import normalize_address
from backend_zombie.core.exceptions import LedgerError
from backend_zombie.core.expiry import InactivityUnit, now_ms, threshold_ms
from backend_zombie.database.models import EventId
from backend_zombie.ledger.gateway import LedgerGateway
from backend_zombie.ledger.models import (
    AllocationClaimed,
    BeneficiaryAdded,
    BeneficiaryRemoved,
    CheckedIn,
    Confirmation,
    LedgerBeneficiary,
    LedgerEvent,
    LedgerWallet,
    TransferExecuted,
    Withdrawn,
)
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)


@dataclass
class _WalletState:
    owner: str
    balance: int
    beneficiaries: dict[str, LedgerBeneficiary] = field(default_factory=dict)


class InMemoryLedger(LedgerGateway):
    """
    Ledger simulation for local development (LEDGER_BACKEND=memory) and tests.

    `clock` is the ledger clock in ms; tests pass a mutable fake. fail_next()
    makes the next write raise the given error without changing state.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._wallets: dict[str, _WalletState] = {}
        self._transactions: dict[str, Confirmation] = {}
        self._payouts: dict[str, int] = {}
        self._seq = 0
        self._pending_failure: Exception | None = None

    # -------------------------------------------------------------------------
    # Setup and inspection
    # -------------------------------------------------------------------------

    def create_wallet(self, owner: str, balance: int = 0, wallet: str | None = None) -> str:
        owner = normalize_address(owner, field="owner")
        with self._lock:
            self._seq += 1
            if wallet is None:
                wallet = "0x" + hashlib.sha256(f"wallet:{owner}:{self._seq}".encode()).hexdigest()
            wallet = normalize_address(wallet, field="wallet")
            if wallet in self._wallets:
                raise LedgerError("Wallet already exists", wallet=wallet)
            self._wallets[wallet] = _WalletState(owner=owner, balance=balance)
        logger.info("memory_ledger_wallet_created", wallet=wallet, owner=owner, balance=balance)
        return wallet

    def fail_next(self, exc: Exception) -> None:
        self._pending_failure = exc

    def payouts(self, address: str) -> int:
        """Total MIST paid out to `address` by claims and transfers."""
        return self._payouts.get(normalize_address(address), 0)

    def transactions(self) -> list[Confirmation]:
        with self._lock:
            return list(self._transactions.values())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _wallet(self, wallet: str) -> _WalletState:
        state = self._wallets.get(wallet)
        if state is None:
            raise LedgerError("Wallet object not found", wallet=wallet)
        return state

    def _begin(self) -> tuple[str, int]:
        if self._pending_failure is not None:
            exc, self._pending_failure = self._pending_failure, None
            raise exc
        self._seq += 1
        digest = hashlib.sha256(f"tx:{self._seq}".encode()).hexdigest()
        return digest, self._clock()

    def _commit(
        self,
        digest: str,
        ts: int,
        wallet: str,
        beneficiary: str | None,
        events: list[LedgerEvent],
    ) -> Confirmation:
        confirmation = Confirmation(
            digest=digest,
            wallet_address=wallet,
            beneficiary_address=beneficiary,
            timestamp_ms=ts,
            events=tuple(events),
        )
        self._transactions[digest] = confirmation
        return confirmation

    def _pay(self, address: str, amount: int) -> None:
        self._payouts[address] = self._payouts.get(address, 0) + amount

    # -------------------------------------------------------------------------
    # LedgerGateway
    # -------------------------------------------------------------------------

    def add_beneficiary(
        self,
        wallet: str,
        beneficiary: str,
        allocation: int,
        duration: int,
        unit: InactivityUnit,
    ) -> Confirmation:
        if allocation <= 0:
            raise LedgerError("Allocation must be positive", allocation=allocation)
        window = threshold_ms(duration, unit)
        with self._lock:
            state = self._wallet(wallet)
            if beneficiary in state.beneficiaries:
                raise LedgerError("Beneficiary already exists", wallet=wallet, beneficiary=beneficiary)
            digest, ts = self._begin()
            state.balance += allocation
            state.beneficiaries[beneficiary] = LedgerBeneficiary(
                address=beneficiary, last_checkin_ms=ts, threshold_ms=window, allocation=allocation
            )
            event = BeneficiaryAdded(
                event_id=EventId(digest, 0),
                wallet=wallet,
                owner=state.owner,
                beneficiary=beneficiary,
                allocation=allocation,
                duration=duration,
                unit=unit,
                timestamp_ms=ts,
            )
            return self._commit(digest, ts, wallet, beneficiary, [event])

    def check_in(self, wallet: str, beneficiary: str) -> Confirmation:
        with self._lock:
            state = self._wallet(wallet)
            entry = state.beneficiaries.get(beneficiary)
            if entry is None:
                raise LedgerError("Beneficiary not found", wallet=wallet, beneficiary=beneficiary)
            digest, ts = self._begin()
            state.beneficiaries[beneficiary] = LedgerBeneficiary(
                address=beneficiary,
                last_checkin_ms=ts,
                threshold_ms=entry.threshold_ms,
                allocation=entry.allocation,
            )
            event = CheckedIn(
                event_id=EventId(digest, 0),
                wallet=wallet,
                owner=state.owner,
                beneficiary=beneficiary,
                timestamp_ms=ts,
            )
            return self._commit(digest, ts, wallet, beneficiary, [event])

    def claim(self, wallet: str, beneficiary: str) -> Confirmation:
        with self._lock:
            state = self._wallet(wallet)
            entry = state.beneficiaries.get(beneficiary)
            if entry is None:
                raise LedgerError("Beneficiary not found", wallet=wallet, beneficiary=beneficiary)
            now = self._clock()
            if now < entry.last_checkin_ms + entry.threshold_ms:
                raise LedgerError(
                    "Owner is still active; allocation not yet claimable",
                    wallet=wallet,
                    beneficiary=beneficiary,
                )
            digest, ts = self._begin()
            del state.beneficiaries[beneficiary]
            state.balance -= entry.allocation
            self._pay(beneficiary, entry.allocation)
            event = AllocationClaimed(
                event_id=EventId(digest, 0),
                wallet=wallet,
                owner=state.owner,
                beneficiary=beneficiary,
                amount=entry.allocation,
                timestamp_ms=ts,
            )
            return self._commit(digest, ts, wallet, beneficiary, [event])

    def execute_transfer(self, wallet: str) -> Confirmation:
        """Pay every allocation out, return the remainder to the owner and empty the wallet."""
        with self._lock:
            state = self._wallet(wallet)
            digest, ts = self._begin()
            for entry in state.beneficiaries.values():
                self._pay(entry.address, entry.allocation)
                state.balance -= entry.allocation
            if state.balance > 0:
                self._pay(state.owner, state.balance)
            state.balance = 0
            state.beneficiaries.clear()
            event = TransferExecuted(
                event_id=EventId(digest, 0), wallet=wallet, owner=state.owner, timestamp_ms=ts
            )
            return self._commit(digest, ts, wallet, None, [event])

    def revoke_beneficiary(self, wallet: str, beneficiary: str) -> Confirmation:
        with self._lock:
            state = self._wallet(wallet)
            entry = state.beneficiaries.get(beneficiary)
            if entry is None:
                raise LedgerError("Beneficiary not found", wallet=wallet, beneficiary=beneficiary)
            digest, ts = self._begin()
            del state.beneficiaries[beneficiary]
            # The allocation stays in the wallet as unallocated balance.
            event = BeneficiaryRemoved(
                event_id=EventId(digest, 0),
                wallet=wallet,
                owner=state.owner,
                beneficiary=beneficiary,
                timestamp_ms=ts,
            )
            return self._commit(digest, ts, wallet, beneficiary, [event])

    def withdraw(self, wallet: str, amount: int) -> Confirmation:
        with self._lock:
            state = self._wallet(wallet)
            allocated = sum(b.allocation for b in state.beneficiaries.values())
            if amount <= 0 or amount > state.balance - allocated:
                raise LedgerError(
                    "Insufficient unallocated balance",
                    wallet=wallet,
                    amount=amount,
                    available=state.balance - allocated,
                )
            digest, ts = self._begin()
            state.balance -= amount
            self._pay(state.owner, amount)
            event = Withdrawn(
                event_id=EventId(digest, 0), wallet=wallet, owner=state.owner, amount=amount, timestamp_ms=ts
            )
            return self._commit(digest, ts, wallet, None, [event])

    def confirm(self, digest: str) -> Confirmation:
        with self._lock:
            confirmation = self._transactions.get(digest)
        if confirmation is None:
            raise LedgerError(f"Transaction {digest} not found", digest=digest)
        return confirmation

    def get_wallet(self, wallet: str) -> LedgerWallet | None:
        with self._lock:
            state = self._wallets.get(wallet)
            if state is None:
                return None
            return LedgerWallet(
                wallet_address=wallet,
                owner=state.owner,
                balance=state.balance,
                beneficiaries=dict(state.beneficiaries),
            )
