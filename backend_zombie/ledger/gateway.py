"""
Ledger gateway contract.

The ledger is the final authority on custody, check-ins and claims. Every write
blocks until the transaction is confirmed (or the confirmation wait times out)
and returns a Confirmation carrying the decoded events; the caller mirrors them
into the index only after that. Failures raise LedgerError; a confirmation
timeout raises LedgerTimeout, which means "indeterminate", not "failed".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

from backend_zombie.core.expiry import InactivityUnit
from backend_zombie.ledger.models import Confirmation, LedgerWallet

CLOCK_OBJECT_ID = "0x6"


@dataclass(frozen=True)
class MoveArg:
    """One Move call argument: an object reference or a typed pure value."""

    kind: str  # 'object' | 'pure' | 'split_gas'
    value: Any
    type: str | None = None

    @classmethod
    def object(cls, object_id: str) -> "MoveArg":
        return cls(kind="object", value=object_id)

    @classmethod
    def pure(cls, type_: str, value: Any) -> "MoveArg":
        return cls(kind="pure", value=value, type=type_)

    @classmethod
    def split_gas(cls, amount: int) -> "MoveArg":
        """A coin split from the gas coin, used as the deposit for add_beneficiary."""
        return cls(kind="split_gas", value=amount, type="u64")


@dataclass(frozen=True)
class MoveCall:
    """Unsigned description of a single `zombie` module call."""

    target: str
    arguments: tuple[MoveArg, ...] = ()
    gas_budget: int | None = None


@dataclass(frozen=True)
class SignedTransaction:
    tx_bytes: str
    """Base64 BCS transaction data."""
    signatures: list[str] = field(default_factory=list)


class TransactionSigner(Protocol):
    """Builds and signs a transaction for a Move call (wallet/session management lives outside this service)."""

    def sign(self, call: MoveCall) -> SignedTransaction:
        ...


class LedgerGateway(ABC):
    """Abstract ledger: the operations the index depends on."""

    @abstractmethod
    def add_beneficiary(
        self,
        wallet: str,
        beneficiary: str,
        allocation: int,
        duration: int,
        unit: InactivityUnit,
    ) -> Confirmation:
        ...

    @abstractmethod
    def check_in(self, wallet: str, beneficiary: str) -> Confirmation:
        ...

    @abstractmethod
    def claim(self, wallet: str, beneficiary: str) -> Confirmation:
        """Beneficiary withdrawal; the ledger accepts it only once the inactivity window elapsed."""
        ...

    @abstractmethod
    def execute_transfer(self, wallet: str) -> Confirmation:
        """Full transfer / closure of the wallet."""
        ...

    @abstractmethod
    def revoke_beneficiary(self, wallet: str, beneficiary: str) -> Confirmation:
        ...

    @abstractmethod
    def withdraw(self, wallet: str, amount: int) -> Confirmation:
        """Owner withdrawal of unallocated balance."""
        ...

    @abstractmethod
    def confirm(self, digest: str) -> Confirmation:
        """Wait for a transaction submitted elsewhere (e.g. by the owner's browser wallet)."""
        ...

    @abstractmethod
    def get_wallet(self, wallet: str) -> LedgerWallet | None:
        """Current wallet snapshot, or None if the ledger has no such wallet."""
        ...
