"""
Typed ledger payloads produced by the decoder.

Ledger events are a closed set of frozen dataclasses (a tagged variant); the
reconciliation engine dispatches on the concrete type. Amounts are u64 base
units (MIST); timestamps are ledger clock milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from backend_zombie.core.expiry import InactivityUnit
from backend_zombie.database.models import EventId


@dataclass(frozen=True)
class BeneficiaryAdded:
    event_id: EventId
    wallet: str
    owner: str
    beneficiary: str
    allocation: int
    duration: int
    unit: InactivityUnit
    timestamp_ms: int


@dataclass(frozen=True)
class CheckedIn:
    event_id: EventId
    wallet: str
    owner: str
    beneficiary: str
    timestamp_ms: int


@dataclass(frozen=True)
class AllocationClaimed:
    event_id: EventId
    wallet: str
    owner: str
    beneficiary: str
    amount: int
    timestamp_ms: int


@dataclass(frozen=True)
class TransferExecuted:
    event_id: EventId
    wallet: str
    owner: str
    timestamp_ms: int


@dataclass(frozen=True)
class BeneficiaryRemoved:
    event_id: EventId
    wallet: str
    owner: str
    beneficiary: str
    timestamp_ms: int


@dataclass(frozen=True)
class Withdrawn:
    event_id: EventId
    wallet: str
    owner: str
    amount: int
    timestamp_ms: int


LedgerEvent = Union[
    BeneficiaryAdded,
    CheckedIn,
    AllocationClaimed,
    TransferExecuted,
    BeneficiaryRemoved,
    Withdrawn,
]


@dataclass(frozen=True)
class Confirmation:
    """A ledger-confirmed transaction and the zombie events it emitted."""

    digest: str
    wallet_address: str | None
    beneficiary_address: str | None
    timestamp_ms: int
    events: tuple[LedgerEvent, ...] = ()


@dataclass(frozen=True)
class LedgerBeneficiary:
    """On-chain BeneficiaryData entry of a wallet."""

    address: str
    last_checkin_ms: int
    threshold_ms: int
    allocation: int


@dataclass(frozen=True)
class LedgerWallet:
    """Snapshot of a custodial wallet object."""

    wallet_address: str
    owner: str
    balance: int
    beneficiaries: dict[str, LedgerBeneficiary] = field(default_factory=dict)

    def beneficiary(self, address: str) -> LedgerBeneficiary | None:
        return self.beneficiaries.get(address)
