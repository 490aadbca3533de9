"""
Domain models for the beneficiary index.

Plain dataclasses used by the store, engine and query surface; no ORM coupling
so backends stay swappable. Timestamps are Unix milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend_zombie.core.addresses import normalize_address
from backend_zombie.core.exceptions import InvalidRecord
from backend_zombie.core.expiry import InactivityUnit, parse_unit, validate_duration


@dataclass(frozen=True)
class EventId:
    """Ledger identity of a confirmed event: transaction digest + event sequence."""

    digest: str
    seq: int = 0

    def __str__(self) -> str:
        return f"{self.digest}:{self.seq}"


@dataclass(frozen=True)
class NewBeneficiary:
    """Validated input for Store.create. Build with NewBeneficiary.build() to enforce invariants."""

    owner_address: str
    bene_address: str
    wallet_address: str
    allocation: int
    """Ledger-native base units (MIST)."""
    inactivity_duration: int
    inactivity_unit: InactivityUnit
    last_checkin: int | None = None
    """Optional explicit check-in time (ms); defaults to creation time."""

    @classmethod
    def build(
        cls,
        *,
        owner_address: object,
        bene_address: object,
        wallet_address: object,
        allocation: object,
        inactivity_duration: object,
        inactivity_unit: object,
        last_checkin: int | None = None,
    ) -> "NewBeneficiary":
        if isinstance(allocation, bool) or not isinstance(allocation, int):
            raise InvalidRecord("Allocation must be an integer amount of base units", field="allocation")
        if allocation <= 0:
            raise InvalidRecord("Allocation must be > 0", field="allocation")
        return cls(
            owner_address=normalize_address(owner_address, field="ownerAddress"),
            bene_address=normalize_address(bene_address, field="beneAddress"),
            wallet_address=normalize_address(wallet_address, field="walletAddress"),
            allocation=allocation,
            inactivity_duration=validate_duration(inactivity_duration),
            inactivity_unit=parse_unit(inactivity_unit),  # type: ignore[arg-type]
            last_checkin=last_checkin,
        )


@dataclass(frozen=True)
class BeneficiaryRecord:
    """Stored off-chain mirror of one owner -> beneficiary allocation."""

    id: int
    owner_address: str
    bene_address: str
    wallet_address: str
    allocation: int
    inactivity_duration: int
    inactivity_unit: InactivityUnit
    last_checkin: int
    """Unix ms of the last ledger-confirmed check-in."""
    created_at: int
    """Unix ms; immutable once set."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerAddress": self.owner_address,
            "beneAddress": self.bene_address,
            "walletAddress": self.wallet_address,
            "allocation": self.allocation,
            "inactivityDuration": self.inactivity_duration,
            "inactivityUnit": self.inactivity_unit.value,
            "lastCheckin": self.last_checkin,
            "createdAt": self.created_at,
        }
