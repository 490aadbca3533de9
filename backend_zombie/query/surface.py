"""
Read-only views over the beneficiary index.

Expiry is evaluated at read time against an explicit `now`; records are never
marked claimed speculatively. Store failures propagate as StoreUnavailable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from backend_zombie.core.addresses import format_balance, normalize_address
from backend_zombie.core.expiry import expires_at, remaining
from backend_zombie.database.models import BeneficiaryRecord
from backend_zombie.database.store import BeneficiaryStore


@dataclass(frozen=True)
class RecordView:
    record: BeneficiaryRecord
    remaining_ms: int
    is_claimable: bool

    @classmethod
    def at(cls, record: BeneficiaryRecord, now_ms: int) -> "RecordView":
        left = remaining(record.last_checkin, record.inactivity_duration, record.inactivity_unit, now_ms)
        return cls(record=record, remaining_ms=left, is_claimable=left <= 0)

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        out["allocationSui"] = format_balance(self.record.allocation)
        out["expiresAt"] = expires_at(
            self.record.last_checkin, self.record.inactivity_duration, self.record.inactivity_unit
        )
        out["remainingMs"] = self.remaining_ms
        out["isClaimable"] = self.is_claimable
        return out


@dataclass(frozen=True)
class ClaimView:
    """Beneficiary view split into what can be claimed now and what is still pending."""

    actionable: list[RecordView] = field(default_factory=list)
    pending: list[RecordView] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionable": [v.to_dict() for v in self.actionable],
            "pending": [v.to_dict() for v in self.pending],
        }


def owner_view(store: BeneficiaryStore, owner: str, *, now_ms: int) -> list[RecordView]:
    """Every active record of `owner`, in creation order, with remaining time."""
    owner = normalize_address(owner, field="ownerAddress")
    return [RecordView.at(r, now_ms) for r in store.list_by_owner(owner)]


def beneficiary_claim_view(store: BeneficiaryStore, beneficiary: str, *, now_ms: int) -> ClaimView:
    beneficiary = normalize_address(beneficiary, field="beneficiaryAddress")
    view = ClaimView()
    for record in store.list_by_beneficiary(beneficiary):
        rv = RecordView.at(record, now_ms)
        (view.actionable if rv.is_claimable else view.pending).append(rv)
    return view
