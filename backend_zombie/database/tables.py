"""
SQLAlchemy models for the beneficiary index.

- beneficiaries: one row per active (owner, beneficiary) pair; secondary indexes
  on bene_address (claim lookups) and wallet_address (bulk delete on transfer).
- closed_wallets: closure tombstones written with the bulk delete, so stale
  events arriving after a transfer can be recognized.
- applied_events: ledger event identities already mirrored (idempotent replay).
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

from backend_zombie.core.expiry import InactivityUnit
from backend_zombie.database.models import BeneficiaryRecord

Base = declarative_base()

ADDRESS_LEN = 66


class BeneficiaryRow(Base):
    __tablename__ = "beneficiaries"
    __table_args__ = (UniqueConstraint("owner_address", "bene_address", name="uq_beneficiaries_owner_bene"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    bene_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    allocation = Column(BigInteger, nullable=False)  # MIST
    inactivity_duration = Column(Integer, nullable=False)
    inactivity_unit = Column(String(16), nullable=False)
    last_checkin = Column(BigInteger, nullable=False)  # Unix ms
    created_at = Column(BigInteger, nullable=False)  # Unix ms

    def to_record(self) -> BeneficiaryRecord:
        return BeneficiaryRecord(
            id=self.id,
            owner_address=self.owner_address,
            bene_address=self.bene_address,
            wallet_address=self.wallet_address,
            allocation=self.allocation,
            inactivity_duration=self.inactivity_duration,
            inactivity_unit=InactivityUnit(self.inactivity_unit),
            last_checkin=self.last_checkin,
            created_at=self.created_at,
        )


class ClosedWallet(Base):
    """Tombstone: the ledger confirmed a full transfer / closure at closed_at (ms)."""

    __tablename__ = "closed_wallets"

    wallet_address = Column(String(ADDRESS_LEN), primary_key=True)
    owner_address = Column(String(ADDRESS_LEN), nullable=False)
    closed_at = Column(BigInteger, nullable=False)


class AppliedEvent(Base):
    """Ledger events already mirrored. Uniqueness: (digest, event_seq)."""

    __tablename__ = "applied_events"

    digest = Column(String(128), primary_key=True)
    event_seq = Column(Integer, primary_key=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=True, index=True)
    applied_at = Column(BigInteger, nullable=False)
