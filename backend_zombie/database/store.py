"""
Beneficiary record store: abstract contract and SQLAlchemy implementation.

SQLite by default; PostgreSQL via a postgresql:// URL. All access goes through
BeneficiaryStore so the engine and query surface never see SQL.

Guarantees:
- create() rejects invariant violations (InvalidRecord) and an existing
  (owner, beneficiary) pair (DuplicateRecord).
- touch()/remove() raise NotFound when no active record matches.
- remove_all_for_wallet() deletes every record of a wallet and writes the
  closure tombstone in the same transaction.
- Any mutation may carry the ledger EventId; it is recorded in the same
  transaction, and replaying it raises EventAlreadyApplied with no effect.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from backend_zombie.core.exceptions import (
    DuplicateRecord,
    EventAlreadyApplied,
    InvalidRecord,
    NotFound,
    StoreUnavailable,
)
from backend_zombie.core.expiry import now_ms as wall_clock_ms
from backend_zombie.database.connection import (
    create_store_engine,
    make_session_factory,
    redact_url,
    session_scope,
)
from backend_zombie.database.models import BeneficiaryRecord, EventId, NewBeneficiary
from backend_zombie.database.tables import AppliedEvent, Base, BeneficiaryRow, ClosedWallet
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Abstract contract
# -----------------------------------------------------------------------------


class BeneficiaryStore(ABC):
    """Keyed index of beneficiary records; the persistence mechanism is swappable."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def create(self, new: NewBeneficiary, *, now_ms: int, event_id: EventId | None = None) -> BeneficiaryRecord:
        """Insert a record; last_checkin defaults to now_ms and may not be in the future."""
        ...

    @abstractmethod
    def get(self, owner: str, bene: str) -> BeneficiaryRecord | None:
        ...

    @abstractmethod
    def find_by_wallet_beneficiary(self, wallet: str, bene: str) -> BeneficiaryRecord | None:
        ...

    @abstractmethod
    def list_by_owner(self, owner: str) -> list[BeneficiaryRecord]:
        """All active records for an owner, in creation order."""
        ...

    @abstractmethod
    def list_by_beneficiary(self, bene: str) -> list[BeneficiaryRecord]:
        """Active records where `bene` is the beneficiary and an inactivity window is set."""
        ...

    @abstractmethod
    def list_by_wallet(self, wallet: str) -> list[BeneficiaryRecord]:
        ...

    @abstractmethod
    def touch(
        self,
        owner: str,
        bene: str,
        *,
        at_ms: int,
        wallet: str | None = None,
        event_id: EventId | None = None,
    ) -> BeneficiaryRecord:
        """
        Record a check-in at `at_ms`. Never moves last_checkin backwards.
        With `wallet`, only a record held in that wallet matches.
        """
        ...

    @abstractmethod
    def remove(
        self,
        owner: str,
        bene: str,
        *,
        wallet: str | None = None,
        event_id: EventId | None = None,
    ) -> BeneficiaryRecord:
        """Delete exactly one record and return it. With `wallet`, only a record held in that wallet matches."""
        ...

    @abstractmethod
    def remove_all_for_wallet(
        self,
        owner: str,
        wallet: str,
        *,
        closed_at_ms: int | None = None,
        event_id: EventId | None = None,
    ) -> int:
        """Delete every record of `wallet` owned by `owner`. Returns the count deleted."""
        ...

    @abstractmethod
    def wallet_closed_at(self, wallet: str) -> int | None:
        """Ledger time (ms) of the latest confirmed closure of `wallet`, or None."""
        ...

    @abstractmethod
    def is_event_applied(self, event_id: EventId) -> bool:
        ...

    @abstractmethod
    def mark_event_applied(self, event_id: EventId, *, wallet: str | None = None) -> None:
        """Record an event that was handled without a mutation (e.g. discarded as stale)."""
        ...


# -----------------------------------------------------------------------------
# SQLAlchemy implementation
# -----------------------------------------------------------------------------


class SQLAlchemyBeneficiaryStore(BeneficiaryStore):
    """SQLAlchemy store; one session per operation, engine owned by the instance."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._engine = create_store_engine(url)
        self._factory = make_session_factory(self._engine)

    @property
    def url(self) -> str:
        return self._url

    def dispose(self) -> None:
        self._engine.dispose()

    def ensure_schema(self) -> None:
        try:
            Base.metadata.create_all(bind=self._engine)
        except OperationalError as e:
            logger.exception("store_schema_failed", url=redact_url(self._url), error=str(e))
            raise StoreUnavailable(f"Could not create store schema: {e.orig or e}") from e
        logger.info("store_schema_ready", url=redact_url(self._url))

    # --- helpers ---

    @staticmethod
    def _record_event(session: Session, event_id: EventId | None, wallet: str | None) -> None:
        if event_id is None:
            return
        if session.get(AppliedEvent, (event_id.digest, event_id.seq)) is not None:
            raise EventAlreadyApplied(f"Event {event_id} already applied", event_id=str(event_id))
        session.add(
            AppliedEvent(
                digest=event_id.digest,
                event_seq=event_id.seq,
                wallet_address=wallet,
                applied_at=wall_clock_ms(),
            )
        )

    @staticmethod
    def _row(session: Session, owner: str, bene: str, wallet: str | None = None) -> BeneficiaryRow | None:
        query = session.query(BeneficiaryRow).filter(
            BeneficiaryRow.owner_address == owner, BeneficiaryRow.bene_address == bene
        )
        if wallet is not None:
            query = query.filter(BeneficiaryRow.wallet_address == wallet)
        return query.first()

    # --- mutations ---

    def create(self, new: NewBeneficiary, *, now_ms: int, event_id: EventId | None = None) -> BeneficiaryRecord:
        last_checkin = new.last_checkin if new.last_checkin is not None else now_ms
        if last_checkin > now_ms:
            raise InvalidRecord("Last check-in cannot be in the future", field="lastCheckin")
        try:
            with session_scope(self._factory) as session:
                self._record_event(session, event_id, new.wallet_address)
                if self._row(session, new.owner_address, new.bene_address) is not None:
                    raise DuplicateRecord(
                        "Beneficiary already registered for this owner",
                        owner=new.owner_address,
                        beneficiary=new.bene_address,
                    )
                row = BeneficiaryRow(
                    owner_address=new.owner_address,
                    bene_address=new.bene_address,
                    wallet_address=new.wallet_address,
                    allocation=new.allocation,
                    inactivity_duration=new.inactivity_duration,
                    inactivity_unit=new.inactivity_unit.value,
                    last_checkin=last_checkin,
                    created_at=now_ms,
                )
                session.add(row)
                session.flush()
                record = row.to_record()
        except IntegrityError as e:
            # Lost a race on the (owner, bene) unique constraint or the event key
            raise DuplicateRecord(
                "Beneficiary already registered for this owner",
                owner=new.owner_address,
                beneficiary=new.bene_address,
            ) from e
        logger.info(
            "beneficiary_record_created",
            owner=record.owner_address,
            beneficiary=record.bene_address,
            wallet=record.wallet_address,
            record_id=record.id,
        )
        return record

    def touch(
        self,
        owner: str,
        bene: str,
        *,
        at_ms: int,
        wallet: str | None = None,
        event_id: EventId | None = None,
    ) -> BeneficiaryRecord:
        with session_scope(self._factory) as session:
            row = self._row(session, owner, bene, wallet)
            if row is None:
                raise NotFound("Beneficiary not found", owner=owner, beneficiary=bene, wallet=wallet)
            self._record_event(session, event_id, row.wallet_address)
            if at_ms > row.last_checkin:
                row.last_checkin = at_ms
            session.flush()
            record = row.to_record()
        logger.debug("beneficiary_record_touched", owner=owner, beneficiary=bene, last_checkin=record.last_checkin)
        return record

    def remove(
        self,
        owner: str,
        bene: str,
        *,
        wallet: str | None = None,
        event_id: EventId | None = None,
    ) -> BeneficiaryRecord:
        with session_scope(self._factory) as session:
            row = self._row(session, owner, bene, wallet)
            if row is None:
                raise NotFound("Beneficiary not found", owner=owner, beneficiary=bene, wallet=wallet)
            self._record_event(session, event_id, row.wallet_address)
            record = row.to_record()
            session.delete(row)
        logger.info("beneficiary_record_removed", owner=owner, beneficiary=bene, wallet=record.wallet_address)
        return record

    def remove_all_for_wallet(
        self,
        owner: str,
        wallet: str,
        *,
        closed_at_ms: int | None = None,
        event_id: EventId | None = None,
    ) -> int:
        with session_scope(self._factory) as session:
            self._record_event(session, event_id, wallet)
            deleted = (
                session.query(BeneficiaryRow)
                .filter(BeneficiaryRow.owner_address == owner, BeneficiaryRow.wallet_address == wallet)
                .delete(synchronize_session=False)
            )
            if closed_at_ms is not None:
                tomb = session.get(ClosedWallet, wallet)
                if tomb is None:
                    session.add(ClosedWallet(wallet_address=wallet, owner_address=owner, closed_at=closed_at_ms))
                elif closed_at_ms > tomb.closed_at:
                    tomb.closed_at = closed_at_ms
        logger.info("wallet_records_removed", owner=owner, wallet=wallet, deleted=deleted, closed_at=closed_at_ms)
        return deleted

    def mark_event_applied(self, event_id: EventId, *, wallet: str | None = None) -> None:
        try:
            with session_scope(self._factory) as session:
                self._record_event(session, event_id, wallet)
        except IntegrityError as e:
            raise EventAlreadyApplied(f"Event {event_id} already applied", event_id=str(event_id)) from e

    # --- reads ---

    def get(self, owner: str, bene: str) -> BeneficiaryRecord | None:
        with session_scope(self._factory) as session:
            row = self._row(session, owner, bene)
            return row.to_record() if row else None

    def find_by_wallet_beneficiary(self, wallet: str, bene: str) -> BeneficiaryRecord | None:
        with session_scope(self._factory) as session:
            row = (
                session.query(BeneficiaryRow)
                .filter(BeneficiaryRow.wallet_address == wallet, BeneficiaryRow.bene_address == bene)
                .first()
            )
            return row.to_record() if row else None

    def list_by_owner(self, owner: str) -> list[BeneficiaryRecord]:
        with session_scope(self._factory) as session:
            rows = (
                session.query(BeneficiaryRow)
                .filter(BeneficiaryRow.owner_address == owner)
                .order_by(BeneficiaryRow.created_at, BeneficiaryRow.id)
                .all()
            )
            return [r.to_record() for r in rows]

    def list_by_beneficiary(self, bene: str) -> list[BeneficiaryRecord]:
        with session_scope(self._factory) as session:
            rows = (
                session.query(BeneficiaryRow)
                .filter(
                    BeneficiaryRow.bene_address == bene,
                    BeneficiaryRow.inactivity_duration.isnot(None),
                    BeneficiaryRow.inactivity_unit.isnot(None),
                )
                .order_by(BeneficiaryRow.created_at, BeneficiaryRow.id)
                .all()
            )
            return [r.to_record() for r in rows]

    def list_by_wallet(self, wallet: str) -> list[BeneficiaryRecord]:
        with session_scope(self._factory) as session:
            rows = (
                session.query(BeneficiaryRow)
                .filter(BeneficiaryRow.wallet_address == wallet)
                .order_by(BeneficiaryRow.created_at, BeneficiaryRow.id)
                .all()
            )
            return [r.to_record() for r in rows]

    def wallet_closed_at(self, wallet: str) -> int | None:
        with session_scope(self._factory) as session:
            tomb = session.get(ClosedWallet, wallet)
            return tomb.closed_at if tomb else None

    def is_event_applied(self, event_id: EventId) -> bool:
        with session_scope(self._factory) as session:
            return session.get(AppliedEvent, (event_id.digest, event_id.seq)) is not None


def get_store(url: str) -> SQLAlchemyBeneficiaryStore:
    """
    Return a ready store for `url` (schema ensured).

    url: SQLAlchemy URL, e.g. "sqlite:///zombie_index.db" or "postgresql://...".
    """
    store = SQLAlchemyBeneficiaryStore(url)
    store.ensure_schema()
    return store
