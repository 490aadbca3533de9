"""
Tests for the reconciliation engine: mirroring, ordering, self-healing, retries.
"""

from __future__ import annotations

import threading

import pytest

from backend_zombie.core.exceptions import DuplicateRecord, StoreUnavailable
from backend_zombie.core.expiry import InactivityUnit
from backend_zombie.database.models import EventId, NewBeneficiary
from backend_zombie.ledger.models import CheckedIn
from backend_zombie.query import beneficiary_claim_view
from backend_zombie.reconciliation import ReconcileOutcome

from tests.conftest import BENE, BENE_2, DAY_MS, HOUR_MS, OWNER, OWNER_2, T0


def _add(ledger, engine, wallet, bene=BENE, allocation=5, duration=1, unit=InactivityUnit.DAYS):
    conf = ledger.add_beneficiary(wallet, bene, allocation, duration, unit)
    return engine.apply_confirmation(conf)[0]


def test_added_event_creates_record_at_ledger_time(ledger, engine, store, wallet):
    result = _add(ledger, engine, wallet)
    assert result.outcome is ReconcileOutcome.APPLIED
    record = store.get(OWNER, BENE)
    assert record.wallet_address == wallet
    assert record.last_checkin == T0
    assert record.allocation == 5


def test_redelivered_event_is_a_no_op(ledger, engine, store, wallet, clock):
    conf = ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    engine.apply_confirmation(conf)
    clock.advance(HOUR_MS)
    ci = ledger.check_in(wallet, BENE)
    assert engine.apply_confirmation(ci)[0].outcome is ReconcileOutcome.APPLIED
    assert engine.apply_confirmation(ci)[0].outcome is ReconcileOutcome.DUPLICATE
    assert engine.apply_confirmation(conf)[0].outcome is ReconcileOutcome.DUPLICATE
    assert len(store.list_by_owner(OWNER)) == 1
    assert store.get(OWNER, BENE).last_checkin == T0 + HOUR_MS


def test_check_in_is_idempotent_without_event_identity(ledger, engine, store, wallet):
    _add(ledger, engine, wallet)
    first = engine.on_check_in(OWNER, BENE, wallet, confirmed_at_ms=T0 + 5)
    second = engine.on_check_in(OWNER, BENE, wallet, confirmed_at_ms=T0 + 5)
    assert first.record.last_checkin == second.record.last_checkin == T0 + 5


def test_no_resurrection_when_check_in_arrives_after_transfer(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    clock.advance(HOUR_MS)
    delayed_check_in = ledger.check_in(wallet, BENE)
    clock.advance(HOUR_MS)
    transfer = ledger.execute_transfer(wallet)

    engine.apply_confirmation(transfer)
    result = engine.apply_confirmation(delayed_check_in)[0]

    assert result.outcome is ReconcileOutcome.DISCARDED
    assert store.list_by_wallet(wallet) == []


def test_no_resurrection_when_check_in_arrives_first(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    clock.advance(HOUR_MS)
    check_in = ledger.check_in(wallet, BENE)
    clock.advance(HOUR_MS)
    transfer = ledger.execute_transfer(wallet)

    engine.apply_confirmation(check_in)
    result = engine.apply_confirmation(transfer)[0]

    assert result.removed == 1
    assert store.list_by_wallet(wallet) == []


def test_check_in_for_unknown_record_after_closure_is_discarded(ledger, engine, store, wallet, clock):
    """A check-in newer than the tombstone still cannot resurrect: the ledger no longer has it."""
    _add(ledger, engine, wallet)
    engine.apply_confirmation(ledger.execute_transfer(wallet))
    late = CheckedIn(
        event_id=EventId("late", 0), wallet=wallet, owner=OWNER, beneficiary=BENE, timestamp_ms=T0 + DAY_MS
    )
    clock.advance(2 * DAY_MS)
    assert engine.apply(late).outcome is ReconcileOutcome.DISCARDED
    assert store.list_by_wallet(wallet) == []
    # Discarded events are remembered too
    assert engine.apply(late).outcome is ReconcileOutcome.DUPLICATE


def test_wallet_reused_after_closure(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    engine.apply_confirmation(ledger.execute_transfer(wallet))
    clock.advance(HOUR_MS)
    assert _add(ledger, engine, wallet, bene=BENE_2).outcome is ReconcileOutcome.APPLIED
    assert [r.bene_address for r in store.list_by_wallet(wallet)] == [BENE_2]


def test_missing_record_is_healed_from_ledger(ledger, engine, store, wallet, clock):
    # Ledger knows the beneficiary; the index lost the add
    ledger.add_beneficiary(wallet, BENE, 5, 36, InactivityUnit.HOURS)
    clock.advance(HOUR_MS)
    conf = ledger.check_in(wallet, BENE)

    result = engine.apply_confirmation(conf)[0]

    assert result.outcome is ReconcileOutcome.HEALED
    record = store.get(OWNER, BENE)
    assert (record.inactivity_duration, record.inactivity_unit) == (36, InactivityUnit.HOURS)
    assert record.last_checkin == T0 + HOUR_MS
    assert record.allocation == 5


def test_claim_removes_record_and_missing_claim_is_discarded(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    clock.advance(DAY_MS)
    conf = ledger.claim(wallet, BENE)
    assert engine.apply_confirmation(conf)[0].outcome is ReconcileOutcome.APPLIED
    assert store.get(OWNER, BENE) is None
    assert engine.on_claim(BENE, wallet).outcome is ReconcileOutcome.DISCARDED


def test_revocation_and_withdrawal(ledger, engine, store, wallet):
    _add(ledger, engine, wallet)
    _add(ledger, engine, wallet, bene=BENE_2)
    engine.apply_confirmation(ledger.revoke_beneficiary(wallet, BENE))
    assert [r.bene_address for r in store.list_by_owner(OWNER)] == [BENE_2]

    result = engine.apply_confirmation(ledger.withdraw(wallet, 100))[0]
    assert result.outcome is ReconcileOutcome.APPLIED
    assert len(store.list_by_owner(OWNER)) == 1


def test_add_for_pair_registered_under_another_wallet_is_rejected(ledger, engine, wallet):
    _add(ledger, engine, wallet)
    other_wallet = ledger.create_wallet(OWNER)
    conf = ledger.add_beneficiary(other_wallet, BENE, 5, 1, InactivityUnit.DAYS)
    with pytest.raises(DuplicateRecord):
        engine.apply_confirmation(conf)


def test_store_outage_is_retried_with_backoff(ledger, engine, store, wallet, sleeps, monkeypatch):
    _add(ledger, engine, wallet)
    real_touch = store.touch
    failures = {"left": 2}

    def flaky_touch(*args, **kwargs):
        if failures["left"]:
            failures["left"] -= 1
            raise StoreUnavailable("database is locked")
        return real_touch(*args, **kwargs)

    monkeypatch.setattr(store, "touch", flaky_touch)
    result = engine.on_check_in(OWNER, BENE, wallet, confirmed_at_ms=T0 + 10)
    assert result.outcome is ReconcileOutcome.APPLIED
    assert sleeps == [0.1, 0.2]


def test_store_outage_exhausted_is_recoverable(ledger, engine, store, wallet, sleeps, monkeypatch):
    _add(ledger, engine, wallet)

    def down(*args, **kwargs):
        raise StoreUnavailable("connection refused")

    monkeypatch.setattr(store, "touch", down)
    with pytest.raises(StoreUnavailable) as info:
        engine.on_check_in(OWNER, BENE, wallet, confirmed_at_ms=T0 + 10)
    assert info.value.recoverable is True
    assert info.value.http_status == 503
    assert len(sleeps) == 2


def test_resync_rebuilds_wallet_from_ledger(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    # Stale record the ledger never had
    store.create(
        NewBeneficiary.build(
            owner_address=OWNER,
            bene_address=OWNER_2,
            wallet_address=wallet,
            allocation=1,
            inactivity_duration=1,
            inactivity_unit="days",
        ),
        now_ms=T0,
    )
    # Ledger-only beneficiary and a ledger-side check-in the index missed
    ledger.add_beneficiary(wallet, BENE_2, 7, 2, InactivityUnit.DAYS)
    clock.advance(HOUR_MS)
    ledger.check_in(wallet, BENE)

    report = engine.resync_wallet(wallet)

    assert (report.created, report.removed, report.refreshed) == (1, 1, 1)
    by_bene = {r.bene_address: r for r in store.list_by_wallet(wallet)}
    assert set(by_bene) == {BENE, BENE_2}
    assert by_bene[BENE].last_checkin == T0 + HOUR_MS
    assert by_bene[BENE_2].inactivity_duration == 2


def test_resync_of_wallet_unknown_to_ledger_clears_it(engine, store, clock):
    ghost = "0x" + "99" * 32
    store.create(
        NewBeneficiary.build(
            owner_address=OWNER,
            bene_address=BENE,
            wallet_address=ghost,
            allocation=1,
            inactivity_duration=1,
            inactivity_unit="days",
        ),
        now_ms=T0,
    )
    report = engine.resync_wallet(ghost)
    assert report.ledger_missing is True
    assert report.removed == 1
    assert store.list_by_wallet(ghost) == []


def test_concurrent_check_ins_cannot_outlive_transfer(ledger, engine, store, wallet, clock):
    _add(ledger, engine, wallet)
    check_ins = []
    for _ in range(8):
        clock.advance(1)
        check_ins.append(ledger.check_in(wallet, BENE))
    clock.advance(1)
    transfer = ledger.execute_transfer(wallet)

    threads = [threading.Thread(target=engine.apply_confirmation, args=(c,)) for c in check_ins]
    threads.append(threading.Thread(target=engine.apply_confirmation, args=(transfer,)))
    for t in reversed(threads):
        t.start()
    for t in threads:
        t.join()

    assert store.list_by_wallet(wallet) == []


@pytest.fixture
def pair_in_two_wallets(ledger, engine, wallet):
    """OWNER holds BENE in `wallet` (indexed) and again in a second wallet known only to the ledger."""
    _add(ledger, engine, wallet)
    other = ledger.create_wallet(OWNER)
    ledger.add_beneficiary(other, BENE, 9, 1, InactivityUnit.DAYS)
    return other


def test_revocation_on_another_wallet_keeps_record(ledger, engine, store, wallet, pair_in_two_wallets):
    result = engine.apply_confirmation(ledger.revoke_beneficiary(pair_in_two_wallets, BENE))[0]
    assert result.outcome is ReconcileOutcome.DISCARDED
    assert result.removed == 0
    record = store.get(OWNER, BENE)
    assert record is not None
    assert record.wallet_address == wallet
    assert ledger.get_wallet(wallet).beneficiary(BENE) is not None


def test_check_in_on_another_wallet_does_not_reset_window(ledger, engine, store, wallet, clock, pair_in_two_wallets):
    clock.advance(25 * HOUR_MS)
    result = engine.apply_confirmation(ledger.check_in(pair_in_two_wallets, BENE))[0]

    assert result.outcome is ReconcileOutcome.DISCARDED
    assert store.get(OWNER, BENE).last_checkin == T0
    view = beneficiary_claim_view(store, BENE, now_ms=clock())
    assert len(view.actionable) == 1
    assert view.pending == []


def test_claim_on_another_wallet_keeps_record(ledger, engine, store, wallet, clock, pair_in_two_wallets):
    clock.advance(DAY_MS)
    result = engine.apply_confirmation(ledger.claim(pair_in_two_wallets, BENE))[0]
    assert result.outcome is ReconcileOutcome.DISCARDED
    assert store.get(OWNER, BENE).wallet_address == wallet
