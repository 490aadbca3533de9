"""
Tests for the in-memory ledger: contract rules, emitted events, confirmations.
"""

from __future__ import annotations

import pytest

from backend_zombie.core.exceptions import LedgerError, LedgerTimeout
from backend_zombie.core.expiry import InactivityUnit
from backend_zombie.ledger.models import AllocationClaimed, BeneficiaryAdded, CheckedIn, TransferExecuted

from tests.conftest import BENE, BENE_2, DAY_MS, HOUR_MS, OWNER, T0


def test_add_emits_event_and_records_beneficiary(ledger, wallet):
    conf = ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    (event,) = conf.events
    assert isinstance(event, BeneficiaryAdded)
    assert event.owner == OWNER
    assert event.timestamp_ms == T0
    assert ledger.confirm(conf.digest) == conf

    snapshot = ledger.get_wallet(wallet)
    entry = snapshot.beneficiary(BENE)
    assert (entry.last_checkin_ms, entry.threshold_ms, entry.allocation) == (T0, DAY_MS, 5)
    assert snapshot.balance == 1_000_000_005


def test_claim_rejected_while_owner_active(ledger, wallet, clock):
    ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    clock.advance(DAY_MS - 1)
    with pytest.raises(LedgerError, match="not yet claimable"):
        ledger.claim(wallet, BENE)
    clock.advance(1)
    conf = ledger.claim(wallet, BENE)
    assert isinstance(conf.events[0], AllocationClaimed)
    assert ledger.payouts(BENE) == 5
    assert ledger.get_wallet(wallet).beneficiary(BENE) is None


def test_check_in_resets_window(ledger, wallet, clock):
    ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    clock.advance(20 * HOUR_MS)
    conf = ledger.check_in(wallet, BENE)
    assert isinstance(conf.events[0], CheckedIn)
    clock.advance(5 * HOUR_MS)
    with pytest.raises(LedgerError):
        ledger.claim(wallet, BENE)


def test_execute_transfer_pays_everyone_and_empties_wallet(ledger, wallet):
    ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    ledger.add_beneficiary(wallet, BENE_2, 7, 2, InactivityUnit.HOURS)
    conf = ledger.execute_transfer(wallet)
    assert isinstance(conf.events[0], TransferExecuted)
    assert ledger.payouts(BENE) == 5
    assert ledger.payouts(BENE_2) == 7
    assert ledger.payouts(OWNER) == 1_000_000_000
    snapshot = ledger.get_wallet(wallet)
    assert snapshot.balance == 0
    assert snapshot.beneficiaries == {}


def test_withdraw_only_unallocated_balance(ledger, wallet):
    ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    with pytest.raises(LedgerError, match="unallocated"):
        ledger.withdraw(wallet, 1_000_000_001)
    ledger.withdraw(wallet, 1_000_000_000)
    assert ledger.get_wallet(wallet).balance == 5


def test_unknown_wallet_and_digest(ledger):
    missing = "0x" + "dd" * 32
    assert ledger.get_wallet(missing) is None
    with pytest.raises(LedgerError):
        ledger.check_in(missing, BENE)
    with pytest.raises(LedgerError):
        ledger.confirm("no-such-digest")


def test_fail_next_leaves_state_untouched(ledger, wallet):
    ledger.fail_next(LedgerTimeout("confirmation wait expired", digest="lost"))
    with pytest.raises(LedgerTimeout):
        ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    assert ledger.get_wallet(wallet).beneficiaries == {}
    assert ledger.transactions() == []
