"""
Tests for the expiry clock: unit conversion, claimability boundary, monotonicity.
"""

from __future__ import annotations

import pytest

from backend_zombie.core.exceptions import LedgerDecodeError, ValidationError
from backend_zombie.core.expiry import (
    InactivityUnit,
    expires_at,
    is_claimable,
    parse_unit,
    remaining,
    split_threshold,
    threshold_ms,
    unit_code,
    unit_from_code,
    validate_duration,
)

from tests.conftest import DAY_MS, HOUR_MS, MINUTE_MS, T0


def test_threshold_per_unit():
    assert threshold_ms(1, "minutes") == MINUTE_MS
    assert threshold_ms(2, "hours") == 2 * HOUR_MS
    assert threshold_ms(3, InactivityUnit.DAYS) == 3 * DAY_MS


def test_one_day_boundary_is_exact():
    """Claimable exactly at last_checkin + 1 day, not a millisecond before."""
    assert remaining(T0, 1, "days", T0 + 86_400_000) == 0
    assert is_claimable(T0, 1, "days", T0 + 86_400_000) is True
    assert remaining(T0, 1, "days", T0 + 86_399_999) == 1
    assert is_claimable(T0, 1, "days", T0 + 86_399_999) is False


def test_remaining_is_signed_and_monotone():
    values = [remaining(T0, 2, "hours", T0 + step * 30 * MINUTE_MS) for step in range(8)]
    assert values == sorted(values, reverse=True)
    assert values[-1] < 0
    flags = [is_claimable(T0, 2, "hours", T0 + step * 30 * MINUTE_MS) for step in range(8)]
    # Once claimable, stays claimable
    assert flags == sorted(flags)


def test_expires_at():
    assert expires_at(T0, 12, "hours") == T0 + 12 * HOUR_MS


def test_parse_unit_accepts_case_and_whitespace():
    assert parse_unit(" Days ") is InactivityUnit.DAYS
    assert parse_unit(InactivityUnit.HOURS) is InactivityUnit.HOURS


@pytest.mark.parametrize("bad", ["fortnights", "", "weeks", None, 3])
def test_parse_unit_rejects_unknown(bad):
    with pytest.raises(ValidationError, match="inactivity unit"):
        parse_unit(bad)


@pytest.mark.parametrize("bad", [0, -1, 1.5, "3", True])
def test_validate_duration_rejects(bad):
    with pytest.raises(ValidationError):
        validate_duration(bad)


def test_unit_codes_match_contract():
    assert [unit_code(u) for u in ("minutes", "hours", "days")] == [0, 1, 2]
    assert unit_from_code(2) is InactivityUnit.DAYS
    with pytest.raises(ValidationError):
        unit_from_code(7)


def test_split_threshold_prefers_largest_unit():
    assert split_threshold(2 * DAY_MS) == (2, InactivityUnit.DAYS)
    assert split_threshold(36 * HOUR_MS) == (36, InactivityUnit.HOURS)
    assert split_threshold(90 * MINUTE_MS) == (90, InactivityUnit.MINUTES)


@pytest.mark.parametrize("bad", [0, 30_000, -DAY_MS])
def test_split_threshold_rejects_non_minute_values(bad):
    with pytest.raises(LedgerDecodeError):
        split_threshold(bad)
