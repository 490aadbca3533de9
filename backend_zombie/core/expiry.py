"""
Expiry clock — inactivity windows in integer milliseconds.

Pure functions of (last check-in, duration, unit, now). Nothing here reads the
wall clock except now_ms(); callers pass `now` explicitly so every predicate is
deterministic and testable.

A record is claimable iff now >= last_checkin + duration * unit_ms.
"""

from __future__ import annotations

import time
from enum import Enum

from backend_zombie.core.exceptions import LedgerDecodeError, ValidationError


class InactivityUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


UNIT_MS: dict[InactivityUnit, int] = {
    InactivityUnit.MINUTES: 60_000,
    InactivityUnit.HOURS: 3_600_000,
    InactivityUnit.DAYS: 86_400_000,
}

# u8 time_unit argument of zombie::add_beneficiary
UNIT_CODES: dict[InactivityUnit, int] = {
    InactivityUnit.MINUTES: 0,
    InactivityUnit.HOURS: 1,
    InactivityUnit.DAYS: 2,
}


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return time.time_ns() // 1_000_000


def parse_unit(value: InactivityUnit | str) -> InactivityUnit:
    """Return the unit for `value`; anything outside minutes/hours/days is a ValidationError."""
    if isinstance(value, InactivityUnit):
        return value
    if isinstance(value, str):
        try:
            return InactivityUnit(value.strip().lower())
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid inactivity unit {value!r}: expected one of minutes, hours, days",
        field="inactivity_unit",
    )


def validate_duration(duration: object) -> int:
    """Duration must be a positive integer (bools rejected)."""
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("Inactivity duration must be an integer", field="inactivity_duration")
    if duration <= 0:
        raise ValidationError("Inactivity duration must be > 0", field="inactivity_duration")
    return duration


def threshold_ms(duration: int, unit: InactivityUnit | str) -> int:
    """Length of the inactivity window in ms."""
    return validate_duration(duration) * UNIT_MS[parse_unit(unit)]


def expires_at(last_checkin: int, duration: int, unit: InactivityUnit | str) -> int:
    """Instant (ms) at which the record becomes claimable."""
    return last_checkin + threshold_ms(duration, unit)


def remaining(last_checkin: int, duration: int, unit: InactivityUnit | str, now: int) -> int:
    """Signed ms until claimable; <= 0 means the window has elapsed."""
    return expires_at(last_checkin, duration, unit) - now


def is_claimable(last_checkin: int, duration: int, unit: InactivityUnit | str, now: int) -> bool:
    return remaining(last_checkin, duration, unit, now) <= 0


def unit_code(unit: InactivityUnit | str) -> int:
    return UNIT_CODES[parse_unit(unit)]


def unit_from_code(code: int) -> InactivityUnit:
    for unit, value in UNIT_CODES.items():
        if value == code:
            return unit
    raise ValidationError(f"Unknown inactivity unit code {code!r}", field="inactivity_unit")


def split_threshold(threshold: int) -> tuple[int, InactivityUnit]:
    """
    Express a ledger threshold (ms) as (duration, unit) using the largest unit
    that divides it evenly. The ledger only stores the product, so a record
    re-derived from it may show 48 hours as 2 days.
    """
    if threshold <= 0:
        raise LedgerDecodeError(f"Ledger threshold must be positive, got {threshold}")
    for unit in (InactivityUnit.DAYS, InactivityUnit.HOURS, InactivityUnit.MINUTES):
        factor = UNIT_MS[unit]
        if threshold % factor == 0:
            return threshold // factor, unit
    raise LedgerDecodeError(f"Ledger threshold {threshold}ms is not a whole number of minutes")
