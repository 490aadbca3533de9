"""
Ledger address and amount helpers.

Addresses are 32-byte values rendered as 0x-prefixed lowercase hex. Short forms
such as 0x6 (the clock object) are accepted and left-padded.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from backend_zombie.core.exceptions import ValidationError

ADDRESS_HEX_LEN = 64
_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{1,64}$")

MIST_PER_SUI = 1_000_000_000


def normalize_address(value: object, *, field: str = "address") -> str:
    """Return the canonical 0x + 64 hex form; raise ValidationError if malformed or empty."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be non-empty", field=field)
    addr = value.strip().lower()
    if not addr.startswith("0x"):
        addr = "0x" + addr
    if not _ADDRESS_RE.match(addr):
        raise ValidationError(f"Invalid ledger address for {field}: {value!r}", field=field)
    return "0x" + addr[2:].rjust(ADDRESS_HEX_LEN, "0")


def address_from_bytes(raw: Iterable[int]) -> str:
    """32 raw bytes (list of ints or bytes) -> canonical address."""
    try:
        data = bytes(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Address bytes must be integers in 0..255: {e}", field="address") from e
    if len(data) != 32:
        raise ValidationError(f"Address must be 32 bytes, got {len(data)}", field="address")
    return "0x" + data.hex()


def mist_to_sui(mist: int) -> Decimal:
    return Decimal(mist) / Decimal(MIST_PER_SUI)


def sui_to_mist(amount: Decimal | str | int) -> int:
    """Human SUI amount -> integer MIST, rounding half up."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount {amount!r}", field="allocation") from e
    if not value.is_finite():
        raise ValidationError(f"Invalid amount {amount!r}", field="allocation")
    return int((value * MIST_PER_SUI).to_integral_value(rounding=ROUND_HALF_UP))


def format_balance(mist: int) -> str:
    """MIST -> '1,234.50' style SUI string with two decimals."""
    value = mist_to_sui(mist).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{value:,.2f}"
