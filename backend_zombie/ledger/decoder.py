"""
Ledger payload decoder — raw JSON-RPC shapes to typed models.

Validated once at the boundary: every field is checked and converted here, so
the engine only ever sees LedgerEvent / LedgerWallet instances. Event type tags
look like `<package>::zombie::CheckedIn`; events from other modules in the same
transaction are skipped. BeneficiaryData can arrive as JSON fields or as 24 BCS
bytes (three little-endian u64: last_checkin, threshold, allocation).
"""

from __future__ import annotations

import base64
import struct
from typing import Any, Callable

from backend_zombie.core.addresses import address_from_bytes, normalize_address
from backend_zombie.core.exceptions import LedgerDecodeError, ValidationError
from backend_zombie.core.expiry import unit_from_code
from backend_zombie.database.models import EventId
from backend_zombie.ledger.models import (
    AllocationClaimed,
    BeneficiaryAdded,
    BeneficiaryRemoved,
    CheckedIn,
    Confirmation,
    LedgerBeneficiary,
    LedgerEvent,
    LedgerWallet,
    TransferExecuted,
    Withdrawn,
)
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)

ZOMBIE_MODULE = "zombie"
BENEFICIARY_DATA_STRUCT = "BeneficiaryData"
BENEFICIARY_DATA_BCS_LEN = 24


# -----------------------------------------------------------------------------
# Field helpers
# -----------------------------------------------------------------------------


def _require(obj: dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(obj, dict) or key not in obj or obj[key] is None:
        raise LedgerDecodeError(f"{where}: missing field {key!r}")
    return obj[key]


def _u64(value: Any, where: str) -> int:
    """Move u64 values are rendered as decimal strings in JSON."""
    if isinstance(value, bool):
        raise LedgerDecodeError(f"{where}: expected u64, got bool")
    try:
        out = int(value)
    except (TypeError, ValueError) as e:
        raise LedgerDecodeError(f"{where}: expected u64, got {value!r}") from e
    if out < 0 or out >= 2**64:
        raise LedgerDecodeError(f"{where}: u64 out of range: {out}")
    return out


def _address(value: Any, where: str) -> str:
    """Hex strings, or raw 32-byte vectors as some nodes render address keys."""
    try:
        if isinstance(value, list):
            return address_from_bytes(value)
        return normalize_address(value, field=where)
    except ValidationError as e:
        raise LedgerDecodeError(f"{where}: {e.reason}") from e


def _object_id(value: Any, where: str) -> str:
    """UID fields render as {"id": "0x..."}; plain strings are accepted too."""
    if isinstance(value, dict):
        value = value.get("id")
    return _address(value, where)


def parse_type_tag(type_tag: str) -> tuple[str, str, str]:
    """'0xabc::zombie::CheckedIn' -> (package, module, name). Generic parameters are dropped."""
    base = type_tag.split("<", 1)[0]
    parts = base.split("::")
    if len(parts) != 3:
        raise LedgerDecodeError(f"Malformed Move type tag {type_tag!r}")
    package, module, name = parts
    return _address(package, "type.package"), module, name


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


def _decode_added(event_id: EventId, data: dict[str, Any], ts: int) -> BeneficiaryAdded:
    try:
        unit = unit_from_code(_u64(_require(data, "time_unit", "BeneficiaryAdded"), "time_unit"))
    except ValidationError as e:
        raise LedgerDecodeError(f"BeneficiaryAdded: {e.reason}") from e
    duration = _u64(_require(data, "duration", "BeneficiaryAdded"), "duration")
    allocation = _u64(_require(data, "allocation", "BeneficiaryAdded"), "allocation")
    if duration == 0 or allocation == 0:
        raise LedgerDecodeError("BeneficiaryAdded: duration and allocation must be positive")
    return BeneficiaryAdded(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "BeneficiaryAdded"), "wallet_id"),
        owner=_address(_require(data, "owner", "BeneficiaryAdded"), "owner"),
        beneficiary=_address(_require(data, "beneficiary", "BeneficiaryAdded"), "beneficiary"),
        allocation=allocation,
        duration=duration,
        unit=unit,
        timestamp_ms=ts,
    )


def _decode_checked_in(event_id: EventId, data: dict[str, Any], ts: int) -> CheckedIn:
    return CheckedIn(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "CheckedIn"), "wallet_id"),
        owner=_address(_require(data, "owner", "CheckedIn"), "owner"),
        beneficiary=_address(_require(data, "beneficiary", "CheckedIn"), "beneficiary"),
        timestamp_ms=ts,
    )


def _decode_claimed(event_id: EventId, data: dict[str, Any], ts: int) -> AllocationClaimed:
    return AllocationClaimed(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "AllocationClaimed"), "wallet_id"),
        owner=_address(_require(data, "owner", "AllocationClaimed"), "owner"),
        beneficiary=_address(_require(data, "beneficiary", "AllocationClaimed"), "beneficiary"),
        amount=_u64(_require(data, "amount", "AllocationClaimed"), "amount"),
        timestamp_ms=ts,
    )


def _decode_transfer(event_id: EventId, data: dict[str, Any], ts: int) -> TransferExecuted:
    return TransferExecuted(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "TransferExecuted"), "wallet_id"),
        owner=_address(_require(data, "owner", "TransferExecuted"), "owner"),
        timestamp_ms=ts,
    )


def _decode_removed(event_id: EventId, data: dict[str, Any], ts: int) -> BeneficiaryRemoved:
    return BeneficiaryRemoved(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "BeneficiaryRemoved"), "wallet_id"),
        owner=_address(_require(data, "owner", "BeneficiaryRemoved"), "owner"),
        beneficiary=_address(_require(data, "beneficiary", "BeneficiaryRemoved"), "beneficiary"),
        timestamp_ms=ts,
    )


def _decode_withdrawn(event_id: EventId, data: dict[str, Any], ts: int) -> Withdrawn:
    return Withdrawn(
        event_id=event_id,
        wallet=_object_id(_require(data, "wallet_id", "Withdrawn"), "wallet_id"),
        owner=_address(_require(data, "owner", "Withdrawn"), "owner"),
        amount=_u64(_require(data, "amount", "Withdrawn"), "amount"),
        timestamp_ms=ts,
    )


EVENT_DECODERS: dict[str, Callable[[EventId, dict[str, Any], int], LedgerEvent]] = {
    "BeneficiaryAdded": _decode_added,
    "CheckedIn": _decode_checked_in,
    "AllocationClaimed": _decode_claimed,
    "TransferExecuted": _decode_transfer,
    "BeneficiaryRemoved": _decode_removed,
    "Withdrawn": _decode_withdrawn,
}


def decode_event(
    raw: dict[str, Any],
    *,
    package_id: str | None = None,
    default_timestamp_ms: int | None = None,
) -> LedgerEvent | None:
    """
    Decode one Sui event. Returns None for events outside the zombie module (or
    from another package when package_id is given); raises LedgerDecodeError for
    zombie events with a malformed payload.
    """
    type_tag = _require(raw, "type", "event")
    package, module, name = parse_type_tag(type_tag)
    if module != ZOMBIE_MODULE:
        return None
    if package_id and normalize_address(package_id) != package:
        logger.debug("ledger_event_foreign_package", package=package, event=name)
        return None
    decoder = EVENT_DECODERS.get(name)
    if decoder is None:
        logger.debug("ledger_event_unknown", event=name)
        return None

    ident = _require(raw, "id", "event")
    event_id = EventId(
        digest=str(_require(ident, "txDigest", "event.id")),
        seq=_u64(_require(ident, "eventSeq", "event.id"), "eventSeq"),
    )
    data = _require(raw, "parsedJson", "event")
    if not isinstance(data, dict):
        raise LedgerDecodeError(f"{name}: parsedJson must be an object")
    if data.get("timestamp") is not None:
        ts = _u64(data["timestamp"], "timestamp")
    elif raw.get("timestampMs") is not None:
        ts = _u64(raw["timestampMs"], "timestampMs")
    elif default_timestamp_ms is not None:
        ts = default_timestamp_ms
    else:
        raise LedgerDecodeError(f"{name}: no timestamp")
    return decoder(event_id, data, ts)


def decode_confirmation(block: dict[str, Any], *, package_id: str | None = None) -> Confirmation:
    """
    Decode a sui_getTransactionBlock / sui_executeTransactionBlock result that
    has already been checked for success.
    """
    digest = str(_require(block, "digest", "transaction"))
    ts = _u64(block["timestampMs"], "timestampMs") if block.get("timestampMs") is not None else 0
    events: list[LedgerEvent] = []
    for raw in block.get("events") or []:
        ev = decode_event(raw, package_id=package_id, default_timestamp_ms=ts or None)
        if ev is not None:
            events.append(ev)
    wallet = events[0].wallet if events else None
    bene = next((getattr(e, "beneficiary") for e in events if hasattr(e, "beneficiary")), None)
    if not ts and events:
        ts = events[0].timestamp_ms
    return Confirmation(
        digest=digest,
        wallet_address=wallet,
        beneficiary_address=bene,
        timestamp_ms=ts,
        events=tuple(events),
    )


def is_checkpointed(block: dict[str, Any]) -> bool:
    """Executed blocks only carry timestampMs once a checkpoint includes them."""
    return block.get("timestampMs") is not None


def execution_failure(block: dict[str, Any]) -> str | None:
    """Return the error string when effects report failure, else None."""
    status = ((block.get("effects") or {}).get("status") or {})
    if status.get("status") == "failure":
        return str(status.get("error") or "transaction failed")
    return None


# -----------------------------------------------------------------------------
# Wallet objects and BeneficiaryData
# -----------------------------------------------------------------------------


def decode_beneficiary_bcs(bcs_b64: str) -> tuple[int, int, int]:
    """24 BCS bytes -> (last_checkin, threshold, allocation)."""
    try:
        raw = base64.b64decode(bcs_b64, validate=True)
    except (ValueError, TypeError) as e:
        raise LedgerDecodeError(f"BeneficiaryData: invalid base64: {e}") from e
    if len(raw) < BENEFICIARY_DATA_BCS_LEN:
        raise LedgerDecodeError(f"BeneficiaryData: expected {BENEFICIARY_DATA_BCS_LEN} bytes, got {len(raw)}")
    last_checkin, threshold, allocation = struct.unpack_from("<QQQ", raw, 0)
    return last_checkin, threshold, allocation


def _coin_balance(coin: Any) -> int:
    """Balance renders as "123", {"fields": {"balance": "123"}} or {"value": "123"}."""
    if isinstance(coin, dict):
        fields = coin.get("fields") if isinstance(coin.get("fields"), dict) else coin
        value = fields.get("balance", fields.get("value"))
        return _u64(value, "coin.balance")
    return _u64(coin, "coin.balance")


def decode_wallet_object(obj: dict[str, Any]) -> tuple[str, str, int, list[str]]:
    """
    Decode a sui_getObject `data` entry for a ZombieWallet.
    Returns (wallet_address, owner, balance, beneficiary_addrs).
    """
    content = _require(obj, "content", "wallet")
    if content.get("dataType") != "moveObject":
        raise LedgerDecodeError("wallet: content is not a Move object")
    _, module, name = parse_type_tag(_require(content, "type", "wallet.content"))
    if module != ZOMBIE_MODULE:
        raise LedgerDecodeError(f"wallet: unexpected type {name!r} in module {module!r}")
    fields = _require(content, "fields", "wallet.content")
    wallet = _object_id(obj.get("objectId") or fields.get("id"), "wallet.objectId")
    owner = _address(_require(fields, "owner", "wallet.fields"), "owner")
    balance = _coin_balance(_require(fields, "coin", "wallet.fields"))
    addrs = [_address(a, "beneficiary_addrs") for a in fields.get("beneficiary_addrs") or []]
    return wallet, owner, balance, addrs


def decode_dynamic_field_name(name: dict[str, Any]) -> str:
    """Dynamic field names: {"type": "address", "value": "0x.."} or a struct with a `key` field."""
    value = _require(name, "value", "dynamic_field.name")
    if isinstance(value, dict):
        inner = value.get("fields") if isinstance(value.get("fields"), dict) else value
        value = inner.get("key")
    return _address(value, "dynamic_field.name")


def decode_beneficiary_field(address: str, obj: dict[str, Any]) -> LedgerBeneficiary | None:
    """
    Decode a suix_getDynamicFieldObject `data` entry. Returns None when the field
    is not a BeneficiaryData value.
    """
    content = obj.get("content") or {}
    bcs = (obj.get("bcs") or {}).get("bcsBytes")
    if content.get("dataType") == "moveObject":
        type_tag = str(content.get("type") or "")
        if BENEFICIARY_DATA_STRUCT not in type_tag:
            return None
        fields = content.get("fields") or {}
        value = fields.get("value")
        if isinstance(value, dict):
            fields = value.get("fields") if isinstance(value.get("fields"), dict) else value
        if "last_checkin" in fields:
            return LedgerBeneficiary(
                address=address,
                last_checkin_ms=_u64(fields["last_checkin"], "last_checkin"),
                threshold_ms=_u64(_require(fields, "threshold", "BeneficiaryData"), "threshold"),
                allocation=_u64(_require(fields, "allocation", "BeneficiaryData"), "allocation"),
            )
    if bcs:
        last_checkin, threshold, allocation = decode_beneficiary_bcs(bcs)
        return LedgerBeneficiary(
            address=address,
            last_checkin_ms=last_checkin,
            threshold_ms=threshold,
            allocation=allocation,
        )
    return None


def build_wallet(
    wallet: str,
    owner: str,
    balance: int,
    entries: list[LedgerBeneficiary],
) -> LedgerWallet:
    return LedgerWallet(
        wallet_address=wallet,
        owner=owner,
        balance=balance,
        beneficiaries={b.address: b for b in entries},
    )
