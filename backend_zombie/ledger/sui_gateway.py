"""
Sui JSON-RPC ledger gateway.

- Writes: build a `zombie::*` Move call, have the injected TransactionSigner sign
  it, submit with sui_executeTransactionBlock, then poll sui_getTransactionBlock
  until the effects are visible or the confirmation timeout elapses.
- Reads: sui_getObject for the wallet, suix_getDynamicFields (paginated) and
  suix_getDynamicFieldObject for each BeneficiaryData entry.
Config: SUI_RPC_URL / SUI_NETWORK, ZOMBIE_PACKAGE_ID, LEDGER_CONFIRM_TIMEOUT_SEC.
"""

from __future__ import annotations

import time
from itertools import count
from typing import Any, Callable

import httpx

from backend_zombie.config.env import DEFAULT_PACKAGE_ID, mask_rpc_url
from backend_zombie.core.exceptions import LedgerDecodeError, LedgerError, LedgerTimeout
from backend_zombie.core.expiry import InactivityUnit, unit_code
from backend_zombie.ledger import decoder
from backend_zombie.ledger.gateway import (
    CLOCK_OBJECT_ID,
    LedgerGateway,
    MoveArg,
    MoveCall,
    TransactionSigner,
)
from backend_zombie.ledger.models import Confirmation, LedgerWallet
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)

DEFAULT_GAS_BUDGET = 20_000_000  # 0.02 SUI
DYNAMIC_FIELDS_PAGE_LIMIT = 50
TX_OPTIONS = {"showEvents": True, "showEffects": True}

# Error fragments the fullnode returns while a digest is not yet indexed.
_NOT_YET_VISIBLE = ("could not find the referenced transaction", "not found")


class SuiLedgerGateway(LedgerGateway):
    """
    Ledger gateway over Sui JSON-RPC.

    Writes block: each returns only after confirmation. The httpx
    client is created per gateway and closed with close(); requests carry an
    explicit timeout.
    """

    def __init__(
        self,
        rpc_url: str,
        package_id: str,
        signer: TransactionSigner | None = None,
        *,
        request_timeout_sec: float = 15.0,
        confirm_timeout_sec: float = 30.0,
        confirm_poll_interval_sec: float = 1.0,
        gas_budget: int = DEFAULT_GAS_BUDGET,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._package_id = package_id
        self._event_package = None if package_id == DEFAULT_PACKAGE_ID else package_id
        self._signer = signer
        self._confirm_timeout = confirm_timeout_sec
        self._poll_interval = confirm_poll_interval_sec
        self._gas_budget = gas_budget
        self._client = client or httpx.Client(timeout=httpx.Timeout(request_timeout_sec))
        self._sleep = sleep
        self._monotonic = monotonic
        self._ids = count(1)

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # JSON-RPC
    # -------------------------------------------------------------------------

    def _rpc(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self._client.post(self._rpc_url, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise LedgerTimeout(f"{method} timed out") from e
        except httpx.HTTPError as e:
            logger.warning("ledger_rpc_http_error", method=method, rpc_url=mask_rpc_url(self._rpc_url), error=str(e))
            raise LedgerError(f"Ledger RPC {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerDecodeError(f"Ledger RPC {method} returned non-JSON body") from e
        if payload.get("error"):
            err = payload["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise LedgerError(f"Ledger RPC {method} error: {message}", rpc_error=err)
        return payload.get("result")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _target(self, function: str) -> str:
        return f"{self._package_id}::{decoder.ZOMBIE_MODULE}::{function}"

    def _execute(self, call: MoveCall) -> Confirmation:
        if self._signer is None:
            raise LedgerError("No transaction signer configured; submit from the wallet and post the digest instead")
        signed = self._signer.sign(call)
        result = self._rpc(
            "sui_executeTransactionBlock",
            [signed.tx_bytes, signed.signatures, TX_OPTIONS, "WaitForLocalExecution"],
        )
        digest = (result or {}).get("digest")
        if not digest:
            raise LedgerDecodeError("sui_executeTransactionBlock returned no digest")
        logger.info("ledger_tx_submitted", target=call.target, digest=digest)
        return self.confirm(digest)

    def add_beneficiary(
        self,
        wallet: str,
        beneficiary: str,
        allocation: int,
        duration: int,
        unit: InactivityUnit,
    ) -> Confirmation:
        call = MoveCall(
            target=self._target("add_beneficiary"),
            arguments=(
                MoveArg.object(wallet),
                MoveArg.pure("address", beneficiary),
                MoveArg.pure("u64", allocation),
                MoveArg.pure("u64", duration),
                MoveArg.pure("u8", unit_code(unit)),
                MoveArg.split_gas(allocation),
                MoveArg.object(CLOCK_OBJECT_ID),
            ),
            gas_budget=self._gas_budget,
        )
        return self._execute(call)

    def check_in(self, wallet: str, beneficiary: str) -> Confirmation:
        call = MoveCall(
            target=self._target("checkin"),
            arguments=(MoveArg.object(wallet), MoveArg.pure("address", beneficiary), MoveArg.object(CLOCK_OBJECT_ID)),
        )
        return self._execute(call)

    def claim(self, wallet: str, beneficiary: str) -> Confirmation:
        call = MoveCall(
            target=self._target("claim"),
            arguments=(MoveArg.object(wallet), MoveArg.pure("address", beneficiary), MoveArg.object(CLOCK_OBJECT_ID)),
        )
        return self._execute(call)

    def execute_transfer(self, wallet: str) -> Confirmation:
        call = MoveCall(
            target=self._target("execute_transfer"),
            arguments=(MoveArg.object(wallet), MoveArg.object(CLOCK_OBJECT_ID)),
        )
        return self._execute(call)

    def revoke_beneficiary(self, wallet: str, beneficiary: str) -> Confirmation:
        call = MoveCall(
            target=self._target("remove_beneficiary"),
            arguments=(MoveArg.object(wallet), MoveArg.pure("address", beneficiary)),
        )
        return self._execute(call)

    def withdraw(self, wallet: str, amount: int) -> Confirmation:
        call = MoveCall(
            target=self._target("withdraw"),
            arguments=(MoveArg.object(wallet), MoveArg.pure("u64", amount)),
        )
        return self._execute(call)

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    def confirm(self, digest: str) -> Confirmation:
        """Poll until the transaction is checkpointed or the timeout passes. Failure effects raise LedgerError."""
        deadline = self._monotonic() + self._confirm_timeout
        while True:
            try:
                block = self._rpc("sui_getTransactionBlock", [digest, TX_OPTIONS])
            except LedgerTimeout:
                block = None
            except LedgerError as e:
                if not any(s in e.reason.lower() for s in _NOT_YET_VISIBLE):
                    raise
                block = None
            if block:
                failure = decoder.execution_failure(block)
                if failure is not None:
                    logger.warning("ledger_tx_failed", digest=digest, error=failure)
                    raise LedgerError(f"Transaction {digest} failed: {failure}", digest=digest)
                if not decoder.is_checkpointed(block):
                    logger.debug("ledger_tx_awaiting_checkpoint", digest=digest)
                    block = None
            if block:
                confirmation = decoder.decode_confirmation(block, package_id=self._event_package)
                logger.info(
                    "ledger_tx_confirmed",
                    digest=digest,
                    wallet=confirmation.wallet_address,
                    events=len(confirmation.events),
                )
                return confirmation
            if self._monotonic() >= deadline:
                break
            self._sleep(self._poll_interval)
        logger.warning("ledger_tx_confirm_timeout", digest=digest, timeout_sec=self._confirm_timeout)
        raise LedgerTimeout(
            f"Transaction {digest} not confirmed within {self._confirm_timeout:.0f}s; re-query before retrying",
            digest=digest,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_wallet(self, wallet: str) -> LedgerWallet | None:
        result = self._rpc("sui_getObject", [wallet, {"showContent": True, "showType": True}])
        data = (result or {}).get("data")
        if not data:
            logger.info("ledger_wallet_missing", wallet=wallet, error=(result or {}).get("error"))
            return None
        wallet_id, owner, balance, _ = decoder.decode_wallet_object(data)

        entries = []
        cursor: str | None = None
        while True:
            page = self._rpc("suix_getDynamicFields", [wallet_id, cursor, DYNAMIC_FIELDS_PAGE_LIMIT]) or {}
            for field in page.get("data") or []:
                name = field.get("name") or {}
                try:
                    address = decoder.decode_dynamic_field_name(name)
                except LedgerDecodeError:
                    logger.debug("ledger_dynamic_field_skipped", wallet=wallet_id, name=name)
                    continue
                obj = self._rpc("suix_getDynamicFieldObject", [wallet_id, name]) or {}
                entry = decoder.decode_beneficiary_field(address, obj.get("data") or {})
                if entry is not None:
                    entries.append(entry)
            if not page.get("hasNextPage"):
                break
            cursor = page.get("nextCursor")
        return decoder.build_wallet(wallet_id, owner, balance, entries)
