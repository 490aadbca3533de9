"""
FastAPI router: client-submitted ledger transactions and wallet repair.

POST /ledger/events {digest}: the owner's wallet signed and submitted the
transaction itself; wait for confirmation and mirror its zombie events.
POST /wallets/{wallet}/resync: rebuild a wallet's records from the ledger.
POST /wallets/{wallet}/withdraw: owner withdrawal of unallocated balance.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from backend_zombie.api_server.dependencies import get_custody
from backend_zombie.api_server.schemas import (
    LedgerEventRequest,
    LedgerEventResponse,
    WithdrawRequest,
    WithdrawResponse,
)
from backend_zombie.services.custody import CustodyService

router = APIRouter(tags=["ledger"])


@router.post("/ledger/events", response_model=LedgerEventResponse)
def ingest_ledger_transaction(
    body: LedgerEventRequest,
    custody: CustodyService = Depends(get_custody),
) -> LedgerEventResponse:
    results = custody.ingest_transaction(body.digest)
    return LedgerEventResponse(digest=body.digest.strip(), results=[r.to_dict() for r in results])


@router.post("/wallets/{wallet}/resync")
def resync_wallet(wallet: str, custody: CustodyService = Depends(get_custody)) -> dict[str, Any]:
    report = custody.resync(wallet)
    return {"success": True, **report.to_dict()}


@router.post("/wallets/{wallet}/withdraw", response_model=WithdrawResponse)
def withdraw(
    wallet: str,
    body: WithdrawRequest,
    custody: CustodyService = Depends(get_custody),
) -> WithdrawResponse:
    confirmation = custody.withdraw(owner=body.owner_address, wallet=wallet, amount=body.amount)
    return WithdrawResponse(digest=confirmation.digest)
