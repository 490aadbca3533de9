"""
FastAPI router: /beneficiaries (owner side) and /claimlist (beneficiary side).

Reads come from the index with expiry evaluated at request time. Mutations go
through CustodyService: ledger first, index only after confirmation.
"""

from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, Query

from backend_zombie.api_server.dependencies import get_clock, get_custody, get_store
from backend_zombie.api_server.schemas import (
    AddBeneficiaryRequest,
    AddBeneficiaryResponse,
    CheckInRequest,
    CheckInResponse,
    ClaimListResponse,
    ClaimRequest,
    DeletedResponse,
    RemoveBeneficiariesRequest,
)
from backend_zombie.core.addresses import sui_to_mist
from backend_zombie.core.exceptions import ValidationError
from backend_zombie.database.store import BeneficiaryStore
from backend_zombie.query.surface import beneficiary_claim_view, owner_view
from backend_zombie.services.custody import CustodyService
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["beneficiaries"])


def _required(value: str | None, message: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value


def _allocation_mist(body: AddBeneficiaryRequest) -> Any:
    if body.allocation is not None:
        return body.allocation
    if body.allocation_sui is not None:
        return sui_to_mist(body.allocation_sui)
    raise ValidationError("Missing required field: allocation", field="allocation")


@router.get("/beneficiaries")
def list_beneficiaries(
    owner_address: str | None = Query(None, alias="ownerAddress"),
    store: BeneficiaryStore = Depends(get_store),
    clock: Callable[[], int] = Depends(get_clock),
) -> list[dict[str, Any]]:
    """Owner view: every active record in creation order with remainingMs and isClaimable."""
    owner = _required(owner_address, "Missing owner address")
    return [view.to_dict() for view in owner_view(store, owner, now_ms=clock())]


@router.post("/beneficiaries", response_model=AddBeneficiaryResponse)
def add_beneficiary(
    body: AddBeneficiaryRequest,
    custody: CustodyService = Depends(get_custody),
) -> AddBeneficiaryResponse:
    record = custody.add_beneficiary(
        owner=body.owner_address,
        bene=body.bene_address,
        wallet=body.wallet_address,
        allocation=_allocation_mist(body),
        duration=body.inactivity_duration,
        unit=body.inactivity_unit,
    )
    logger.info("api_beneficiary_added", owner=record.owner_address, beneficiary=record.bene_address)
    return AddBeneficiaryResponse(id=record.id, record=record.to_dict())


@router.put("/beneficiaries", response_model=CheckInResponse)
def check_in(
    body: CheckInRequest,
    custody: CustodyService = Depends(get_custody),
) -> CheckInResponse:
    record = custody.check_in(owner=body.owner_address, bene=body.bene_address)
    return CheckInResponse(last_checkin=record.last_checkin)


@router.delete("/beneficiaries", response_model=DeletedResponse)
def remove_beneficiaries(
    body: RemoveBeneficiariesRequest = Body(...),
    custody: CustodyService = Depends(get_custody),
) -> DeletedResponse:
    """
    With beneAddress: revoke that beneficiary on the ledger.
    With walletAddress: execute the wallet transfer, removing all its records.
    """
    if body.bene_address:
        removed = custody.revoke(owner=body.owner_address, bene=body.bene_address)
        return DeletedResponse(deleted_count=removed)
    if body.wallet_address:
        removed = custody.execute_transfer(owner=body.owner_address, wallet=body.wallet_address)
        return DeletedResponse(deleted_count=removed)
    raise ValidationError("Missing required fields: beneAddress or walletAddress")


@router.get("/claimlist", response_model=ClaimListResponse)
def claim_list(
    beneficiary_address: str | None = Query(None, alias="beneficiaryAddress"),
    bene_address: str | None = Query(None, alias="beneAddress"),
    store: BeneficiaryStore = Depends(get_store),
    clock: Callable[[], int] = Depends(get_clock),
) -> ClaimListResponse:
    """Beneficiary view split into actionable (claimable now) and pending."""
    bene = _required(beneficiary_address or bene_address, "Missing beneficiary address")
    view = beneficiary_claim_view(store, bene, now_ms=clock())
    return ClaimListResponse(**view.to_dict())


@router.delete("/claimlist", response_model=DeletedResponse)
def claim(
    body: ClaimRequest = Body(...),
    custody: CustodyService = Depends(get_custody),
) -> DeletedResponse:
    """Claim an allocation; the ledger rejects it while the owner is still active."""
    removed = custody.claim(bene=body.bene_address, wallet=body.wallet_address)
    return DeletedResponse(deleted_count=1 if removed is not None else 0)
