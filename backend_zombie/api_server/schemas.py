"""
Request/response models for the index API.

JSON uses camelCase (ownerAddress, beneAddress, ...); models accept either the
alias or the field name. Addresses and units are validated by the domain layer
so every rejection carries the same error shape.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class AddBeneficiaryRequest(CamelModel):
    """POST /beneficiaries body."""

    owner_address: str = Field(..., description="Owner ledger address (0x...)")
    bene_address: str = Field(..., description="Beneficiary ledger address (0x...)")
    wallet_address: str = Field(..., description="Custodial wallet object id (0x...)")
    allocation: Any = Field(None, description="Allocation in MIST (positive integer)")
    allocation_sui: Any = Field(None, description="Allocation in SUI; used when allocation is omitted")
    inactivity_duration: Any = Field(..., description="Inactivity window length (positive integer)")
    inactivity_unit: str = Field(..., description="minutes | hours | days")


class CheckInRequest(CamelModel):
    """PUT /beneficiaries body."""

    owner_address: str
    bene_address: str


class RemoveBeneficiariesRequest(CamelModel):
    """DELETE /beneficiaries body: one beneficiary (revoke) or a whole wallet (transfer)."""

    owner_address: str
    bene_address: str | None = None
    wallet_address: str | None = None


class ClaimRequest(CamelModel):
    """DELETE /claimlist body."""

    wallet_address: str
    bene_address: str


class WithdrawRequest(CamelModel):
    owner_address: str
    amount: Any = Field(..., description="Amount in MIST (positive integer)")


class LedgerEventRequest(CamelModel):
    """POST /ledger/events body: digest of a transaction the client submitted."""

    digest: str = Field(..., min_length=1, max_length=128)


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class AddBeneficiaryResponse(CamelModel):
    success: bool = True
    id: int
    record: dict[str, Any]


class CheckInResponse(CamelModel):
    success: bool = True
    last_checkin: int


class DeletedResponse(CamelModel):
    success: bool = True
    deleted_count: int


class ClaimListResponse(CamelModel):
    actionable: list[dict[str, Any]] = Field(default_factory=list)
    pending: list[dict[str, Any]] = Field(default_factory=list)


class WithdrawResponse(CamelModel):
    success: bool = True
    digest: str


class LedgerEventResponse(CamelModel):
    success: bool = True
    digest: str
    results: list[dict[str, Any]] = Field(default_factory=list)
