"""Admin API endpoints (token-protected)."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from trondeposit.api.dependencies import get_deposit_service, require_admin_token
from trondeposit.api.routes.deposits import DepositInfo
from trondeposit.ledger.models import DepositStatus
from trondeposit.services.deposits import DepositService

router = APIRouter(prefix="/admin", tags=["admin"])


class ConfirmDepositRequest(BaseModel):
    """Manual confirmation of a pending deposit."""

    operator: str = Field(..., min_length=1, max_length=100)
    amount: Optional[str] = Field(
        None, description="Amount to credit; defaults to the on-chain or reported amount"
    )
    tx_hash: Optional[str] = Field(
        None, description="Transaction paying this deposit; required if none is attached yet"
    )


class RejectDepositRequest(BaseModel):
    operator: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=1, max_length=500)


class AddressInfo(BaseModel):
    user_id: int
    address: str
    derivation_index: int
    created_at: Optional[str] = None


class ScanStateResponse(BaseModel):
    """Chain scan progress."""

    last_block_height: Optional[int] = None
    last_scan_at: Optional[str] = None
    is_scanning: bool
    scan_started_at: Optional[str] = None


@router.get("/deposits", response_model=list[DepositInfo])
async def list_deposits(
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    service: DepositService = Depends(get_deposit_service),
    _: bool = Depends(require_admin_token),
):
    """List deposits, newest first. Filter with ``?status=pending`` for the review queue."""
    status_filter = None
    if status:
        try:
            status_filter = DepositStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    deposits = await service.list_deposits(status_filter, limit=limit, offset=offset)
    return [DepositInfo.from_model(d) for d in deposits]


@router.post("/deposits/{deposit_id}/confirm", response_model=DepositInfo)
async def confirm_deposit(
    deposit_id: int,
    request: ConfirmDepositRequest,
    service: DepositService = Depends(get_deposit_service),
    _: bool = Depends(require_admin_token),
):
    """Confirm a pending deposit by hand and credit the user."""
    deposit = await service.manual_confirm(
        deposit_id, request.operator, request.amount, request.tx_hash
    )
    return DepositInfo.from_model(deposit)


@router.post("/deposits/{deposit_id}/reject", response_model=DepositInfo)
async def reject_deposit(
    deposit_id: int,
    request: RejectDepositRequest,
    service: DepositService = Depends(get_deposit_service),
    _: bool = Depends(require_admin_token),
):
    """Reject a pending deposit. The user's balance is not changed."""
    deposit = await service.reject_deposit(deposit_id, request.operator, request.reason)
    return DepositInfo.from_model(deposit)


@router.get("/addresses", response_model=list[AddressInfo])
async def list_addresses(
    limit: int = 100,
    offset: int = 0,
    service: DepositService = Depends(get_deposit_service),
    _: bool = Depends(require_admin_token),
):
    """List assigned deposit addresses in derivation order."""
    records = await service.list_addresses(limit=limit, offset=offset)
    return [
        AddressInfo(
            user_id=r.user_id,
            address=r.tron_address,
            derivation_index=r.derivation_index,
            created_at=r.created_at.isoformat() if r.created_at else None,
        )
        for r in records
    ]


@router.get("/scan-state", response_model=ScanStateResponse)
async def get_scan_state(
    service: DepositService = Depends(get_deposit_service),
    _: bool = Depends(require_admin_token),
):
    """Get the scanner checkpoint."""
    state = await service.get_scan_state()
    return ScanStateResponse(
        last_block_height=state.last_block_height,
        last_scan_at=state.last_scan_at.isoformat() if state.last_scan_at else None,
        is_scanning=state.is_scanning,
        scan_started_at=state.scan_started_at.isoformat() if state.scan_started_at else None,
    )
