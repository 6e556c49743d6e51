"""User-facing deposit endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from trondeposit.api.dependencies import get_deposit_service
from trondeposit.ledger.models import Deposit
from trondeposit.services.deposits import DepositService

router = APIRouter()


class RegisterUserRequest(BaseModel):
    """Request to register (or look up) a user."""

    telegram_id: int = Field(..., gt=0, description="User's Telegram ID")
    username: Optional[str] = Field(None, max_length=255)


class UserResponse(BaseModel):
    id: int
    telegram_id: int
    username: Optional[str] = None


class BalanceResponse(BaseModel):
    user_id: int
    available_balance: str
    frozen_balance: str


class StartDepositRequest(BaseModel):
    user_id: int = Field(..., gt=0)


class StartDepositResponse(BaseModel):
    """Deposit address and its QR code (SVG data URI)."""

    address: str
    qr_code: str


class CreateDepositRequest(BaseModel):
    """User report of a payment made to their deposit address."""

    user_id: int = Field(..., gt=0)
    amount: str = Field(..., description="Amount sent, as a decimal string")
    tx_hash: Optional[str] = Field(None, max_length=100, description="Transaction hash, if known")


class DepositInfo(BaseModel):
    """Deposit record as exposed over the API."""

    id: int
    user_id: int
    amount: str
    status: str
    tx_hash: Optional[str] = None
    tron_address: Optional[str] = None
    block_number: Optional[int] = None
    on_chain_amount: Optional[str] = None
    review_note: Optional[str] = None
    created_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    confirmed_by: Optional[str] = None

    @classmethod
    def from_model(cls, deposit: Deposit) -> "DepositInfo":
        return cls(
            id=deposit.id,
            user_id=deposit.user_id,
            amount=str(deposit.amount),
            status=str(getattr(deposit.status, "value", deposit.status)),
            tx_hash=deposit.tx_hash,
            tron_address=deposit.tron_address,
            block_number=deposit.block_number,
            on_chain_amount=(
                str(deposit.on_chain_amount) if deposit.on_chain_amount is not None else None
            ),
            review_note=deposit.review_note,
            created_at=deposit.created_at.isoformat() if deposit.created_at else None,
            confirmed_at=deposit.confirmed_at.isoformat() if deposit.confirmed_at else None,
            confirmed_by=deposit.confirmed_by,
        )


@router.post("/users", response_model=UserResponse)
async def register_user(
    request: RegisterUserRequest,
    service: DepositService = Depends(get_deposit_service),
):
    """Register a user (idempotent per Telegram ID)."""
    user = await service.register_user(request.telegram_id, request.username)
    return UserResponse(id=user.id, telegram_id=user.telegram_id, username=user.username)


@router.get("/users/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(user_id: int, service: DepositService = Depends(get_deposit_service)):
    """Get a user's balances."""
    balance = await service.get_balance(user_id)
    return BalanceResponse(
        user_id=user_id,
        available_balance=str(balance.available),
        frozen_balance=str(balance.frozen),
    )


@router.get("/users/{user_id}/deposits", response_model=list[DepositInfo])
async def list_user_deposits(
    user_id: int,
    limit: int = 20,
    offset: int = 0,
    service: DepositService = Depends(get_deposit_service),
):
    """Deposit history for a user, newest first."""
    deposits = await service.list_user_deposits(user_id, limit=limit, offset=offset)
    return [DepositInfo.from_model(d) for d in deposits]


@router.post("/deposits/start", response_model=StartDepositResponse)
async def start_deposit(
    request: StartDepositRequest,
    service: DepositService = Depends(get_deposit_service),
):
    """Get the user's deposit address, assigning it on first call."""
    result = await service.start_deposit(request.user_id)
    return StartDepositResponse(address=result.address, qr_code=result.qr_code)


@router.post("/deposits", response_model=DepositInfo, status_code=status.HTTP_201_CREATED)
async def create_deposit(
    request: CreateDepositRequest,
    service: DepositService = Depends(get_deposit_service),
):
    """Report a payment; creates a pending deposit for the scanner to match."""
    deposit = await service.create_deposit(request.user_id, request.amount, request.tx_hash)
    return DepositInfo.from_model(deposit)


@router.get("/deposits/{deposit_id}", response_model=DepositInfo)
async def get_deposit(deposit_id: int, service: DepositService = Depends(get_deposit_service)):
    """Get deposit details by ID."""
    return DepositInfo.from_model(await service.get_deposit(deposit_id))
