"""Deposit flows used by the API layer.

Covers the user-facing steps (get an address, report a payment) and the
operator-facing ones (inspect, confirm manually, reject). Manual
confirmation goes through the same conditional status transition and
balance credit as the reconciler, in one transaction.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError

from trondeposit.exceptions import (
    DepositNotFoundError,
    DepositStateError,
    DuplicateTransactionError,
    InvalidDepositError,
    UserNotFoundError,
)
from trondeposit.ledger.checkpoint import CheckpointState, ScanCheckpoint
from trondeposit.ledger.database import SessionFactory, get_db
from trondeposit.ledger.models import Deposit, DepositStatus, User, UserAddress
from trondeposit.ledger.repository import LedgerRepository
from trondeposit.services.address_registry import AddressRegistry
from trondeposit.utils.qr import render_address_qr

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")
MAX_DEPOSIT_AMOUNT = Decimal("1000000000")


@dataclass
class StartDepositResult:
    """Address to pay into plus a renderable QR code."""

    address: str
    qr_code: str


@dataclass
class UserBalance:
    available: Decimal
    frozen: Decimal


def normalize_tx_hash(tx_hash: str) -> str:
    """Lowercase a transaction hash and drop an optional 0x prefix.

    Raises:
        InvalidDepositError: If it is not 64 hex characters
    """
    value = tx_hash.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    if not TX_HASH_PATTERN.match(value):
        raise InvalidDepositError("Invalid transaction hash format")
    return value


def parse_amount(amount: Union[str, int, Decimal]) -> Decimal:
    """Parse and validate a deposit amount."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidDepositError(f"Invalid amount format: {amount}")
    if not value.is_finite() or value <= 0:
        raise InvalidDepositError("Amount must be positive")
    if value > MAX_DEPOSIT_AMOUNT:
        raise InvalidDepositError("Amount exceeds maximum limit")
    return value


class DepositService:
    """Application service behind the deposit and admin endpoints."""

    def __init__(
        self,
        registry: Optional[AddressRegistry] = None,
        checkpoint: Optional[ScanCheckpoint] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self._session_factory = session_factory
        self.registry = registry or AddressRegistry(session_factory=session_factory)
        self.checkpoint = checkpoint or ScanCheckpoint.from_settings(
            session_factory=session_factory
        )

    # User-facing flows
    async def register_user(self, telegram_id: int, username: Optional[str] = None) -> User:
        """Get or create the user for a Telegram account."""
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_or_create_user(telegram_id, username)

    async def get_balance(self, user_id: int) -> UserBalance:
        async with get_db(self._session_factory) as session:
            user = await LedgerRepository(session).get_user(user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            return UserBalance(available=user.available_balance, frozen=user.frozen_balance)

    async def start_deposit(self, user_id: int) -> StartDepositResult:
        """Return the user's deposit address, assigning it on first use."""
        address = await self.registry.get_or_create_address(user_id)
        return StartDepositResult(address=address, qr_code=render_address_qr(address))

    async def create_deposit(
        self,
        user_id: int,
        amount: Union[str, int, Decimal],
        tx_hash: Optional[str] = None,
    ) -> Deposit:
        """Record a user's "I paid" report as a pending deposit.

        The reconciler attaches the on-chain transfer to it later.

        Raises:
            InvalidDepositError: Bad amount or tx hash
            DuplicateTransactionError: The tx hash is already recorded
            UserNotFoundError: Unknown user
        """
        value = parse_amount(amount)
        normalized_hash = normalize_tx_hash(tx_hash) if tx_hash else None

        try:
            async with get_db(self._session_factory) as session:
                repo = LedgerRepository(session)
                if await repo.get_user(user_id) is None:
                    raise UserNotFoundError(f"User {user_id} not found")

                if normalized_hash and await repo.get_deposit_by_tx_hash(normalized_hash):
                    raise DuplicateTransactionError(
                        f"Transaction {normalized_hash} is already recorded"
                    )

                address = await repo.get_user_address(user_id)
                deposit = await repo.create_deposit(
                    user_id=user_id,
                    amount=value,
                    tx_hash=normalized_hash,
                    tron_address=address.tron_address if address else None,
                )
        except IntegrityError as e:
            raise DuplicateTransactionError(
                f"Transaction {normalized_hash} is already recorded"
            ) from e

        logger.info(
            f"Deposit {deposit.id} reported by user {user_id}: {value}"
            + (f" (tx: {normalized_hash})" if normalized_hash else "")
        )
        return deposit

    async def get_deposit(self, deposit_id: int) -> Deposit:
        async with get_db(self._session_factory) as session:
            deposit = await LedgerRepository(session).get_deposit(deposit_id)
            if deposit is None:
                raise DepositNotFoundError(f"Deposit {deposit_id} not found")
            return deposit

    async def list_user_deposits(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> list[Deposit]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_user_deposits(user_id, limit, offset)

    # Operator-facing flows
    async def list_deposits(
        self,
        status: Optional[DepositStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deposit]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_deposits(status, limit, offset)

    async def manual_confirm(
        self,
        deposit_id: int,
        operator: str,
        amount: Optional[Union[str, Decimal]] = None,
        tx_hash: Optional[str] = None,
    ) -> Deposit:
        """Confirm a pending deposit by hand and credit the user.

        The confirmed record must carry the transaction it was paid with,
        so the scanner resolves that transfer as a duplicate later. A
        record without a tx hash needs one from the operator.

        Without an explicit amount, credits what was observed on chain if
        known, otherwise the reported amount.

        Raises:
            DepositNotFoundError: Unknown deposit
            DepositStateError: The deposit is not pending
            InvalidDepositError: Missing, malformed or conflicting tx hash
            DuplicateTransactionError: The tx hash belongs to another deposit
        """
        credit = parse_amount(amount) if amount is not None else None
        normalized_hash = normalize_tx_hash(tx_hash) if tx_hash else None

        try:
            async with get_db(self._session_factory) as session:
                repo = LedgerRepository(session)
                deposit = await repo.get_deposit(deposit_id)
                if deposit is None:
                    raise DepositNotFoundError(f"Deposit {deposit_id} not found")
                if deposit.status != DepositStatus.PENDING:
                    raise DepositStateError(f"Deposit {deposit_id} is not pending")

                if deposit.tx_hash is None:
                    if normalized_hash is None:
                        raise InvalidDepositError(
                            f"A transaction hash is required to confirm deposit {deposit_id}"
                        )
                    holder = await repo.get_deposit_by_tx_hash(normalized_hash)
                    if holder is not None:
                        raise DuplicateTransactionError(
                            f"Transaction {normalized_hash} is already recorded "
                            f"on deposit {holder.id}"
                        )
                elif normalized_hash is not None and normalized_hash != deposit.tx_hash:
                    raise InvalidDepositError(
                        f"Deposit {deposit_id} is attached to transaction {deposit.tx_hash}"
                    )

                if credit is None:
                    credit = deposit.on_chain_amount or deposit.amount

                await repo.confirm_deposit(
                    deposit,
                    confirmed_by=operator,
                    amount=credit,
                    tx_hash=normalized_hash if deposit.tx_hash is None else None,
                )
        except IntegrityError as e:
            raise DuplicateTransactionError(
                f"Transaction {normalized_hash} is already recorded"
            ) from e

        logger.info(
            f"Deposit {deposit_id} confirmed manually by {operator}: "
            f"{credit} credited to user {deposit.user_id} (tx: {deposit.tx_hash})"
        )
        return deposit

    async def reject_deposit(self, deposit_id: int, operator: str, reason: str) -> Deposit:
        """Mark a pending deposit as failed. No balance change."""
        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            deposit = await repo.get_deposit(deposit_id)
            if deposit is None:
                raise DepositNotFoundError(f"Deposit {deposit_id} not found")
            await repo.fail_deposit(deposit, failed_by=operator, note=reason)

        logger.info(f"Deposit {deposit_id} rejected by {operator}: {reason}")
        return deposit

    async def list_addresses(self, limit: int = 100, offset: int = 0) -> list[UserAddress]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_all_user_addresses(limit, offset)

    async def get_scan_state(self) -> CheckpointState:
        return await self.checkpoint.get_state()
