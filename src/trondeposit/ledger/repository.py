"""Repository for ledger operations.

Methods flush but never commit; the caller's ``get_db()`` block decides the
transaction boundary.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trondeposit.exceptions import DepositStateError
from trondeposit.ledger.models import Deposit, DepositStatus, User, UserAddress, utcnow


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # User operations
    async def get_or_create_user(
        self,
        telegram_id: int,
        username: Optional[str] = None,
    ) -> User:
        """Get existing user or create a new one."""
        stmt = select(User).where(User.telegram_id == telegram_id)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()

        if user is None:
            user = User(
                telegram_id=telegram_id,
                username=username,
                available_balance=Decimal("0"),
                frozen_balance=Decimal("0"),
            )
            self.session.add(user)
            await self.session.flush()

        return user

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get user by internal ID."""
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Balance operations
    async def credit_available(self, user_id: int, amount: Decimal) -> None:
        """Add ``amount`` to the user's available balance.

        Done as a single UPDATE so concurrent credits cannot overwrite each
        other.
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(available_balance=User.available_balance + amount)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise ValueError(f"User {user_id} not found")

    # Deposit address operations
    async def get_user_address(self, user_id: int) -> Optional[UserAddress]:
        """Get the deposit address assigned to a user."""
        stmt = select(UserAddress).where(UserAddress.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_max_derivation_index(self) -> Optional[int]:
        """Highest derivation index assigned so far, or None if none."""
        result = await self.session.execute(select(func.max(UserAddress.derivation_index)))
        return result.scalar_one_or_none()

    async def add_user_address(
        self, user_id: int, address: str, derivation_index: int
    ) -> UserAddress:
        """Insert a new user address row (flushes, so constraint errors surface here)."""
        record = UserAddress(
            user_id=user_id,
            tron_address=address,
            derivation_index=derivation_index,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_all_user_addresses(
        self, limit: Optional[int] = None, offset: int = 0
    ) -> list[UserAddress]:
        """List assigned addresses in derivation order."""
        stmt = select(UserAddress).order_by(UserAddress.derivation_index).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_address_map(self) -> dict[str, int]:
        """Map of watched address -> user_id."""
        result = await self.session.execute(
            select(UserAddress.tron_address, UserAddress.user_id)
        )
        return {row.tron_address: row.user_id for row in result}

    # Deposit operations
    async def create_deposit(
        self,
        user_id: int,
        amount: Decimal,
        status: DepositStatus = DepositStatus.PENDING,
        tx_hash: Optional[str] = None,
        tron_address: Optional[str] = None,
        block_number: Optional[int] = None,
        on_chain_amount: Optional[Decimal] = None,
    ) -> Deposit:
        """Create a new deposit record."""
        deposit = Deposit(
            user_id=user_id,
            amount=amount,
            status=status,
            tx_hash=tx_hash,
            tron_address=tron_address,
            block_number=block_number,
            on_chain_amount=on_chain_amount,
        )
        self.session.add(deposit)
        await self.session.flush()
        return deposit

    async def get_deposit(self, deposit_id: int) -> Optional[Deposit]:
        """Get a deposit by ID."""
        stmt = select(Deposit).where(Deposit.id == deposit_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deposit_by_tx_hash(self, tx_hash: str) -> Optional[Deposit]:
        """Get deposit by transaction hash (idempotency check)."""
        stmt = select(Deposit).where(Deposit.tx_hash == tx_hash)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_unmatched_self_reports(self, user_id: int) -> list[Deposit]:
        """Pending self-reports of a user not yet tied to a transaction, oldest first."""
        stmt = (
            select(Deposit)
            .where(
                Deposit.user_id == user_id,
                Deposit.status == DepositStatus.PENDING,
                Deposit.tx_hash.is_(None),
            )
            .order_by(Deposit.created_at, Deposit.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_deposits(
        self,
        status: Optional[DepositStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deposit]:
        """List deposits, newest first, optionally filtered by status."""
        stmt = select(Deposit).order_by(Deposit.created_at.desc(), Deposit.id.desc())
        if status is not None:
            stmt = stmt.where(Deposit.status == status)
        result = await self.session.execute(stmt.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def get_user_deposits(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> list[Deposit]:
        """Get deposit history for a user."""
        stmt = (
            select(Deposit)
            .where(Deposit.user_id == user_id)
            .order_by(Deposit.created_at.desc(), Deposit.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def confirm_deposit(
        self,
        deposit: Deposit,
        confirmed_by: str,
        block_number: Optional[int] = None,
        amount: Optional[Decimal] = None,
        tx_hash: Optional[str] = None,
    ) -> Deposit:
        """Move a pending deposit to confirmed and credit the user.

        The status change is a conditional UPDATE on ``status = 'pending'``,
        so two confirmers racing on the same record credit at most once.
        Both effects belong to the caller's transaction.

        Args:
            deposit: Pending deposit record
            confirmed_by: "scanner" or the operator confirming manually
            block_number: Block the transaction was observed in, if known
            amount: Amount to credit; defaults to the recorded amount
            tx_hash: Transaction to attach in the same UPDATE, if not yet set
        """
        credit = amount if amount is not None else deposit.amount
        values = {
            "status": DepositStatus.CONFIRMED,
            "confirmed_at": utcnow(),
            "confirmed_by": confirmed_by,
            "amount": credit,
        }
        if block_number is not None:
            values["block_number"] = block_number
        conditions = [Deposit.id == deposit.id, Deposit.status == DepositStatus.PENDING]
        if tx_hash is not None:
            values["tx_hash"] = tx_hash
            conditions.append(or_(Deposit.tx_hash.is_(None), Deposit.tx_hash == tx_hash))

        stmt = update(Deposit).where(*conditions).values(**values)
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise DepositStateError(f"Deposit {deposit.id} is not pending")

        await self.credit_available(deposit.user_id, credit)
        await self.session.flush()
        await self.session.refresh(deposit)
        return deposit

    async def fail_deposit(self, deposit: Deposit, failed_by: str, note: str) -> Deposit:
        """Reject a pending deposit. No balance change."""
        stmt = (
            update(Deposit)
            .where(Deposit.id == deposit.id, Deposit.status == DepositStatus.PENDING)
            .values(
                status=DepositStatus.FAILED,
                confirmed_at=utcnow(),
                confirmed_by=failed_by,
                review_note=note,
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise DepositStateError(f"Deposit {deposit.id} is not pending")

        await self.session.flush()
        await self.session.refresh(deposit)
        return deposit

