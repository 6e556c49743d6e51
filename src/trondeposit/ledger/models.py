"""SQLAlchemy models for the deposit ledger."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DepositStatus(str, Enum):
    """Status of a deposit."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class User(Base):
    """User account with its running balances.

    Balances are maintained totals, changed only together with the deposit
    status transition that justifies them.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_users_available_non_negative"),
        CheckConstraint("frozen_balance >= 0", name="ck_users_frozen_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    available_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), default=Decimal("0"), nullable=False
    )
    frozen_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), default=Decimal("0"), nullable=False
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    deposits: Mapped[list["Deposit"]] = relationship(back_populates="user", lazy="selectin")
    tron_address: Mapped[Optional["UserAddress"]] = relationship(
        back_populates="user", lazy="selectin", uselist=False
    )


class UserAddress(Base):
    """The one deposit address assigned to a user.

    Rows are never updated or deleted; ``derivation_index`` is unique so two
    concurrent assignments cannot share an index.
    """

    __tablename__ = "user_tron_addresses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    tron_address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    derivation_index: Mapped[int] = mapped_column(unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="tron_address")


class Deposit(Base):
    """A deposit, either self-reported by the user or observed on chain.

    ``tx_hash`` is unique once set: it is the de-duplication key.
    """

    __tablename__ = "deposits"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    status: Mapped[DepositStatus] = mapped_column(
        String(20), default=DepositStatus.PENDING, nullable=False, index=True
    )
    tx_hash: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    tron_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    on_chain_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 8), nullable=True)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="deposits")


class ScanState(Base):
    """Singleton row tracking chain scan progress.

    ``is_scanning`` is the cross-process mutual-exclusion flag for scan
    passes; ``scan_started_at`` lets a stale flag be taken over.
    """

    __tablename__ = "tron_scan_state"

    id: Mapped[int] = mapped_column(primary_key=True)
    last_block_height: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_scan_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    is_scanning: Mapped[bool] = mapped_column(default=False, nullable=False)
    scan_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
