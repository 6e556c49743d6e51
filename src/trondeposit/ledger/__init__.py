"""Ledger module for user balances, deposit addresses and scan progress."""

from trondeposit.ledger.checkpoint import CheckpointState, ScanCheckpoint
from trondeposit.ledger.database import get_db, init_db
from trondeposit.ledger.models import (
    Deposit,
    DepositStatus,
    ScanState,
    User,
    UserAddress,
)
from trondeposit.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "User",
    "UserAddress",
    "Deposit",
    "ScanState",
    # Enums
    "DepositStatus",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
    # Checkpoint
    "ScanCheckpoint",
    "CheckpointState",
]
