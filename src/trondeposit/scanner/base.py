"""Base interface for chain data sources.

A chain client answers two questions for the scanner: how high is the
chain, and which token transfers landed in block N.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from trondeposit.exceptions import ChainClientError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferInfo:
    """A token transfer found in a block."""

    tx_hash: str
    to_address: str
    amount: Decimal
    block_number: int
    from_address: Optional[str] = None


@dataclass(frozen=True)
class DepositEvent:
    """A transfer to a watched address, ready for reconciliation."""

    address: str
    user_id: int
    amount: Decimal
    tx_hash: str
    block_number: int


class ChainClient(ABC):
    """Abstract base class for chain data sources."""

    @abstractmethod
    async def get_current_block_height(self) -> int:
        """Get the current chain height.

        Raises:
            ChainClientError: If the query fails
        """
        pass

    @abstractmethod
    async def get_block_transfers(self, block_number: int) -> list[TransferInfo]:
        """Get all watched-token transfers included in ``block_number``.

        Raises:
            ChainClientError: If the query fails
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass


class SimulatedChainClient(ChainClient):
    """In-memory chain for dry runs and tests (no network access)."""

    def __init__(self, block_height: int = 0):
        self._block_height = block_height
        self._transfers: dict[int, list[TransferInfo]] = {}
        self._failing_blocks: set[int] = set()

    async def get_current_block_height(self) -> int:
        """Return simulated block height."""
        return self._block_height

    async def get_block_transfers(self, block_number: int) -> list[TransferInfo]:
        """Return simulated transfers for a block."""
        if block_number in self._failing_blocks:
            raise ChainClientError(f"Simulated failure fetching block {block_number}")
        return list(self._transfers.get(block_number, []))

    def set_block_height(self, height: int) -> None:
        self._block_height = height

    def fail_block(self, block_number: int, failing: bool = True) -> None:
        """Make queries for ``block_number`` raise until cleared."""
        if failing:
            self._failing_blocks.add(block_number)
        else:
            self._failing_blocks.discard(block_number)

    def add_simulated_transfer(
        self,
        to_address: str,
        amount: Decimal,
        block_number: int,
        tx_hash: Optional[str] = None,
        from_address: Optional[str] = None,
    ) -> TransferInfo:
        """Add a simulated transfer; the chain grows to include its block."""
        transfer = TransferInfo(
            tx_hash=tx_hash or secrets.token_hex(32),
            to_address=to_address,
            amount=amount,
            block_number=block_number,
            from_address=from_address,
        )
        self._transfers.setdefault(block_number, []).append(transfer)
        self._block_height = max(self._block_height, block_number)
        return transfer
