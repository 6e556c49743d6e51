"""Address registry: one derived deposit address per user, forever.

Index assignment is the contended step. Inside one process it is
serialized with a keyed lock; across processes the unique constraint on
``derivation_index`` rejects the loser, who re-reads the maximum and tries
again.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError

from trondeposit.config import get_settings
from trondeposit.exceptions import AddressAssignmentError, UserNotFoundError
from trondeposit.hdwallet import HDWalletProvider, get_hd_wallet
from trondeposit.ledger.database import SessionFactory, get_db
from trondeposit.ledger.repository import LedgerRepository
from trondeposit.utils.locks import keyed_lock

logger = logging.getLogger(__name__)

ASSIGNMENT_LOCK = "address-index-assignment"


@dataclass
class UserAddressInfo:
    """Address assigned to a user and its derivation index."""

    address: str
    derivation_index: int


class AddressRegistry:
    """Maps users to their deposit addresses."""

    def __init__(
        self,
        wallet: Optional[HDWalletProvider] = None,
        session_factory: Optional[SessionFactory] = None,
        max_attempts: Optional[int] = None,
    ):
        self.wallet = wallet or get_hd_wallet()
        self._session_factory = session_factory
        self.max_attempts = max_attempts or get_settings().address_assignment_retries

    async def get_address_info(self, user_id: int) -> Optional[UserAddressInfo]:
        """Get the assigned address of a user, or None if none yet."""
        async with get_db(self._session_factory) as session:
            record = await LedgerRepository(session).get_user_address(user_id)
            if record is None:
                return None
            return UserAddressInfo(
                address=record.tron_address,
                derivation_index=record.derivation_index,
            )

    async def get_or_create_address(self, user_id: int) -> str:
        """Return the user's deposit address, assigning one on first call.

        The address is returned only after its row is committed, so every
        address handed out is one the scanner will watch.

        Raises:
            AddressAssignmentError: If no index could be assigned after retries
        """
        existing = await self.get_address_info(user_id)
        if existing is not None:
            return existing.address

        async with keyed_lock(ASSIGNMENT_LOCK, operation=f"assign address to user {user_id}"):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._assign(user_id)
                except IntegrityError as e:
                    # Lost the race: either this user got an address from another
                    # process, or the index was taken. Re-read and try again.
                    logger.warning(
                        f"Address assignment conflict for user {user_id} "
                        f"(attempt {attempt}/{self.max_attempts}): {e.orig}"
                    )
                    existing = await self.get_address_info(user_id)
                    if existing is not None:
                        return existing.address
                except OperationalError as e:
                    logger.error(f"Address registry unavailable for user {user_id}: {e}")
                    raise AddressAssignmentError(
                        "Address registry unavailable, try again"
                    ) from e

        raise AddressAssignmentError(
            f"Could not assign a deposit address to user {user_id} "
            f"after {self.max_attempts} attempts"
        )

    async def _assign(self, user_id: int) -> str:
        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)

            record = await repo.get_user_address(user_id)
            if record is not None:
                return record.tron_address

            if await repo.get_user(user_id) is None:
                raise UserNotFoundError(f"User {user_id} not found")

            max_index = await repo.get_max_derivation_index()
            next_index = 0 if max_index is None else max_index + 1

            info = self.wallet.derive_address(next_index)
            await repo.add_user_address(user_id, info.address, next_index)

        logger.info(
            f"Assigned deposit address {info.address} to user {user_id} "
            f"(index: {next_index})"
        )
        return info.address

    async def get_watched_addresses(self) -> dict[str, int]:
        """All assigned addresses mapped to their owners."""
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_address_map()
