"""Durable scan checkpoint.

A single ``tron_scan_state`` row holds the highest fully processed block
height and the cross-process "scan in progress" flag. Every method runs in
its own short transaction.

The row is created lazily: at ``start_height`` when one is configured,
otherwise by the scanner at the confirmed chain tip on its first pass, so a
fresh deployment does not walk the chain from genesis.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from trondeposit.config import Settings, get_settings
from trondeposit.exceptions import CheckpointError
from trondeposit.ledger.database import SessionFactory, get_db
from trondeposit.ledger.models import ScanState, utcnow

logger = logging.getLogger(__name__)

SCAN_STATE_ID = 1


@dataclass
class CheckpointState:
    """Snapshot of the checkpoint row.

    ``last_block_height`` is None until the first scan pass has placed the
    checkpoint.
    """

    last_block_height: Optional[int]
    last_scan_at: Optional[datetime]
    is_scanning: bool
    scan_started_at: Optional[datetime]


class ScanCheckpoint:
    """Compare-and-set access to the scan state row.

    Example:
        checkpoint = ScanCheckpoint(start_height=0)
        if await checkpoint.try_acquire_scan():
            try:
                await checkpoint.advance_to(height)
            finally:
                await checkpoint.release_scan()
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        start_height: Optional[int] = 0,
        lock_ttl_seconds: int = 600,
    ):
        self._session_factory = session_factory
        self.start_height = start_height
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds)
        # scan_started_at written by this instance's last successful acquire
        self._lease_started_at: Optional[datetime] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> "ScanCheckpoint":
        settings = settings or get_settings()
        return cls(
            session_factory=session_factory,
            start_height=settings.scan_start_block,
            lock_ttl_seconds=settings.scan_lock_ttl_seconds,
        )

    async def is_initialized(self) -> bool:
        """Check whether the checkpoint row exists."""
        async with get_db(self._session_factory) as session:
            return await session.get(ScanState, SCAN_STATE_ID) is not None

    async def initialize(self, height: int) -> bool:
        """Create the checkpoint row at ``height`` unless it already exists.

        Returns:
            True if this call created the row
        """
        if await self.is_initialized():
            return False
        try:
            async with get_db(self._session_factory) as session:
                session.add(
                    ScanState(
                        id=SCAN_STATE_ID,
                        last_block_height=height,
                        is_scanning=False,
                        last_scan_at=utcnow(),
                    )
                )
        except IntegrityError:
            # Another process created it first
            return False
        logger.info(f"Initialized scan checkpoint at height {height}")
        return True

    async def _ensure_row(self) -> None:
        if await self.is_initialized():
            return
        if self.start_height is None:
            raise CheckpointError(
                "Scan checkpoint is not initialized and no start height is configured"
            )
        await self.initialize(self.start_height)

    async def try_acquire_scan(self) -> bool:
        """Set ``is_scanning`` if it is clear (or its lease expired).

        Returns:
            True if this caller now owns the scan pass
        """
        await self._ensure_row()
        now = utcnow()
        stale_before = now - self.lock_ttl

        async with get_db(self._session_factory) as session:
            stmt = (
                update(ScanState)
                .where(
                    ScanState.id == SCAN_STATE_ID,
                    or_(
                        ScanState.is_scanning.is_(False),
                        ScanState.scan_started_at.is_(None),
                        ScanState.scan_started_at < stale_before,
                    ),
                )
                .values(is_scanning=True, scan_started_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            acquired = result.rowcount == 1

        if acquired:
            self._lease_started_at = now
            logger.debug("Scan flag acquired")
        return acquired

    async def release_scan(self) -> None:
        """Clear ``is_scanning`` and stamp ``last_scan_at``.

        Only the lease this instance acquired is released: if the flag was
        taken over after going stale, the new owner keeps it.
        """
        lease = self._lease_started_at
        if lease is None:
            logger.warning("release_scan called without a held scan flag")
            return
        self._lease_started_at = None

        async with get_db(self._session_factory) as session:
            result = await session.execute(
                update(ScanState)
                .where(
                    ScanState.id == SCAN_STATE_ID,
                    ScanState.is_scanning.is_(True),
                    ScanState.scan_started_at == lease,
                )
                .values(is_scanning=False, scan_started_at=None, last_scan_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount == 1

        if released:
            logger.debug("Scan flag released")
        else:
            logger.warning("Scan flag was taken over by another pass; not releasing it")

    async def advance_to(self, height: int) -> None:
        """Move the checkpoint forward to ``height``.

        Raises:
            CheckpointError: If ``height`` is not above the current height
        """
        await self._ensure_row()
        async with get_db(self._session_factory) as session:
            result = await session.execute(
                update(ScanState)
                .where(
                    ScanState.id == SCAN_STATE_ID,
                    ScanState.last_block_height < height,
                )
                .values(last_block_height=height, last_scan_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await session.scalar(
                    select(ScanState.last_block_height).where(ScanState.id == SCAN_STATE_ID)
                )
                raise CheckpointError(
                    f"Cannot move checkpoint from {current} to {height}"
                )

    async def current_height(self) -> int:
        """Highest fully processed block height."""
        await self._ensure_row()
        async with get_db(self._session_factory) as session:
            height = await session.scalar(
                select(ScanState.last_block_height).where(ScanState.id == SCAN_STATE_ID)
            )
        return int(height)

    async def get_state(self) -> CheckpointState:
        """Snapshot of the checkpoint for operational visibility.

        Does not create the row when no start height is configured; the
        height is then reported as None until the scanner places it.
        """
        if self.start_height is not None:
            await self._ensure_row()
        async with get_db(self._session_factory) as session:
            state = await session.get(ScanState, SCAN_STATE_ID)
            if state is None:
                return CheckpointState(
                    last_block_height=None,
                    last_scan_at=None,
                    is_scanning=False,
                    scan_started_at=None,
                )
            return CheckpointState(
                last_block_height=int(state.last_block_height),
                last_scan_at=state.last_scan_at,
                is_scanning=bool(state.is_scanning),
                scan_started_at=state.scan_started_at,
            )
