"""Chain scanner and its runner.

The scanner walks the chain block by block from the checkpoint, hands every
transfer to a watched address to the reconciler, and advances the checkpoint
after each fully processed block.

Usage:
    python -m trondeposit.scanner.runner --interval 30
    python -m trondeposit.scanner.runner --once

Environment variables: see ``trondeposit.config.Settings``
(TRON_MNEMONIC, CONFIRMATION_DEPTH, SCAN_INTERVAL_SECONDS, ...).
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from trondeposit.config import Settings, get_settings
from trondeposit.exceptions import DepositError, MasterSecretError
from trondeposit.hdwallet import validate_wallet_config
from trondeposit.ledger.checkpoint import ScanCheckpoint
from trondeposit.ledger.database import SessionFactory, close_db, init_db
from trondeposit.scanner.base import ChainClient, DepositEvent
from trondeposit.scanner.factory import get_chain_client
from trondeposit.services.address_registry import AddressRegistry
from trondeposit.services.reconciler import DepositReconciler, ReconcileOutcome

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Summary of one scan tick."""

    skipped: bool = False
    start_height: Optional[int] = None
    last_height: Optional[int] = None
    blocks_scanned: int = 0
    outcomes: dict[ReconcileOutcome, int] = field(default_factory=dict)
    error: Optional[str] = None

    def record(self, outcome: ReconcileOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    @property
    def credited(self) -> int:
        return self.outcomes.get(ReconcileOutcome.CREDITED, 0)


class ChainScanner:
    """Polls the chain and feeds deposit events to the reconciler.

    Only one pass runs at a time across all processes, guarded by the
    checkpoint's ``is_scanning`` flag. Blocks are processed strictly in
    ascending order and the checkpoint moves one block at a time, so a
    failed pass resumes exactly where it stopped.
    """

    def __init__(
        self,
        client: ChainClient,
        registry: AddressRegistry,
        reconciler: DepositReconciler,
        checkpoint: ScanCheckpoint,
        confirmation_depth: int = 20,
        max_blocks_per_pass: int = 200,
        scan_timeout: float = 120.0,
        interval: float = 30.0,
    ):
        """Initialize the scanner.

        Args:
            client: Chain data source
            registry: Source of watched addresses
            reconciler: Consumer of deposit events
            checkpoint: Durable scan progress
            confirmation_depth: Blocks required on top of a block before it is scanned
            max_blocks_per_pass: Upper bound on blocks per tick
            scan_timeout: Time budget for a single pass, in seconds
            interval: Seconds between ticks in ``run``
        """
        self.client = client
        self.registry = registry
        self.reconciler = reconciler
        self.checkpoint = checkpoint
        self.confirmation_depth = confirmation_depth
        self.max_blocks_per_pass = max_blocks_per_pass
        self.scan_timeout = scan_timeout
        self.interval = interval
        self._stop_event = asyncio.Event()

    async def scan_once(self) -> ScanResult:
        """Run a single scan tick.

        Skips immediately if another pass holds the scan flag. The flag is
        released however the pass ends, including timeout and cancellation.
        """
        result = ScanResult()
        try:
            await self._place_checkpoint()
        except (DepositError, SQLAlchemyError) as e:
            result.error = str(e)
            logger.error(f"Could not place scan checkpoint: {e}")
            return result

        if not await self.checkpoint.try_acquire_scan():
            logger.debug("Scan already in progress, skipping tick")
            return ScanResult(skipped=True)

        try:
            await asyncio.wait_for(self._scan_pass(result), timeout=self.scan_timeout)
        except asyncio.TimeoutError:
            result.error = f"Scan pass exceeded {self.scan_timeout}s"
            logger.warning(
                f"{result.error}; resuming after block {result.last_height or result.start_height} "
                f"next tick"
            )
        except (DepositError, SQLAlchemyError) as e:
            result.error = str(e)
            logger.error(
                f"Scan pass aborted after block {result.last_height or result.start_height}: {e}"
            )
        finally:
            await self.checkpoint.release_scan()

        return result

    async def _place_checkpoint(self) -> None:
        """Start a fresh checkpoint at the confirmed tip when no start height is set."""
        if self.checkpoint.start_height is not None or await self.checkpoint.is_initialized():
            return

        head = await self.client.get_current_block_height()
        start = max(head - self.confirmation_depth, 0)
        if await self.checkpoint.initialize(start):
            logger.info(f"No scan state yet, starting after confirmed block {start} (head {head})")

    async def _scan_pass(self, result: ScanResult) -> None:
        start = await self.checkpoint.current_height()
        result.start_height = start

        head = await self.client.get_current_block_height()
        safe_tip = head - self.confirmation_depth
        end = min(safe_tip, start + self.max_blocks_per_pass)

        if end <= start:
            logger.debug(f"No confirmed blocks past {start} (head {head})")
            return

        logger.info(f"Scanning blocks {start + 1}..{end} (head {head})")

        for height in range(start + 1, end + 1):
            transfers = await self.client.get_block_transfers(height)

            if transfers:
                # Re-read per block so addresses assigned mid-pass are watched
                watched = await self.registry.get_watched_addresses()
                for transfer in transfers:
                    user_id = watched.get(transfer.to_address)
                    if user_id is None:
                        continue
                    if transfer.amount <= 0:
                        # Zero-value transfers (address poisoning) carry no funds
                        logger.debug(
                            f"Ignoring {transfer.amount} transfer {transfer.tx_hash} "
                            f"to {transfer.to_address}"
                        )
                        continue

                    event = DepositEvent(
                        address=transfer.to_address,
                        user_id=user_id,
                        amount=transfer.amount,
                        tx_hash=transfer.tx_hash,
                        block_number=height,
                    )
                    result.record(await self.reconciler.reconcile(event))

            await self.checkpoint.advance_to(height)
            result.last_height = height
            result.blocks_scanned += 1

    async def run(self) -> None:
        """Run the scanning loop until ``stop`` is called."""
        self._stop_event.clear()
        logger.info(
            f"Starting chain scanner "
            f"(interval: {self.interval}s, confirmation_depth: {self.confirmation_depth})"
        )

        while not self._stop_event.is_set():
            try:
                result = await self.scan_once()
                if result.credited:
                    logger.info(f"Credited {result.credited} new deposits")
            except Exception as e:
                logger.error(f"Scanner error: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        """Stop the scanning loop."""
        self._stop_event.set()
        logger.info("Stopping chain scanner")


def build_scanner(
    settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
    client: Optional[ChainClient] = None,
) -> ChainScanner:
    """Wire a scanner from settings."""
    settings = settings or get_settings()
    return ChainScanner(
        client=client or get_chain_client(settings),
        registry=AddressRegistry(session_factory=session_factory),
        reconciler=DepositReconciler(
            session_factory=session_factory,
            amount_tolerance=settings.amount_tolerance,
        ),
        checkpoint=ScanCheckpoint.from_settings(settings, session_factory),
        confirmation_depth=settings.confirmation_depth,
        max_blocks_per_pass=settings.scan_max_blocks_per_pass,
        scan_timeout=settings.scan_timeout_seconds,
        interval=settings.scan_interval_seconds,
    )


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the TRON deposit scanner")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between scans (default: SCAN_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        validate_wallet_config(settings)
    except MasterSecretError as e:
        logger.critical(f"Refusing to start scanner: {e}")
        sys.exit(1)

    await init_db()
    scanner = build_scanner(settings)
    if args.interval:
        scanner.interval = args.interval

    try:
        if args.once:
            result = await scanner.scan_once()
            print(
                f"Scanned {result.blocks_scanned} blocks, credited {result.credited} deposits"
                + (f" (error: {result.error})" if result.error else "")
            )
        else:
            await scanner.run()
    finally:
        await scanner.client.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
