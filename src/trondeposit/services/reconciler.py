"""Deposit reconciler.

Turns deposit events observed on chain into ledger credits, exactly once per
transaction hash. Self-reported pending deposits are matched against the
observed transfer; anything that does not line up is left pending for manual
review instead of being resolved in the user's favor.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError

from trondeposit.config import get_settings
from trondeposit.exceptions import DepositStateError
from trondeposit.ledger.database import SessionFactory, get_db
from trondeposit.ledger.models import Deposit, DepositStatus
from trondeposit.ledger.repository import LedgerRepository
from trondeposit.scanner.base import DepositEvent

logger = logging.getLogger(__name__)

SCANNER_CONFIRMER = "scanner"


class ReconcileOutcome(str, Enum):
    """Result of reconciling one deposit event."""

    CREDITED = "credited"
    DUPLICATE_IGNORED = "duplicate-ignored"
    AMOUNT_MISMATCH = "amount-mismatch"


class DepositReconciler:
    """Credits on-chain deposits to user balances exactly once."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        amount_tolerance: Optional[Decimal] = None,
    ):
        self._session_factory = session_factory
        if amount_tolerance is None:
            amount_tolerance = get_settings().amount_tolerance
        self.amount_tolerance = amount_tolerance

    def amounts_match(self, reported: Decimal, observed: Decimal) -> bool:
        """Check a self-reported amount against the on-chain amount."""
        return abs(Decimal(reported) - Decimal(observed)) <= self.amount_tolerance

    async def reconcile(self, event: DepositEvent) -> ReconcileOutcome:
        """Reconcile one deposit event.

        Safe to call any number of times with the same event. Persistence
        errors propagate with nothing applied; the scanner retries the block.
        """
        try:
            outcome = await self._reconcile_once(event)
        except (IntegrityError, DepositStateError) as e:
            # Another writer recorded this tx hash, or confirmed the record,
            # between our read and write. Nothing was applied; re-read.
            logger.warning(f"Concurrent write for tx {event.tx_hash}, re-reading: {e}")
            outcome = await self._reconcile_once(event)

        if outcome == ReconcileOutcome.CREDITED:
            logger.info(
                f"Deposit credited: {event.amount} to user {event.user_id} "
                f"(tx: {event.tx_hash}, block: {event.block_number})"
            )
        elif outcome == ReconcileOutcome.AMOUNT_MISMATCH:
            logger.warning(
                f"Deposit needs manual review: tx {event.tx_hash} "
                f"({event.amount} to user {event.user_id})"
            )
        else:
            logger.debug(f"Deposit {event.tx_hash} already reconciled")

        return outcome

    async def _reconcile_once(self, event: DepositEvent) -> ReconcileOutcome:
        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)

            existing = await repo.get_deposit_by_tx_hash(event.tx_hash)
            if existing is not None:
                return await self._reconcile_existing(repo, existing, event)

            reports = await repo.get_unmatched_self_reports(event.user_id)
            if reports:
                match = next(
                    (d for d in reports if self.amounts_match(d.amount, event.amount)),
                    None,
                )
                if match is not None:
                    return await self._confirm_attached(repo, match, event)

                # Never guess which report a different amount belongs to:
                # park the transfer on the oldest report for an operator.
                target = reports[0]
                return await self._flag_for_review(
                    repo,
                    target,
                    event,
                    f"Reported {target.amount}, observed {event.amount} on chain",
                )

            deposit = await repo.create_deposit(
                user_id=event.user_id,
                amount=event.amount,
                tx_hash=event.tx_hash,
                tron_address=event.address,
                block_number=event.block_number,
                on_chain_amount=event.amount,
            )
            await repo.confirm_deposit(
                deposit,
                confirmed_by=SCANNER_CONFIRMER,
                block_number=event.block_number,
            )
            return ReconcileOutcome.CREDITED

    async def _reconcile_existing(
        self, repo: LedgerRepository, deposit: Deposit, event: DepositEvent
    ) -> ReconcileOutcome:
        if deposit.status == DepositStatus.CONFIRMED:
            return ReconcileOutcome.DUPLICATE_IGNORED

        if deposit.status == DepositStatus.FAILED:
            logger.warning(
                f"Tx {event.tx_hash} belongs to rejected deposit {deposit.id}, not crediting"
            )
            return ReconcileOutcome.DUPLICATE_IGNORED

        if deposit.user_id != event.user_id:
            return await self._flag_for_review(
                repo,
                deposit,
                event,
                f"Reported by user {deposit.user_id}, "
                f"but paid to the address of user {event.user_id}",
            )

        if not self.amounts_match(deposit.amount, event.amount):
            return await self._flag_for_review(
                repo,
                deposit,
                event,
                f"Reported {deposit.amount}, observed {event.amount} on chain",
            )

        return await self._confirm_attached(repo, deposit, event)

    async def _attach(
        self, repo: LedgerRepository, deposit: Deposit, event: DepositEvent
    ) -> None:
        deposit.tx_hash = event.tx_hash
        deposit.tron_address = event.address
        deposit.block_number = event.block_number
        deposit.on_chain_amount = event.amount
        await repo.session.flush()

    async def _confirm_attached(
        self, repo: LedgerRepository, deposit: Deposit, event: DepositEvent
    ) -> ReconcileOutcome:
        await self._attach(repo, deposit, event)
        # Credit what actually arrived, not what was reported
        await repo.confirm_deposit(
            deposit,
            confirmed_by=SCANNER_CONFIRMER,
            block_number=event.block_number,
            amount=event.amount,
        )
        return ReconcileOutcome.CREDITED

    async def _flag_for_review(
        self,
        repo: LedgerRepository,
        deposit: Deposit,
        event: DepositEvent,
        note: str,
    ) -> ReconcileOutcome:
        await self._attach(repo, deposit, event)
        deposit.review_note = note
        await repo.session.flush()
        return ReconcileOutcome.AMOUNT_MISMATCH
