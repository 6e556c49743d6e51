"""Tests for deposit reconciliation."""

from decimal import Decimal

import pytest

from trondeposit.ledger.database import get_db
from trondeposit.ledger.models import DepositStatus
from trondeposit.ledger.repository import LedgerRepository
from trondeposit.scanner.base import DepositEvent
from trondeposit.services.reconciler import DepositReconciler, ReconcileOutcome


@pytest.fixture
def funded_user(create_user, registry):
    """Create a user with an assigned deposit address."""

    async def _create(telegram_id: int):
        user_id = await create_user(telegram_id)
        address = await registry.get_or_create_address(user_id)
        return user_id, address

    return _create


@pytest.fixture
def self_report(session_factory):
    """Record a user's "I paid" report directly in the ledger."""

    async def _report(user_id: int, amount: str, tx_hash: str = None):
        async with get_db(session_factory) as session:
            deposit = await LedgerRepository(session).create_deposit(
                user_id=user_id, amount=Decimal(amount), tx_hash=tx_hash
            )
            return deposit.id

    return _report


@pytest.fixture
def load_deposits(session_factory):
    async def _load(user_id: int):
        async with get_db(session_factory) as session:
            return await LedgerRepository(session).get_user_deposits(user_id, limit=100)

    return _load


def make_event(user_id, address, amount, tx_hash="abc", block_number=1000) -> DepositEvent:
    return DepositEvent(
        address=address,
        user_id=user_id,
        amount=Decimal(amount),
        tx_hash=tx_hash,
        block_number=block_number,
    )


class TestAmountTolerance:
    def test_within_tolerance(self):
        reconciler = DepositReconciler(amount_tolerance=Decimal("0.01"))

        assert reconciler.amounts_match(Decimal("100"), Decimal("100.005"))
        assert reconciler.amounts_match(Decimal("100"), Decimal("99.99"))
        assert not reconciler.amounts_match(Decimal("100"), Decimal("99.98"))


class TestNewTransfer:
    """Transfers with no matching record."""

    @pytest.mark.asyncio
    async def test_credits_new_deposit(
        self, reconciler: DepositReconciler, funded_user, get_user, load_deposits
    ):
        user_id, address = await funded_user(1)

        outcome = await reconciler.reconcile(make_event(user_id, address, "100"))

        assert outcome == ReconcileOutcome.CREDITED
        user = await get_user(user_id)
        assert user.available_balance == Decimal("100")
        [deposit] = await load_deposits(user_id)
        assert deposit.status == DepositStatus.CONFIRMED
        assert deposit.tx_hash == "abc"
        assert deposit.block_number == 1000
        assert deposit.confirmed_by == "scanner"
        assert deposit.tron_address == address

    @pytest.mark.asyncio
    async def test_replay_credits_exactly_once(
        self, reconciler: DepositReconciler, funded_user, get_user, load_deposits
    ):
        user_id, address = await funded_user(2)
        event = make_event(user_id, address, "100")

        outcomes = [await reconciler.reconcile(event) for _ in range(3)]

        assert outcomes == [
            ReconcileOutcome.CREDITED,
            ReconcileOutcome.DUPLICATE_IGNORED,
            ReconcileOutcome.DUPLICATE_IGNORED,
        ]
        user = await get_user(user_id)
        assert user.available_balance == Decimal("100")
        assert len(await load_deposits(user_id)) == 1


class TestSelfReports:
    """Transfers matched against pending self-reports."""

    @pytest.mark.asyncio
    async def test_self_report_attached_and_confirmed(
        self, reconciler, funded_user, self_report, get_user, load_deposits
    ):
        user_id, address = await funded_user(3)
        report_id = await self_report(user_id, "100")

        outcome = await reconciler.reconcile(make_event(user_id, address, "100", tx_hash="def"))

        assert outcome == ReconcileOutcome.CREDITED
        [deposit] = await load_deposits(user_id)
        assert deposit.id == report_id
        assert deposit.status == DepositStatus.CONFIRMED
        assert deposit.tx_hash == "def"
        assert deposit.block_number == 1000
        user = await get_user(user_id)
        assert user.available_balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_amount_mismatch_left_for_review(
        self, reconciler, funded_user, self_report, get_user, load_deposits
    ):
        user_id, address = await funded_user(4)
        report_id = await self_report(user_id, "100")

        outcome = await reconciler.reconcile(make_event(user_id, address, "90", tx_hash="mm"))

        assert outcome == ReconcileOutcome.AMOUNT_MISMATCH
        user = await get_user(user_id)
        assert user.available_balance == Decimal("0")
        [deposit] = await load_deposits(user_id)
        assert deposit.id == report_id
        assert deposit.status == DepositStatus.PENDING
        assert deposit.tx_hash == "mm"
        assert deposit.on_chain_amount == Decimal("90")
        assert deposit.amount == Decimal("100")
        assert "90" in deposit.review_note

    @pytest.mark.asyncio
    async def test_mismatch_replay_stays_mismatch(
        self, reconciler, funded_user, self_report, get_user, load_deposits
    ):
        user_id, address = await funded_user(5)
        await self_report(user_id, "100")
        event = make_event(user_id, address, "90", tx_hash="mm2")

        await reconciler.reconcile(event)
        outcome = await reconciler.reconcile(event)

        assert outcome == ReconcileOutcome.AMOUNT_MISMATCH
        assert len(await load_deposits(user_id)) == 1
        assert (await get_user(user_id)).available_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_matching_report_preferred_over_older(
        self, reconciler, funded_user, self_report, load_deposits
    ):
        user_id, address = await funded_user(6)
        older_id = await self_report(user_id, "50")
        matching_id = await self_report(user_id, "75")

        outcome = await reconciler.reconcile(make_event(user_id, address, "75", tx_hash="pick"))

        assert outcome == ReconcileOutcome.CREDITED
        deposits = {d.id: d for d in await load_deposits(user_id)}
        assert deposits[matching_id].status == DepositStatus.CONFIRMED
        assert deposits[older_id].status == DepositStatus.PENDING
        assert deposits[older_id].tx_hash is None

    @pytest.mark.asyncio
    async def test_report_with_tx_hash_confirmed(
        self, reconciler, funded_user, self_report, get_user, load_deposits
    ):
        user_id, address = await funded_user(7)
        await self_report(user_id, "20", tx_hash="known")

        outcome = await reconciler.reconcile(make_event(user_id, address, "20", tx_hash="known"))

        assert outcome == ReconcileOutcome.CREDITED
        [deposit] = await load_deposits(user_id)
        assert deposit.status == DepositStatus.CONFIRMED
        assert (await get_user(user_id)).available_balance == Decimal("20")

    @pytest.mark.asyncio
    async def test_report_from_other_user_flagged(
        self, reconciler, funded_user, self_report, get_user
    ):
        """A tx hash claimed by someone else is never credited automatically."""
        owner_id, address = await funded_user(8)
        claimant_id, _ = await funded_user(9)
        await self_report(claimant_id, "20", tx_hash="claimed")

        outcome = await reconciler.reconcile(make_event(owner_id, address, "20", tx_hash="claimed"))

        assert outcome == ReconcileOutcome.AMOUNT_MISMATCH
        assert (await get_user(owner_id)).available_balance == Decimal("0")
        assert (await get_user(claimant_id)).available_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_rejected_deposit_not_credited(
        self, reconciler, funded_user, self_report, session_factory, get_user
    ):
        user_id, address = await funded_user(10)
        report_id = await self_report(user_id, "20", tx_hash="rejected")
        async with get_db(session_factory) as session:
            repo = LedgerRepository(session)
            await repo.fail_deposit(await repo.get_deposit(report_id), "admin", "fraud")

        outcome = await reconciler.reconcile(make_event(user_id, address, "20", tx_hash="rejected"))

        assert outcome == ReconcileOutcome.DUPLICATE_IGNORED
        assert (await get_user(user_id)).available_balance == Decimal("0")


class TestConcurrentConfirmation:
    @pytest.mark.asyncio
    async def test_operator_confirms_during_reconcile(
        self, reconciler, funded_user, self_report, session_factory, get_user, monkeypatch
    ):
        """An operator confirming the record mid-reconcile leaves one credit and no error."""
        user_id, address = await funded_user(11)
        report_id = await self_report(user_id, "20", tx_hash="raced")
        lookup = LedgerRepository.get_deposit_by_tx_hash
        calls = []

        async def lookup_then_operator_confirms(self, tx_hash):
            deposit = await lookup(self, tx_hash)
            calls.append(tx_hash)
            if len(calls) == 1:
                async with get_db(session_factory) as session:
                    repo = LedgerRepository(session)
                    await repo.confirm_deposit(await repo.get_deposit(report_id), confirmed_by="ops")
            return deposit

        monkeypatch.setattr(
            LedgerRepository, "get_deposit_by_tx_hash", lookup_then_operator_confirms
        )

        outcome = await reconciler.reconcile(make_event(user_id, address, "20", tx_hash="raced"))

        assert outcome == ReconcileOutcome.DUPLICATE_IGNORED
        assert len(calls) == 2
        async with get_db(session_factory) as session:
            deposit = await LedgerRepository(session).get_deposit(report_id)
        assert deposit.status == DepositStatus.CONFIRMED
        assert deposit.confirmed_by == "ops"
        assert (await get_user(user_id)).available_balance == Decimal("20")
