"""Tests for the deposit service flows."""

from decimal import Decimal

import pytest

from trondeposit.exceptions import (
    DepositNotFoundError,
    DepositStateError,
    DuplicateTransactionError,
    InvalidDepositError,
    UserNotFoundError,
)
from trondeposit.ledger.models import DepositStatus
from trondeposit.scanner.base import DepositEvent
from trondeposit.services.deposits import DepositService, normalize_tx_hash, parse_amount
from trondeposit.services.reconciler import ReconcileOutcome

TX = "ab" * 32


@pytest.fixture
def service(registry, checkpoint, session_factory) -> DepositService:
    return DepositService(registry=registry, checkpoint=checkpoint, session_factory=session_factory)


class TestValidation:
    def test_normalize_tx_hash(self):
        assert normalize_tx_hash("0x" + TX.upper()) == TX
        assert normalize_tx_hash(f"  {TX} ") == TX

    @pytest.mark.parametrize("value", ["", "0x12", "zz" * 32, TX + "00"])
    def test_invalid_tx_hash(self, value):
        with pytest.raises(InvalidDepositError):
            normalize_tx_hash(value)

    def test_parse_amount(self):
        assert parse_amount("12.5") == Decimal("12.5")
        assert parse_amount(3) == Decimal("3")

    @pytest.mark.parametrize("value", ["0", "-1", "abc", "NaN", "Infinity", "1000000001"])
    def test_invalid_amount(self, value):
        with pytest.raises(InvalidDepositError):
            parse_amount(value)


class TestUserFlows:
    @pytest.mark.asyncio
    async def test_start_deposit(self, service: DepositService, wallet):
        user = await service.register_user(10, "alice")

        result = await service.start_deposit(user.id)

        assert result.address == wallet.derive_address(0).address
        assert result.qr_code.startswith("data:image/svg+xml;base64,")
        assert (await service.start_deposit(user.id)).address == result.address

    @pytest.mark.asyncio
    async def test_create_deposit_pending(self, service: DepositService):
        user = await service.register_user(11)
        address = (await service.start_deposit(user.id)).address

        deposit = await service.create_deposit(user.id, "25.5", "0x" + TX)

        assert deposit.status == DepositStatus.PENDING
        assert deposit.amount == Decimal("25.5")
        assert deposit.tx_hash == TX
        assert deposit.tron_address == address
        assert deposit.created_at is not None

    @pytest.mark.asyncio
    async def test_create_deposit_without_hash(self, service: DepositService):
        user = await service.register_user(12)

        first = await service.create_deposit(user.id, "1")
        second = await service.create_deposit(user.id, "1")

        assert first.id != second.id
        assert first.tx_hash is None

    @pytest.mark.asyncio
    async def test_duplicate_tx_hash(self, service: DepositService):
        user = await service.register_user(13)
        await service.create_deposit(user.id, "5", TX)

        with pytest.raises(DuplicateTransactionError):
            await service.create_deposit(user.id, "5", "0x" + TX)

    @pytest.mark.asyncio
    async def test_unknown_user(self, service: DepositService):
        with pytest.raises(UserNotFoundError):
            await service.create_deposit(999, "5")
        with pytest.raises(UserNotFoundError):
            await service.get_balance(999)


class TestOperatorFlows:
    @pytest.mark.asyncio
    async def test_manual_confirm_credits(self, service: DepositService):
        user = await service.register_user(20)
        deposit = await service.create_deposit(user.id, "40")

        confirmed = await service.manual_confirm(deposit.id, "ops", tx_hash="0x" + TX.upper())

        assert confirmed.status == DepositStatus.CONFIRMED
        assert confirmed.confirmed_by == "ops"
        assert confirmed.tx_hash == TX
        assert (await service.get_balance(user.id)).available == Decimal("40")

        with pytest.raises(DepositStateError):
            await service.manual_confirm(deposit.id, "ops")
        assert (await service.get_balance(user.id)).available == Decimal("40")

    @pytest.mark.asyncio
    async def test_manual_confirm_uses_on_chain_amount(
        self, service: DepositService, reconciler
    ):
        user = await service.register_user(21)
        address = (await service.start_deposit(user.id)).address
        deposit = await service.create_deposit(user.id, "100")
        await reconciler.reconcile(
            DepositEvent(
                address=address,
                user_id=user.id,
                amount=Decimal("90"),
                tx_hash=TX,
                block_number=5,
            )
        )

        confirmed = await service.manual_confirm(deposit.id, "ops")

        assert confirmed.amount == Decimal("90")
        assert (await service.get_balance(user.id)).available == Decimal("90")

    @pytest.mark.asyncio
    async def test_manual_confirm_explicit_amount(self, service: DepositService):
        user = await service.register_user(22)
        deposit = await service.create_deposit(user.id, "100")

        await service.manual_confirm(deposit.id, "ops", amount="95", tx_hash=TX)

        assert (await service.get_balance(user.id)).available == Decimal("95")

    @pytest.mark.asyncio
    async def test_manual_confirm_requires_tx_hash(self, service: DepositService):
        user = await service.register_user(25)
        deposit = await service.create_deposit(user.id, "100")

        with pytest.raises(InvalidDepositError):
            await service.manual_confirm(deposit.id, "ops")

        assert (await service.get_deposit(deposit.id)).status == DepositStatus.PENDING
        assert (await service.get_balance(user.id)).available == Decimal("0")

    @pytest.mark.asyncio
    async def test_manual_confirm_rejects_conflicting_tx_hash(self, service: DepositService):
        user = await service.register_user(26)
        attached = await service.create_deposit(user.id, "100", tx_hash=TX)
        bare = await service.create_deposit(user.id, "50")

        with pytest.raises(InvalidDepositError):
            await service.manual_confirm(attached.id, "ops", tx_hash="ef" * 32)
        with pytest.raises(DuplicateTransactionError):
            await service.manual_confirm(bare.id, "ops", tx_hash=TX)

        assert (await service.get_balance(user.id)).available == Decimal("0")

    @pytest.mark.asyncio
    async def test_manually_confirmed_transfer_not_credited_again(
        self, service: DepositService, reconciler
    ):
        user = await service.register_user(27)
        address = (await service.start_deposit(user.id)).address
        deposit = await service.create_deposit(user.id, "100")
        await service.manual_confirm(deposit.id, "ops", tx_hash=TX)

        outcome = await reconciler.reconcile(
            DepositEvent(
                address=address,
                user_id=user.id,
                amount=Decimal("100"),
                tx_hash=TX,
                block_number=7,
            )
        )

        assert outcome == ReconcileOutcome.DUPLICATE_IGNORED
        assert (await service.get_balance(user.id)).available == Decimal("100")

    @pytest.mark.asyncio
    async def test_reject(self, service: DepositService):
        user = await service.register_user(23)
        deposit = await service.create_deposit(user.id, "100")

        rejected = await service.reject_deposit(deposit.id, "ops", "no such transfer")

        assert rejected.status == DepositStatus.FAILED
        assert rejected.review_note == "no such transfer"
        assert (await service.get_balance(user.id)).available == Decimal("0")
        with pytest.raises(DepositStateError):
            await service.manual_confirm(deposit.id, "ops")

    @pytest.mark.asyncio
    async def test_unknown_deposit(self, service: DepositService):
        with pytest.raises(DepositNotFoundError):
            await service.manual_confirm(12345, "ops")
        with pytest.raises(DepositNotFoundError):
            await service.get_deposit(12345)

    @pytest.mark.asyncio
    async def test_review_queue_and_addresses(self, service: DepositService):
        user = await service.register_user(24)
        await service.start_deposit(user.id)
        pending = await service.create_deposit(user.id, "1")

        queue = await service.list_deposits(DepositStatus.PENDING)
        addresses = await service.list_addresses()
        state = await service.get_scan_state()

        assert [d.id for d in queue] == [pending.id]
        assert [a.user_id for a in addresses] == [user.id]
        assert state.last_block_height == 0
        assert state.is_scanning is False
