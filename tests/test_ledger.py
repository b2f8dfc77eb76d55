from decimal import Decimal

import pytest

from hesco.services.errors import AlreadyApplied, DuplicateReference, InsufficientBalance
from hesco.services.ledger.guard import idempotency_guard
from hesco.services.ledger.service import TransactionType, ledger_store

USER = 1001


async def _apply(session, delta, tx_type, key):
    tx = await ledger_store.apply(session, USER, Decimal(delta), tx_type, key)
    await session.commit()
    return tx


class TestApply:
    async def test_credit_records_before_and_after(self, session):
        first = await _apply(session, "15", TransactionType.TASK_REWARD, "t-1")
        second = await _apply(session, "30", TransactionType.REFERRAL_REWARD, "t-2")

        assert first.balance_before == Decimal("0.00")
        assert first.balance_after == Decimal("15.00")
        assert second.balance_before == first.balance_after
        assert second.balance_after == Decimal("45.00")

        snap = await ledger_store.snapshot(session, USER)
        assert snap.available_balance == Decimal("45.00")
        assert snap.total_earned == Decimal("45.00")
        assert snap.plan_balance == Decimal("0.00")

    async def test_plan_activation_moves_plan_bucket(self, session):
        await _apply(session, "1000", TransactionType.PLAN_ACTIVATION, "p-1")
        snap = await ledger_store.snapshot(session, USER)
        assert snap.plan_balance == Decimal("1000.00")
        assert snap.available_balance == Decimal("0.00")
        assert snap.total_earned == Decimal("1000.00")

    async def test_debit_cannot_go_negative(self, session):
        await _apply(session, "10", TransactionType.TASK_REWARD, "t-1")
        with pytest.raises(InsufficientBalance):
            await ledger_store.apply(session, USER, Decimal("-10.01"), TransactionType.WITHDRAWAL, "w-1")
        await session.rollback()

        snap = await ledger_store.snapshot(session, USER)
        assert snap.available_balance == Decimal("10.00")
        assert len(await ledger_store.history(session, USER)) == 1

    async def test_withdrawal_does_not_touch_total_earned(self, session):
        await _apply(session, "50", TransactionType.TASK_REWARD, "t-1")
        await _apply(session, "-20", TransactionType.WITHDRAWAL, "w-1")
        snap = await ledger_store.snapshot(session, USER)
        assert snap.available_balance == Decimal("30.00")
        assert snap.total_earned == Decimal("50.00")

    async def test_duplicate_reference_key(self, session):
        await _apply(session, "15", TransactionType.TASK_REWARD, "t-1")
        with pytest.raises(DuplicateReference):
            await ledger_store.apply(session, USER, Decimal("15"), TransactionType.TASK_REWARD, "t-1")
        await session.rollback()
        assert (await ledger_store.snapshot(session, USER)).available_balance == Decimal("15.00")

    @pytest.mark.parametrize(
        "delta, tx_type",
        [
            ("0", TransactionType.TASK_REWARD),
            ("-5", TransactionType.TASK_REWARD),
            ("5", TransactionType.WITHDRAWAL),
        ],
    )
    async def test_sign_must_match_type(self, session, delta, tx_type):
        with pytest.raises(ValueError):
            await ledger_store.apply(session, USER, Decimal(delta), tx_type, "bad")


class TestIdempotencyGuard:
    async def test_second_reserve_raises(self, session):
        await idempotency_guard.reserve(session, "k-1")
        await session.commit()
        assert await idempotency_guard.is_reserved(session, "k-1")
        with pytest.raises(AlreadyApplied):
            await idempotency_guard.reserve(session, "k-1")
        await session.rollback()

    async def test_rolled_back_reservation_is_released(self, session):
        await idempotency_guard.reserve(session, "k-2")
        await session.rollback()
        await idempotency_guard.reserve(session, "k-2")
        await session.commit()
        assert await idempotency_guard.is_reserved(session, "k-2")


class TestReplay:
    async def test_replay_matches_stored_balance(self, session):
        await _apply(session, "1000", TransactionType.PLAN_ACTIVATION, "p-1")
        await _apply(session, "30", TransactionType.TASK_REWARD, "t-1")
        await _apply(session, "50", TransactionType.REFERRAL_REWARD, "r-1")
        await _apply(session, "-60", TransactionType.WITHDRAWAL, "w-1")
        await _apply(session, "-250", TransactionType.PLAN_WITHDRAWAL, "w-1:plan")
        await _apply(session, "60", TransactionType.WITHDRAWAL_REFUND, "wr-1")

        report = await ledger_store.replay(session, USER)
        assert report.entries == 6
        assert report.consistent
        assert report.replayed.as_tuple() == (Decimal("750.00"), Decimal("80.00"), Decimal("1080.00"))

    async def test_history_newest_first(self, session):
        await _apply(session, "15", TransactionType.TASK_REWARD, "t-1")
        await _apply(session, "10", TransactionType.TASK_REWARD, "t-2")
        keys = [tx.reference_key for tx in await ledger_store.history(session, USER)]
        assert keys == ["t-2", "t-1"]

    async def test_empty_user(self, session):
        report = await ledger_store.replay(session, 424242)
        assert report.entries == 0
        assert report.consistent
