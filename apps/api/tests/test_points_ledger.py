import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from hustl_api.core.time import utcnow
from hustl_api.models.points import (
    PointBalance,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)
from hustl_api.observability.points import get_points_store
from hustl_api.services.points import (
    AlreadyFinalizedError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerContentionError,
    PointsLedger,
    ReservationOutcome,
    TransactionFilters,
    TransactionNotFoundError,
    UserLockRegistry,
)

CREDIT = PointTransactionType.CREDIT
DEBIT = PointTransactionType.DEBIT


async def _credit(ledger: PointsLedger, user_id, amount: int, activity_type: str = "manual_award"):
    return await ledger.apply_transaction(
        user_id,
        transaction_type=CREDIT,
        amount=amount,
        activity_type=activity_type,
    )


@pytest.mark.asyncio
async def test_first_credit_opens_account_and_records_before_after(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        first = await _credit(ledger, user_id, 40)
        second = await _credit(ledger, user_id, 60, activity_type="DAILY_LOGIN")

        assert (first.balance_before, first.balance_after) == (0, 40)
        assert (second.balance_before, second.balance_after) == (40, 100)
        assert first.status == PointTransactionStatus.COMPLETED
        assert first.processed_at is not None
        assert await ledger.current_points(user_id) == 100
        assert await ledger.log_balance(user_id) == 100


@pytest.mark.asyncio
async def test_debit_cannot_drive_balance_negative(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 30)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.apply_transaction(user_id, transaction_type=DEBIT, amount=31, activity_type="redemption")

        assert exc_info.value.code == "insufficient_balance"
        assert exc_info.value.context == {"currentBalance": 30, "availableBalance": 30, "requestedAmount": 31}
        assert await ledger.current_points(user_id) == 30
        count = await session.scalar(
            select(func.count(PointTransaction.id)).where(PointTransaction.user_id == user_id)
        )
        assert count == 1


@pytest.mark.asyncio
async def test_debit_without_account_reports_zero_balance(session_factory) -> None:
    async with session_factory() as session:
        ledger = PointsLedger(session)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.apply_transaction(uuid4(), transaction_type=DEBIT, amount=5, activity_type="redemption")

    assert exc_info.value.current_balance == 0
    assert exc_info.value.available_balance == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
async def test_rejects_non_positive_or_non_integer_amounts(session_factory, amount) -> None:
    async with session_factory() as session:
        ledger = PointsLedger(session)
        with pytest.raises(InvalidAmountError):
            await ledger.apply_transaction(uuid4(), transaction_type=CREDIT, amount=amount, activity_type="manual_award")
        with pytest.raises(InvalidAmountError):
            await ledger.reserve_debit(uuid4(), amount=amount, activity_type="redemption")


@pytest.mark.asyncio
async def test_failure_after_insert_rolls_back_the_whole_write(session_factory) -> None:
    user_id = uuid4()

    async def _explode(transaction: PointTransaction) -> None:
        raise RuntimeError("downstream write failed")

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 50)

        with pytest.raises(RuntimeError):
            await ledger.apply_transaction(
                user_id,
                transaction_type=CREDIT,
                amount=25,
                activity_type="manual_award",
                then=_explode,
            )

        assert await ledger.current_points(user_id) == 50
        count = await session.scalar(
            select(func.count(PointTransaction.id)).where(PointTransaction.user_id == user_id)
        )
        assert count == 1


@pytest.mark.asyncio
async def test_guard_runs_before_any_write(session_factory) -> None:
    user_id = uuid4()

    async def _refuse() -> None:
        raise PermissionError("not today")

    async with session_factory() as session:
        ledger = PointsLedger(session)
        with pytest.raises(PermissionError):
            await ledger.apply_transaction(
                user_id,
                transaction_type=CREDIT,
                amount=10,
                activity_type="manual_award",
                guard=_refuse,
            )

        assert await ledger.get_balance(user_id) is None


@pytest.mark.asyncio
async def test_reservation_holds_available_points_without_moving_balance(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 100)

        reservation = await ledger.reserve_debit(user_id, amount=70, activity_type="redemption")

        assert reservation.status == PointTransactionStatus.PENDING
        assert reservation.reserved_at is not None
        assert await ledger.current_points(user_id) == 100
        assert await ledger.pending_reserved_points(user_id) == 70
        assert await ledger.available_points(user_id) == 30
        assert await ledger.log_balance(user_id) == 100

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.reserve_debit(user_id, amount=31, activity_type="redemption")
        assert exc_info.value.available_balance == 30

        await ledger.reserve_debit(user_id, amount=30, activity_type="redemption")
        assert await ledger.available_points(user_id) == 0


@pytest.mark.asyncio
async def test_finalize_complete_debits_balance_once(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 100)
        reservation = await ledger.reserve_debit(user_id, amount=40, activity_type="redemption")
        reservation_id = reservation.id
        admin_id = uuid4()

        completed = await ledger.finalize_reservation(
            reservation_id,
            ReservationOutcome.COMPLETE,
            processed_by=admin_id,
        )
        assert completed.status == PointTransactionStatus.COMPLETED
        assert (completed.balance_before, completed.balance_after) == (100, 60)
        assert completed.processed_by == admin_id

        with pytest.raises(AlreadyFinalizedError):
            await ledger.finalize_reservation(reservation_id, ReservationOutcome.COMPLETE)

        assert await ledger.current_points(user_id) == 60
        assert await ledger.log_balance(user_id) == 60
        assert await ledger.available_points(user_id) == 60


@pytest.mark.asyncio
async def test_finalize_cancel_releases_hold(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 100)
        reservation = await ledger.reserve_debit(user_id, amount=100, activity_type="redemption")
        reservation_id = reservation.id

        cancelled = await ledger.finalize_reservation(reservation_id, ReservationOutcome.CANCEL)
        assert cancelled.status == PointTransactionStatus.CANCELLED

        with pytest.raises(AlreadyFinalizedError):
            await ledger.finalize_reservation(reservation_id, ReservationOutcome.COMPLETE)

        assert await ledger.current_points(user_id) == 100
        assert await ledger.available_points(user_id) == 100


@pytest.mark.asyncio
async def test_finalize_unknown_or_non_reservation_is_not_found(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        credit = await _credit(ledger, user_id, 10)
        credit_id = credit.id

        with pytest.raises(TransactionNotFoundError):
            await ledger.finalize_reservation(uuid4(), ReservationOutcome.COMPLETE)
        with pytest.raises(TransactionNotFoundError):
            await ledger.finalize_reservation(credit_id, ReservationOutcome.CANCEL)

        assert await ledger.current_points(user_id) == 10


@pytest.mark.asyncio
async def test_balance_row_version_moves_on_every_write(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 20)
        first_version = await session.scalar(select(PointBalance.version).where(PointBalance.user_id == user_id))

        reservation = await ledger.reserve_debit(user_id, amount=5, activity_type="redemption")
        reserved_version = await session.scalar(select(PointBalance.version).where(PointBalance.user_id == user_id))

        await ledger.finalize_reservation(reservation.id, ReservationOutcome.CANCEL)
        final_version = await session.scalar(select(PointBalance.version).where(PointBalance.user_id == user_id))

    assert first_version < reserved_version < final_version


@pytest.mark.asyncio
async def test_history_is_newest_first_with_filters_and_cursor(session_factory) -> None:
    user_id = uuid4()
    other_user = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        for amount in (5, 10, 15):
            await _credit(ledger, user_id, amount, activity_type="DAILY_LOGIN")
        await _credit(ledger, user_id, 50, activity_type="manual_award")
        await ledger.apply_transaction(user_id, transaction_type=DEBIT, amount=20, activity_type="redemption")
        await _credit(ledger, other_user, 99)

        page = await ledger.get_transaction_history(user_id, limit=2)
        assert page.total == 5
        assert [item.balance_after for item in page.items] == [60, 80]
        assert page.next_cursor is not None

        second = await ledger.get_transaction_history(user_id, limit=2, cursor=page.next_cursor)
        assert [item.balance_after for item in second.items] == [30, 15]

        third = await ledger.get_transaction_history(user_id, limit=2, cursor=second.next_cursor)
        assert [item.balance_after for item in third.items] == [5]
        assert third.next_cursor is None

        logins = await ledger.get_transaction_history(
            user_id,
            filters=TransactionFilters(activity_type="DAILY_LOGIN"),
        )
        assert logins.total == 3

        debits = await ledger.get_transaction_history(user_id, filters=TransactionFilters(transaction_type=DEBIT))
        assert [item.amount for item in debits.items] == [20]

        future = await ledger.get_transaction_history(
            user_id,
            filters=TransactionFilters(start=utcnow() + timedelta(hours=1)),
        )
        assert future.total == 0

        everyone = await ledger.get_transaction_history(None)
        assert everyone.total == 6


@pytest.mark.asyncio
async def test_snapshot_summarises_account(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await _credit(ledger, user_id, 120)
        await ledger.apply_transaction(user_id, transaction_type=DEBIT, amount=20, activity_type="redemption")
        await ledger.reserve_debit(user_id, amount=30, activity_type="redemption")

        snapshot = await ledger.snapshot(user_id)

    assert snapshot.current_points == 100
    assert snapshot.pending_points == 30
    assert snapshot.available_points == 70
    assert snapshot.total_earned == 120
    assert snapshot.total_spent == 20
    assert (snapshot.credit_count, snapshot.debit_count, snapshot.pending_count) == (1, 1, 1)


@pytest.mark.asyncio
async def test_lock_timeout_surfaces_as_contention(session_factory) -> None:
    user_id = uuid4()
    registry = UserLockRegistry()

    async with session_factory() as session:
        ledger = PointsLedger(session, locks=registry, lock_timeout_seconds=0.05)
        async with registry.hold(user_id):
            with pytest.raises(LedgerContentionError) as exc_info:
                await _credit(ledger, user_id, 10)

        assert exc_info.value.status_code == 500
        assert await ledger.get_balance(user_id) is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lost_version_race_is_retried(session_factory) -> None:
    user_id = uuid4()
    conflicts = 0

    async def _conflict_once() -> None:
        nonlocal conflicts
        if conflicts == 0:
            conflicts += 1
            raise StaleDataError("point_balances row version changed")

    async with session_factory() as session:
        ledger = PointsLedger(session, max_attempts=3)
        transaction = await ledger.apply_transaction(
            user_id,
            transaction_type=CREDIT,
            amount=25,
            activity_type="manual_award",
            guard=_conflict_once,
        )

        assert transaction.balance_after == 25
        assert await ledger.current_points(user_id) == 25

    snapshot = get_points_store().snapshot()
    assert snapshot.write_retries == 1
    assert snapshot.contention_failures == 0


@pytest.mark.asyncio
async def test_repeated_version_conflicts_give_up_with_contention(session_factory) -> None:
    user_id = uuid4()
    attempts = 0

    async def _always_stale() -> None:
        nonlocal attempts
        attempts += 1
        raise StaleDataError("point_balances row version changed")

    async with session_factory() as session:
        ledger = PointsLedger(session, max_attempts=3)
        with pytest.raises(LedgerContentionError) as exc_info:
            await ledger.apply_transaction(
                user_id,
                transaction_type=CREDIT,
                amount=25,
                activity_type="manual_award",
                guard=_always_stale,
            )

        assert exc_info.value.context["attempts"] == 3
        assert await ledger.get_balance(user_id) is None

    assert attempts == 3
    snapshot = get_points_store().snapshot()
    assert snapshot.write_retries == 3
    assert snapshot.contention_failures == 1


@pytest.mark.asyncio
async def test_lock_registry_serialises_one_user_but_not_others() -> None:
    registry = UserLockRegistry()
    alice, bob = uuid4(), uuid4()
    order: list[str] = []

    async def _hold(user_id, label: str, delay: float) -> None:
        async with registry.hold(user_id):
            order.append(f"{label}:start")
            await asyncio.sleep(delay)
            order.append(f"{label}:end")

    await asyncio.gather(_hold(alice, "a1", 0.05), _hold(alice, "a2", 0), _hold(bob, "b1", 0))

    assert order.index("a1:end") < order.index("a2:start")
    assert order.index("b1:start") < order.index("a1:end")
    assert len(registry) == 0
