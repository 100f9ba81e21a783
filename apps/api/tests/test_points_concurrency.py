import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from hustl_api.core.time import utcnow
from hustl_api.models.points import PointRedemptionStatus, PointTransaction
from hustl_api.services.points import (
    ActivityCatalog,
    AlreadyFinalizedError,
    AlreadyProcessedError,
    AwardEngine,
    ConsistencyAuditor,
    DailyLimitExceededError,
    InsufficientBalanceError,
    PointsLedger,
    RedemptionWorkflow,
    UserLockRegistry,
    get_user_lock_registry,
)


@pytest.mark.asyncio
async def test_competing_redemptions_never_overcommit(file_session_factory) -> None:
    user_id = uuid4()
    async with file_session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")

    async def _request():
        async with file_session_factory() as session:
            redemption = await RedemptionWorkflow(session).request_redemption(user_id, 30, "cash")
            return redemption.id

    results = await asyncio.gather(*(_request() for _ in range(5)), return_exceptions=True)

    succeeded = [result for result in results if not isinstance(result, BaseException)]
    rejected = [result for result in results if isinstance(result, InsufficientBalanceError)]
    assert len(succeeded) == 3
    assert len(rejected) == 2

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.current_points(user_id) == 100
        assert await ledger.pending_reserved_points(user_id) == 90
        assert await ledger.available_points(user_id) == 10
    assert len(get_user_lock_registry()) == 0


@pytest.mark.asyncio
async def test_simultaneous_completions_respect_daily_limit(file_session_factory) -> None:
    user_id = uuid4()
    async with file_session_factory() as session:
        await ActivityCatalog(session).seed_defaults()

    async def _login():
        async with file_session_factory() as session:
            transaction = await AwardEngine(session).award_daily_login(user_id)
            return transaction.amount

    results = await asyncio.gather(*(_login() for _ in range(6)), return_exceptions=True)

    assert sorted(result for result in results if isinstance(result, int)) == [5]
    assert sum(isinstance(result, DailyLimitExceededError) for result in results) == 5

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.current_points(user_id) == 5
        assert await ledger.log_balance(user_id) == 5


@pytest.mark.asyncio
async def test_approve_and_cancel_race_has_one_winner(file_session_factory, ledger_events) -> None:
    user_id = uuid4()
    async with file_session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")
        redemption = await RedemptionWorkflow(session).request_redemption(user_id, 60, "cash")
        redemption_id = redemption.id

    async def _approve():
        async with file_session_factory() as session:
            result = await RedemptionWorkflow(session).process_redemption(redemption_id, uuid4(), "approve")
            return result.status.value

    async def _cancel():
        async with file_session_factory() as session:
            result = await RedemptionWorkflow(session).cancel_redemption(redemption_id, user_id)
            return result.status.value

    results = await asyncio.gather(_approve(), _cancel(), _approve(), return_exceptions=True)

    winners = [result for result in results if isinstance(result, str)]
    losers = [result for result in results if isinstance(result, (AlreadyProcessedError, AlreadyFinalizedError))]
    assert len(winners) == 1
    assert len(losers) == 2

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        expected = 40 if winners[0] == "approved" else 100
        assert await ledger.current_points(user_id) == expected
        assert await ledger.available_points(user_id) == expected
    assert len(ledger_events.of_type("redemption.approved")) + len(ledger_events.of_type("redemption.cancelled")) == 1


@pytest.mark.asyncio
async def test_parallel_writes_across_users_stay_consistent(file_session_factory) -> None:
    users = [uuid4() for _ in range(4)]

    async def _churn(user_id):
        async with file_session_factory() as session:
            engine = AwardEngine(session)
            workflow = RedemptionWorkflow(session)
            for _ in range(3):
                await engine.award_manual(user_id, 20, uuid4(), "Batch")
            redemption = await workflow.request_redemption(user_id, 25, "cash")
            await workflow.process_redemption(redemption.id, uuid4(), "approve")

    await asyncio.gather(*(_churn(user_id) for user_id in users))

    async with file_session_factory() as session:
        report = await ConsistencyAuditor(session).check_consistency()
        ledger = PointsLedger(session)
        balances = [await ledger.current_points(user_id) for user_id in users]

    assert report.checked_users == 4
    assert report.is_consistent
    assert balances == [35, 35, 35, 35]


@pytest.mark.asyncio
async def test_late_approval_racing_expiry_sweep_debits_once(file_session_factory, ledger_events) -> None:
    user_id = uuid4()
    async with file_session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")
        redemption = await RedemptionWorkflow(session).request_redemption(user_id, 60, "cash")
        redemption_id, transaction_id = redemption.id, redemption.transaction_id
        await session.execute(
            update(PointTransaction.__table__)
            .where(PointTransaction.__table__.c.id == transaction_id)
            .values(expires_at=utcnow() - timedelta(minutes=5))
        )
        await session.commit()

    async def _approve():
        async with file_session_factory() as session:
            result = await RedemptionWorkflow(session).process_redemption(redemption_id, uuid4(), "approve")
            return result.status.value

    async def _sweep():
        async with file_session_factory() as session:
            return await RedemptionWorkflow(session).expire_stale_reservations()

    approval, sweep = await asyncio.gather(_approve(), _sweep(), return_exceptions=True)

    assert not isinstance(sweep, BaseException)
    assert sweep.failed == 0
    if approval == "approved":
        assert sweep.expired == 0
        expected_balance, expected_status = 40, PointRedemptionStatus.APPROVED
    else:
        assert isinstance(approval, (AlreadyProcessedError, AlreadyFinalizedError))
        assert (sweep.expired, sweep.skipped) == (1, 0)
        expected_balance, expected_status = 100, PointRedemptionStatus.CANCELLED

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.current_points(user_id) == expected_balance
        assert await ledger.available_points(user_id) == expected_balance
        assert await ledger.log_balance(user_id) == expected_balance
        assert (await RedemptionWorkflow(session).get_redemption(redemption_id)).status == expected_status
    assert len(ledger_events.of_type("redemption.approved")) + len(ledger_events.of_type("redemption.cancelled")) == 1


@pytest.mark.asyncio
async def test_reservations_from_separate_processes_never_overcommit(file_session_factory) -> None:
    user_id = uuid4()
    async with file_session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")

    async def _reserve():
        async with file_session_factory() as session:
            ledger = PointsLedger(session, locks=UserLockRegistry())
            transaction = await ledger.reserve_debit(user_id, amount=30, activity_type="redemption")
            return transaction.amount

    results = await asyncio.gather(*(_reserve() for _ in range(5)), return_exceptions=True)

    assert sorted(result for result in results if isinstance(result, int)) == [30, 30, 30]
    assert sum(isinstance(result, InsufficientBalanceError) for result in results) == 2

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.current_points(user_id) == 100
        assert await ledger.pending_reserved_points(user_id) == 90
        assert await ledger.available_points(user_id) == 10
        assert await ledger.log_balance(user_id) == 100
