from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from hustl_api.core.time import utcnow
from hustl_api.models.points import PointBalance, PointTransaction
from hustl_api.services.points import (
    AwardEngine,
    ConsistencyAuditor,
    LeaderboardPeriod,
    LeaderboardReader,
    RedemptionWorkflow,
)
from hustl_api.services.points.leaderboard import period_window


async def _backdate(session, user_id, days: int) -> None:
    table = PointTransaction.__table__
    await session.execute(
        update(table).where(table.c.user_id == user_id).values(processed_at=utcnow() - timedelta(days=days))
    )
    await session.commit()


@pytest.mark.asyncio
async def test_all_time_ranks_by_net_points_with_shared_ranks(session_factory) -> None:
    alice, bob, carol, dave = (uuid4() for _ in range(4))

    async with session_factory() as session:
        engine = AwardEngine(session)
        workflow = RedemptionWorkflow(session)
        for user_id, amount in ((alice, 100), (bob, 100), (carol, 40), (dave, 100)):
            await engine.award_manual(user_id, amount, uuid4(), "Seed")
        spent = await workflow.request_redemption(dave, 30, "cash")
        await workflow.process_redemption(spent.id, uuid4(), "approve")
        await workflow.request_redemption(carol, 40, "cash")

        board = await LeaderboardReader(session).top(LeaderboardPeriod.ALL_TIME)

    tied = sorted([alice, bob])
    assert board.window_start is None and board.window_end is None
    assert [(entry.rank, entry.user_id, entry.net_points) for entry in board.entries] == [
        (1, tied[0], 100),
        (1, tied[1], 100),
        (3, dave, 70),
        (4, carol, 40),
    ]
    dave_entry = board.entries[2]
    assert (dave_entry.earned_points, dave_entry.spent_points) == (100, 30)


@pytest.mark.asyncio
async def test_corrections_do_not_move_the_board(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 80, uuid4(), "Seed")
        await session.execute(
            update(PointBalance.__table__).where(PointBalance.__table__.c.user_id == user_id).values(current_points=0)
        )
        await session.commit()
        await ConsistencyAuditor(session).fix_inconsistent_balances()

        entry = await LeaderboardReader(session).rank_for_user(user_id, LeaderboardPeriod.ALL_TIME)

    assert entry.net_points == 80
    assert entry.earned_points == 80


@pytest.mark.asyncio
async def test_daily_and_monthly_windows_use_processing_time(session_factory) -> None:
    veteran, newcomer = uuid4(), uuid4()

    async with session_factory() as session:
        engine = AwardEngine(session)
        await engine.award_manual(veteran, 500, uuid4(), "Seed")
        await engine.award_manual(newcomer, 20, uuid4(), "Seed")
        await _backdate(session, veteran, days=40)
        reader = LeaderboardReader(session)

        daily = await reader.top(LeaderboardPeriod.DAILY)
        monthly = await reader.top(LeaderboardPeriod.MONTHLY)
        all_time = await reader.top(LeaderboardPeriod.ALL_TIME)

        assert await reader.rank_for_user(veteran, LeaderboardPeriod.DAILY) is None
        newcomer_all_time = await reader.rank_for_user(newcomer, LeaderboardPeriod.ALL_TIME)

    assert [entry.user_id for entry in daily.entries] == [newcomer]
    assert [entry.user_id for entry in monthly.entries] == [newcomer]
    assert [entry.user_id for entry in all_time.entries] == [veteran, newcomer]
    assert newcomer_all_time.rank == 2
    assert daily.window_start <= utcnow() < daily.window_end


@pytest.mark.asyncio
async def test_limit_and_unknown_user(session_factory) -> None:
    users = [uuid4() for _ in range(5)]

    async with session_factory() as session:
        engine = AwardEngine(session)
        for index, user_id in enumerate(users):
            await engine.award_manual(user_id, 10 * (index + 1), uuid4(), "Seed")
        reader = LeaderboardReader(session)

        board = await reader.top(LeaderboardPeriod.ALL_TIME, limit=2)
        missing = await reader.rank_for_user(uuid4(), LeaderboardPeriod.ALL_TIME)

    assert [entry.net_points for entry in board.entries] == [50, 40]
    assert missing is None


def test_period_windows() -> None:
    moment = datetime(2026, 2, 14, 18, 30, tzinfo=timezone.utc)

    assert period_window(LeaderboardPeriod.DAILY, moment) == (
        datetime(2026, 2, 14, tzinfo=timezone.utc),
        datetime(2026, 2, 15, tzinfo=timezone.utc),
    )
    assert period_window(LeaderboardPeriod.MONTHLY, moment) == (
        datetime(2026, 2, 1, tzinfo=timezone.utc),
        datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    assert period_window(LeaderboardPeriod.ALL_TIME, moment) == (None, None)
    assert LeaderboardPeriod("all-time") is LeaderboardPeriod.ALL_TIME
