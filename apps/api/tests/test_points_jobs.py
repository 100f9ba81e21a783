from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from hustl_api.core.time import utcnow
from hustl_api.jobs.points import expire_points_reservations, run_points_consistency_audit
from hustl_api.models.points import PointBalance, PointTransactionStatus
from hustl_api.services.points import AwardEngine, PointsLedger


@pytest.mark.asyncio
async def test_expire_points_reservations_job(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")
        ledger = PointsLedger(session)
        stale = await ledger.reserve_debit(
            user_id,
            amount=30,
            activity_type="redemption",
            expires_at=utcnow() - timedelta(hours=1),
        )
        fresh = await ledger.reserve_debit(
            user_id,
            amount=20,
            activity_type="redemption",
            expires_at=utcnow() + timedelta(hours=1),
        )
        stale_id, fresh_id = stale.id, fresh.id

    summary = await expire_points_reservations(session_factory=session_factory)

    assert (summary["expired"], summary["skipped"], summary["failed"]) == (1, 0, 0)
    assert "ran_at" in summary

    async with session_factory() as session:
        ledger = PointsLedger(session)
        assert (await ledger.get_transaction(stale_id)).status == PointTransactionStatus.CANCELLED
        assert (await ledger.get_transaction(fresh_id)).status == PointTransactionStatus.PENDING
        assert await ledger.available_points(user_id) == 80


@pytest.mark.asyncio
async def test_consistency_audit_job_reports_and_repairs(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")
        await session.execute(
            update(PointBalance.__table__).where(PointBalance.__table__.c.user_id == user_id).values(current_points=75)
        )
        await session.commit()

    report_only = await run_points_consistency_audit(session_factory=session_factory)
    assert report_only == {
        "checked_users": 1,
        "mismatches": 1,
        "total_discrepancy": 25,
        "corrected": 0,
        "skipped": 0,
        "errors": 0,
    }

    repaired = await run_points_consistency_audit(session_factory=session_factory, fix=True)
    assert repaired["corrected"] == 1

    clean = await run_points_consistency_audit(session_factory=session_factory, fix=True)
    assert clean["mismatches"] == 0
    assert clean["corrected"] == 0

    async with session_factory() as session:
        assert await PointsLedger(session).current_points(user_id) == 100


@pytest.mark.asyncio
async def test_jobs_accept_async_session_factories(session_factory) -> None:
    async def _factory():
        return session_factory()

    summary = await expire_points_reservations(session_factory=_factory)

    assert summary["expired"] == 0
