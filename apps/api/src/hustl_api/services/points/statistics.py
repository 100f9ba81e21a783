"""Aggregate reporting over the ledger for admin dashboards."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.time import ensure_utc
from hustl_api.models.points import (
    LedgerProvenance,
    PointBalance,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)

from .activities import ActivityCatalog, ActivityEligibility
from .auditor import ConsistencyAuditor
from .errors import AccountNotFoundError
from .ledger import BalanceSnapshot, PointsLedger
from .redemptions import RedemptionWorkflow


@dataclass
class ActivityBreakdown:
    activity_type: str
    transaction_count: int
    total_points: int


@dataclass
class SystemStatistics:
    start: datetime | None
    end: datetime | None
    total_transactions: int
    total_points_awarded: int
    total_points_redeemed: int
    active_users: int
    net_points_in_circulation: int
    accounts: int
    total_cached_points: int
    pending_redemptions: int
    pending_redemption_points: int
    is_consistent: bool
    drifting_accounts: int
    by_activity: list[ActivityBreakdown] = field(default_factory=list)
    top_balances: list[tuple[UUID, int]] = field(default_factory=list)


@dataclass
class UserBalanceDetail:
    snapshot: BalanceSnapshot
    computed_balance: int
    recent_transactions: list[PointTransaction]
    activities: list[ActivityEligibility]

    @property
    def is_consistent(self) -> bool:
        return self.snapshot.current_points == self.computed_balance


class PointsStatisticsService:
    def __init__(self, db_session: AsyncSession, *, ledger: PointsLedger | None = None) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)

    async def system_statistics(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        top: int = 10,
    ) -> SystemStatistics:
        window = [
            PointTransaction.status == PointTransactionStatus.COMPLETED,
            PointTransaction.activity_type != LedgerProvenance.CORRECTION.value,
        ]
        if start is not None:
            window.append(PointTransaction.processed_at >= ensure_utc(start))
        if end is not None:
            window.append(PointTransaction.processed_at <= ensure_utc(end))

        is_credit = PointTransaction.transaction_type == PointTransactionType.CREDIT
        is_debit = PointTransaction.transaction_type == PointTransactionType.DEBIT
        totals_stmt = select(
            func.count(PointTransaction.id),
            func.coalesce(func.sum(case((is_credit, PointTransaction.amount), else_=0)), 0),
            func.coalesce(
                func.sum(
                    case(
                        (
                            is_debit & (PointTransaction.activity_type == LedgerProvenance.REDEMPTION.value),
                            PointTransaction.amount,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(func.sum(case((is_debit, PointTransaction.amount), else_=0)), 0),
            func.count(distinct(PointTransaction.user_id)),
        ).where(*window)
        total_count, awarded, redeemed, debited, active_users = (await self._db.execute(totals_stmt)).one()

        by_activity_stmt = (
            select(
                PointTransaction.activity_type,
                func.count(PointTransaction.id),
                func.coalesce(func.sum(PointTransaction.amount), 0),
            )
            .where(*window, is_credit)
            .group_by(PointTransaction.activity_type)
            .order_by(func.sum(PointTransaction.amount).desc())
        )
        by_activity = [
            ActivityBreakdown(activity_type=activity_type, transaction_count=int(count), total_points=int(points))
            for activity_type, count, points in (await self._db.execute(by_activity_stmt)).all()
        ]

        accounts, cached_points = (
            await self._db.execute(
                select(func.count(PointBalance.user_id), func.coalesce(func.sum(PointBalance.current_points), 0))
            )
        ).one()
        top_rows = (
            await self._db.execute(
                select(PointBalance.user_id, PointBalance.current_points)
                .where(PointBalance.current_points > 0)
                .order_by(PointBalance.current_points.desc(), PointBalance.user_id.asc())
                .limit(top)
            )
        ).all()

        pending_count, pending_points = await RedemptionWorkflow(self._db, ledger=self._ledger).pending_totals()
        consistency = await ConsistencyAuditor(self._db, ledger=self._ledger).check_consistency(record=False)

        return SystemStatistics(
            start=start,
            end=end,
            total_transactions=int(total_count or 0),
            total_points_awarded=int(awarded or 0),
            total_points_redeemed=int(redeemed or 0),
            active_users=int(active_users or 0),
            net_points_in_circulation=int(awarded or 0) - int(debited or 0),
            accounts=int(accounts or 0),
            total_cached_points=int(cached_points or 0),
            pending_redemptions=pending_count,
            pending_redemption_points=pending_points,
            is_consistent=consistency.is_consistent,
            drifting_accounts=len(consistency.mismatches),
            by_activity=by_activity,
            top_balances=[(user_id, int(points)) for user_id, points in top_rows],
        )

    async def user_balance_detail(self, user_id: UUID, *, recent: int = 10) -> UserBalanceDetail:
        if await self._ledger.get_balance(user_id) is None:
            raise AccountNotFoundError(user_id)

        snapshot = await self._ledger.snapshot(user_id)
        page = await self._ledger.get_transaction_history(user_id, limit=recent)
        activities = await ActivityCatalog(self._db).available_for_user(user_id)
        return UserBalanceDetail(
            snapshot=snapshot,
            computed_balance=await self._ledger.log_balance(user_id),
            recent_transactions=page.items,
            activities=activities,
        )


__all__ = ["ActivityBreakdown", "PointsStatisticsService", "SystemStatistics", "UserBalanceDetail"]
