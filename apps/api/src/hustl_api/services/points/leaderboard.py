"""Read-only leaderboard over completed ledger entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.settings import settings
from hustl_api.core.time import day_window, ensure_utc, month_window, utcnow
from hustl_api.models.points import PointTransaction, PointTransactionType

from .ledger import counts_toward_log_balance, signed_amount_expression


class LeaderboardPeriod(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: UUID
    net_points: int
    earned_points: int
    spent_points: int


@dataclass
class Leaderboard:
    period: LeaderboardPeriod
    window_start: datetime | None
    window_end: datetime | None
    entries: list[LeaderboardEntry]


def period_window(period: LeaderboardPeriod, now: datetime | None = None) -> tuple[datetime | None, datetime | None]:
    moment = ensure_utc(now) or utcnow()
    if period == LeaderboardPeriod.DAILY:
        return day_window(moment, settings.points_timezone)
    if period == LeaderboardPeriod.MONTHLY:
        return month_window(moment, settings.points_timezone)
    return None, None


class LeaderboardReader:
    """Rank users by net completed points inside a time window. Never writes."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    def _totals(self, start: datetime | None, end: datetime | None):
        stmt = select(
            PointTransaction.user_id.label("user_id"),
            func.sum(signed_amount_expression()).label("net_points"),
            func.sum(
                case((PointTransaction.transaction_type == PointTransactionType.CREDIT, PointTransaction.amount), else_=0)
            ).label("earned_points"),
            func.sum(
                case((PointTransaction.transaction_type == PointTransactionType.DEBIT, PointTransaction.amount), else_=0)
            ).label("spent_points"),
        ).where(counts_toward_log_balance())
        if start is not None:
            stmt = stmt.where(PointTransaction.processed_at >= start)
        if end is not None:
            stmt = stmt.where(PointTransaction.processed_at < end)
        return stmt.group_by(PointTransaction.user_id).subquery()

    async def top(
        self,
        period: LeaderboardPeriod,
        *,
        limit: int = 10,
        now: datetime | None = None,
    ) -> Leaderboard:
        start, end = period_window(period, now)
        totals = self._totals(start, end)
        rows = (
            await self._db.execute(
                select(totals)
                .order_by(totals.c.net_points.desc(), totals.c.user_id.asc())
                .limit(max(1, min(limit, 100)))
            )
        ).all()

        entries: list[LeaderboardEntry] = []
        previous_net: int | None = None
        rank = 0
        for position, row in enumerate(rows, start=1):
            net = int(row.net_points or 0)
            if net != previous_net:
                rank = position
                previous_net = net
            entries.append(
                LeaderboardEntry(
                    rank=rank,
                    user_id=row.user_id,
                    net_points=net,
                    earned_points=int(row.earned_points or 0),
                    spent_points=int(row.spent_points or 0),
                )
            )
        return Leaderboard(period=period, window_start=start, window_end=end, entries=entries)

    async def rank_for_user(
        self,
        user_id: UUID,
        period: LeaderboardPeriod,
        *,
        now: datetime | None = None,
    ) -> LeaderboardEntry | None:
        start, end = period_window(period, now)
        totals = self._totals(start, end)
        row = (await self._db.execute(select(totals).where(totals.c.user_id == user_id))).one_or_none()
        if row is None:
            return None

        net = int(row.net_points or 0)
        ahead = await self._db.scalar(
            select(func.count()).select_from(totals).where(totals.c.net_points > net)
        )
        return LeaderboardEntry(
            rank=int(ahead or 0) + 1,
            user_id=row.user_id,
            net_points=net,
            earned_points=int(row.earned_points or 0),
            spent_points=int(row.spent_points or 0),
        )


__all__ = ["Leaderboard", "LeaderboardEntry", "LeaderboardPeriod", "LeaderboardReader", "period_window"]
