"""Leaderboard read endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.api.dependencies.identity import require_user_id
from hustl_api.db.session import get_session
from hustl_api.services.points import LeaderboardEntry, LeaderboardPeriod, LeaderboardReader


router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


class LeaderboardEntryResponse(BaseModel):
    rank: int
    userId: UUID
    netPoints: int
    earnedPoints: int
    spentPoints: int


class LeaderboardResponse(BaseModel):
    period: LeaderboardPeriod
    windowStart: Optional[datetime]
    windowEnd: Optional[datetime]
    entries: List[LeaderboardEntryResponse]


class LeaderboardRankResponse(BaseModel):
    period: LeaderboardPeriod
    entry: Optional[LeaderboardEntryResponse]


def _serialize_entry(entry: LeaderboardEntry) -> LeaderboardEntryResponse:
    return LeaderboardEntryResponse(
        rank=entry.rank,
        userId=entry.user_id,
        netPoints=entry.net_points,
        earnedPoints=entry.earned_points,
        spentPoints=entry.spent_points,
    )


@router.get("/{period}", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: LeaderboardPeriod,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    board = await LeaderboardReader(db).top(period, limit=limit)
    return LeaderboardResponse(
        period=board.period,
        windowStart=board.window_start,
        windowEnd=board.window_end,
        entries=[_serialize_entry(entry) for entry in board.entries],
    )


@router.get("/{period}/me", response_model=LeaderboardRankResponse)
async def get_my_leaderboard_rank(
    period: LeaderboardPeriod,
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardRankResponse:
    """The caller's rank; ``entry`` is null when they have no activity in the window."""

    entry = await LeaderboardReader(db).rank_for_user(user_id, period)
    return LeaderboardRankResponse(period=period, entry=_serialize_entry(entry) if entry else None)
