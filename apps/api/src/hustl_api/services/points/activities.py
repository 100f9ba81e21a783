"""Activity catalog: earnable activities and per-user eligibility."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.settings import settings
from hustl_api.core.time import day_window, ensure_utc, utcnow
from hustl_api.models.points import (
    LedgerProvenance,
    PointActivity,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)

from .errors import (
    ActivityExistsError,
    ActivityNotFoundError,
    InvalidActivityCodeError,
    InvalidActivityError,
)

ACTIVITY_CODE_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{1,49}$")
_RESERVED_CODES = {provenance.value.upper() for provenance in LedgerProvenance}
_UPDATABLE_FIELDS = {
    "name",
    "description",
    "points_reward",
    "daily_limit",
    "total_limit",
    "is_active",
    "valid_from",
    "valid_until",
}

DEFAULT_ACTIVITIES: tuple[dict[str, Any], ...] = (
    {
        "code": "PRODUCT_SHARE",
        "name": "Share Product",
        "description": "Points earned for sharing product links",
        "points_reward": 10,
        "daily_limit": 10,
    },
    {
        "code": "CAMPAIGN_SHARE",
        "name": "Share Campaign",
        "description": "Points earned for sharing campaign links",
        "points_reward": 15,
        "daily_limit": 5,
    },
    {
        "code": "DAILY_LOGIN",
        "name": "Daily Login Bonus",
        "description": "Points earned for daily login",
        "points_reward": 5,
        "daily_limit": 1,
    },
    {
        "code": "PROFILE_COMPLETE",
        "name": "Complete Profile",
        "description": "One-time points for completing profile",
        "points_reward": 50,
        "total_limit": 1,
    },
    {
        "code": "EMAIL_VERIFY",
        "name": "Email Verification",
        "description": "One-time points for email verification",
        "points_reward": 25,
        "total_limit": 1,
    },
)


def normalize_activity_code(code: Any) -> str:
    """Upper-case and validate an activity code (``daily_login`` -> ``DAILY_LOGIN``)."""

    if not isinstance(code, str):
        raise InvalidActivityCodeError(code)
    normalized = code.strip().upper()
    if not ACTIVITY_CODE_PATTERN.match(normalized) or normalized in _RESERVED_CODES:
        raise InvalidActivityCodeError(code)
    return normalized


def activity_unavailable_reason(activity: PointActivity, at: datetime) -> str | None:
    """Return why ``activity`` cannot be earned at ``at``, or None if it can."""

    if not activity.is_active:
        return "inactive"
    moment = ensure_utc(at)
    valid_from = ensure_utc(activity.valid_from)
    valid_until = ensure_utc(activity.valid_until)
    if valid_from is not None and moment < valid_from:
        return "not_started"
    if valid_until is not None and moment > valid_until:
        return "expired"
    return None


@dataclass
class ActivityEligibility:
    """Whether a user can still earn an activity, and how much headroom is left."""

    activity: PointActivity
    can_earn: bool
    reason: str | None
    earned_today: int
    earned_total: int
    remaining_today: int | None
    remaining_total: int | None


class ActivityCatalog:
    """Admin-managed catalog consulted read-only at award time."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_activity(self, code: str) -> PointActivity | None:
        normalized = normalize_activity_code(code)
        stmt = select(PointActivity).where(PointActivity.code == normalized)
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def require_activity(self, code: str) -> PointActivity:
        activity = await self.get_activity(code)
        if activity is None:
            raise ActivityNotFoundError(normalize_activity_code(code))
        return activity

    async def list_activities(self, *, include_inactive: bool = True) -> list[PointActivity]:
        stmt = select(PointActivity).order_by(PointActivity.code.asc())
        if not include_inactive:
            stmt = stmt.where(PointActivity.is_active.is_(True))
        return list((await self._db.execute(stmt)).scalars().all())

    async def list_active_activities(self, *, at: datetime | None = None) -> list[PointActivity]:
        moment = ensure_utc(at) or utcnow()
        stmt = (
            select(PointActivity)
            .where(
                PointActivity.is_active.is_(True),
                or_(PointActivity.valid_from.is_(None), PointActivity.valid_from <= moment),
                or_(PointActivity.valid_until.is_(None), PointActivity.valid_until >= moment),
            )
            .order_by(PointActivity.points_reward.desc(), PointActivity.code.asc())
        )
        activities = list((await self._db.execute(stmt)).scalars().all())
        logger.debug("Fetched active point activities", count=len(activities))
        return activities

    async def create_activity(
        self,
        *,
        code: str,
        name: str,
        points_reward: int,
        description: str | None = None,
        daily_limit: int | None = None,
        total_limit: int | None = None,
        is_active: bool = True,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        created_by: UUID | None = None,
    ) -> PointActivity:
        normalized = normalize_activity_code(code)
        fields = self._validated_fields(
            {
                "name": name,
                "description": description,
                "points_reward": points_reward,
                "daily_limit": daily_limit,
                "total_limit": total_limit,
                "is_active": is_active,
                "valid_from": valid_from,
                "valid_until": valid_until,
            }
        )

        activity = PointActivity(code=normalized, created_by=created_by, **fields)
        self._db.add(activity)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ActivityExistsError(normalized) from exc

        logger.info("Created point activity", code=normalized, points_reward=activity.points_reward)
        return activity

    async def update_activity(self, code: str, **changes: Any) -> PointActivity:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidActivityError("Unsupported activity fields", fields=sorted(unknown))

        activity = await self.require_activity(code)
        merged = {name: getattr(activity, name) for name in _UPDATABLE_FIELDS}
        merged.update(changes)
        fields = self._validated_fields(merged)
        for name in changes:
            setattr(activity, name, fields[name])
        await self._db.commit()
        logger.info("Updated point activity", code=activity.code, fields=sorted(changes))
        return activity

    async def seed_defaults(self, definitions: Iterable[dict[str, Any]] = DEFAULT_ACTIVITIES) -> list[str]:
        """Create any missing catalog entries; existing codes are left untouched."""

        created: list[str] = []
        for definition in definitions:
            if await self.get_activity(definition["code"]) is not None:
                continue
            activity = await self.create_activity(**definition)
            created.append(activity.code)
        return created

    async def count_earned(
        self,
        user_id: UUID,
        activity_code: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Count completed credits for ``activity_code``, optionally within ``[start, end)``."""

        stmt = select(func.count(PointTransaction.id)).where(
            PointTransaction.user_id == user_id,
            PointTransaction.activity_type == activity_code,
            PointTransaction.transaction_type == PointTransactionType.CREDIT,
            PointTransaction.status == PointTransactionStatus.COMPLETED,
        )
        if start is not None:
            stmt = stmt.where(PointTransaction.occurred_at >= ensure_utc(start))
        if end is not None:
            stmt = stmt.where(PointTransaction.occurred_at < ensure_utc(end))
        return int(await self._db.scalar(stmt) or 0)

    async def eligibility(
        self,
        activity: PointActivity,
        user_id: UUID,
        *,
        at: datetime | None = None,
    ) -> ActivityEligibility:
        moment = ensure_utc(at) or utcnow()
        day_start, day_end = day_window(moment, settings.points_timezone)
        earned_today = await self.count_earned(user_id, activity.code, start=day_start, end=day_end)
        earned_total = await self.count_earned(user_id, activity.code)

        remaining_today = None
        if activity.daily_limit is not None:
            remaining_today = max(activity.daily_limit - earned_today, 0)
        remaining_total = None
        if activity.total_limit is not None:
            remaining_total = max(activity.total_limit - earned_total, 0)

        reason = activity_unavailable_reason(activity, moment)
        if reason is None and remaining_today == 0:
            reason = "daily_limit_reached"
        if reason is None and remaining_total == 0:
            reason = "total_limit_reached"

        return ActivityEligibility(
            activity=activity,
            can_earn=reason is None,
            reason=reason,
            earned_today=earned_today,
            earned_total=earned_total,
            remaining_today=remaining_today,
            remaining_total=remaining_total,
        )

    async def available_for_user(self, user_id: UUID, *, at: datetime | None = None) -> list[ActivityEligibility]:
        moment = ensure_utc(at) or utcnow()
        activities = await self.list_active_activities(at=moment)
        return [await self.eligibility(activity, user_id, at=moment) for activity in activities]

    @staticmethod
    def _validated_fields(fields: dict[str, Any]) -> dict[str, Any]:
        name = fields.get("name")
        if not isinstance(name, str) or not name.strip() or len(name.strip()) > 100:
            raise InvalidActivityError("Activity name must be 1-100 characters", field="name")
        reward = fields.get("points_reward")
        if isinstance(reward, bool) or not isinstance(reward, int) or reward <= 0:
            raise InvalidActivityError("pointsReward must be a positive integer", field="pointsReward")
        for limit_field, label in (("daily_limit", "dailyLimit"), ("total_limit", "totalLimit")):
            limit = fields.get(limit_field)
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
                raise InvalidActivityError(f"{label} must be null or at least 1", field=label)
        is_active = fields.get("is_active", True)
        if not isinstance(is_active, bool):
            raise InvalidActivityError("isActive must be true or false", field="isActive")

        valid_from = ensure_utc(fields.get("valid_from"))
        valid_until = ensure_utc(fields.get("valid_until"))
        if valid_from is not None and valid_until is not None and valid_until <= valid_from:
            raise InvalidActivityError("validUntil must be after validFrom", field="validUntil")

        cleaned = dict(fields)
        cleaned["name"] = name.strip()
        cleaned["valid_from"] = valid_from
        cleaned["valid_until"] = valid_until
        cleaned["is_active"] = is_active
        return cleaned


__all__ = [
    "ACTIVITY_CODE_PATTERN",
    "DEFAULT_ACTIVITIES",
    "ActivityCatalog",
    "ActivityEligibility",
    "activity_unavailable_reason",
    "normalize_activity_code",
]
