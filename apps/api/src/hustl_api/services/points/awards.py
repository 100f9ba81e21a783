"""Award engine: the only producer of credit transactions."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.settings import settings
from hustl_api.core.time import day_window, ensure_utc, utcnow
from hustl_api.models.points import LedgerProvenance, PointTransaction, PointTransactionType
from hustl_api.observability.points import get_points_store

from .activities import ActivityCatalog, activity_unavailable_reason, normalize_activity_code
from .errors import (
    ActivityInactiveError,
    ActivityNotFoundError,
    DailyLimitExceededError,
    InvalidAmountError,
    LedgerConflictError,
    LedgerNotFoundError,
    TotalLimitExceededError,
)
from .ledger import PointsLedger


class AwardEngine:
    """Turn activity completions and admin grants into credits."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        catalog: ActivityCatalog | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._catalog = catalog or ActivityCatalog(db_session)
        self._observability = get_points_store()

    async def award_for_activity(
        self,
        user_id: UUID,
        activity_code: str,
        *,
        occurred_at: datetime | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PointTransaction:
        code = normalize_activity_code(activity_code)
        moment = ensure_utc(occurred_at) or utcnow()

        try:
            activity = await self._catalog.get_activity(code)
            if activity is None:
                raise ActivityNotFoundError(code)
            reason = activity_unavailable_reason(activity, moment)
            if reason is not None:
                raise ActivityInactiveError(code, reason=reason)

            reward = int(activity.points_reward)
            daily_limit = activity.daily_limit
            total_limit = activity.total_limit
            activity_name = activity.name

            # Runs under the user's ledger lock so two completions cannot both
            # squeeze past the same limit.
            async def _check_limits() -> None:
                if daily_limit is not None:
                    day_start, day_end = day_window(moment, settings.points_timezone)
                    earned_today = await self._catalog.count_earned(user_id, code, start=day_start, end=day_end)
                    if earned_today + 1 > daily_limit:
                        raise DailyLimitExceededError(code, limit=daily_limit, earned_count=earned_today)
                if total_limit is not None:
                    earned_total = await self._catalog.count_earned(user_id, code)
                    if earned_total + 1 > total_limit:
                        raise TotalLimitExceededError(code, limit=total_limit, earned_count=earned_total)

            entry_metadata = {"activityName": activity_name}
            entry_metadata.update(metadata or {})
            transaction = await self._ledger.apply_transaction(
                user_id,
                transaction_type=PointTransactionType.CREDIT,
                amount=reward,
                activity_type=code,
                description=f"Earned points for {activity_name}",
                reference_id=reference_id,
                reference_type=reference_type,
                metadata=entry_metadata,
                occurred_at=moment,
                guard=_check_limits,
            )
        except (LedgerConflictError, LedgerNotFoundError) as exc:
            self._observability.record_rejection(exc.code)
            logger.info("Activity award rejected", user_id=str(user_id), activity_code=code, reason=exc.code)
            raise

        logger.info(
            "Awarded activity points",
            user_id=str(user_id),
            activity_code=code,
            points=reward,
            transaction_id=str(transaction.id),
        )
        return transaction

    async def award_manual(
        self,
        user_id: UUID,
        amount: int,
        admin_id: UUID,
        description: str,
        *,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PointTransaction:
        """Grant points outside the catalog; limits do not apply."""

        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(amount)

        entry_metadata = {"awardedBy": str(admin_id)}
        entry_metadata.update(metadata or {})
        transaction = await self._ledger.apply_transaction(
            user_id,
            transaction_type=PointTransactionType.CREDIT,
            amount=amount,
            activity_type=LedgerProvenance.MANUAL_AWARD.value,
            description=description or "Manual points award",
            reference_id=reference_id,
            reference_type="admin_award" if reference_id else None,
            processed_by=admin_id,
            metadata=entry_metadata,
        )
        logger.info(
            "Manual points award recorded",
            user_id=str(user_id),
            admin_id=str(admin_id),
            amount=amount,
            transaction_id=str(transaction.id),
        )
        return transaction

    async def award_daily_login(self, user_id: UUID) -> PointTransaction:
        return await self.award_for_activity(user_id, "DAILY_LOGIN")

    async def award_profile_completion(self, user_id: UUID) -> PointTransaction:
        return await self.award_for_activity(user_id, "PROFILE_COMPLETE")

    async def award_email_verification(self, user_id: UUID) -> PointTransaction:
        return await self.award_for_activity(user_id, "EMAIL_VERIFY")

    async def award_product_share(self, user_id: UUID, product_id: str) -> PointTransaction:
        return await self.award_for_activity(
            user_id,
            "PRODUCT_SHARE",
            reference_id=str(product_id),
            reference_type="product",
        )

    async def award_campaign_share(self, user_id: UUID, campaign_id: str) -> PointTransaction:
        return await self.award_for_activity(
            user_id,
            "CAMPAIGN_SHARE",
            reference_id=str(campaign_id),
            reference_type="campaign",
        )


__all__ = ["AwardEngine"]
