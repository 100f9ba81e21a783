"""Redemption workflow: reserved debits tracked through admin approval."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Tuple
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.settings import settings
from hustl_api.core.time import ensure_utc, utcnow
from hustl_api.models.points import (
    LedgerProvenance,
    PointRedemption,
    PointRedemptionStatus,
    PointTransaction,
)
from hustl_api.observability.points import get_points_store
from hustl_api.services.notifications import LedgerEvent, LedgerEventType

from .errors import (
    AlreadyFinalizedError,
    AlreadyProcessedError,
    InvalidAmountError,
    InvalidRedemptionTypeError,
    LedgerInternalError,
    LedgerValidationError,
    RedemptionNotFoundError,
    TransactionNotFoundError,
)
from .ledger import PointsLedger, ReservationOutcome

_CENTS = Decimal("0.01")
_MAX_REDEMPTION_VALUE = Decimal("9999999999.99")


class RedemptionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class RedemptionPage:
    items: list[PointRedemption]
    next_cursor: Tuple[datetime, UUID] | None
    total: int


@dataclass
class ExpirySweepResult:
    expired: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"expired": self.expired, "skipped": self.skipped, "failed": self.failed}


def default_redemption_value(points: int) -> Decimal:
    return (Decimal(points) / Decimal(settings.redemption_points_per_unit)).quantize(_CENTS, rounding=ROUND_HALF_UP)


class RedemptionWorkflow:
    """State machine ``pending -> approved | rejected | cancelled`` over ledger reservations."""

    def __init__(self, db_session: AsyncSession, *, ledger: PointsLedger | None = None) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._observability = get_points_store()

    async def get_redemption(self, redemption_id: UUID) -> PointRedemption | None:
        stmt = select(PointRedemption).where(PointRedemption.id == redemption_id)
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def request_redemption(
        self,
        user_id: UUID,
        points_to_redeem: int,
        redemption_type: str,
        redemption_value: Decimal | float | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> PointRedemption:
        if (
            isinstance(points_to_redeem, bool)
            or not isinstance(points_to_redeem, int)
            or points_to_redeem <= 0
            or points_to_redeem < settings.redemption_min_points
        ):
            raise InvalidAmountError(points_to_redeem)
        kind = self._validated_type(redemption_type)
        value = self._validated_value(redemption_value, points_to_redeem)

        redemption_id = uuid4()
        expires_at = None
        if settings.redemption_reservation_ttl_hours > 0:
            expires_at = utcnow() + timedelta(hours=settings.redemption_reservation_ttl_hours)
        created: list[PointRedemption] = []

        async def _record_redemption(transaction: PointTransaction) -> None:
            redemption = PointRedemption(
                id=redemption_id,
                user_id=user_id,
                points_redeemed=points_to_redeem,
                redemption_type=kind,
                redemption_value=value,
                redemption_details=details or {},
                status=PointRedemptionStatus.PENDING,
                requested_at=transaction.reserved_at,
                transaction_id=transaction.id,
            )
            self._db.add(redemption)
            created.append(redemption)

        await self._ledger.reserve_debit(
            user_id,
            amount=points_to_redeem,
            activity_type=LedgerProvenance.REDEMPTION.value,
            description=f"Redemption request ({kind})",
            reference_id=str(redemption_id),
            reference_type="redemption",
            metadata={"redemptionType": kind, "redemptionValue": str(value)},
            expires_at=expires_at,
            then=_record_redemption,
        )
        redemption = created[-1]
        self._observability.record_redemption("requested")
        logger.info(
            "Redemption requested",
            redemption_id=str(redemption.id),
            user_id=str(user_id),
            points=points_to_redeem,
            redemption_type=kind,
        )
        await self._publish(LedgerEventType.REDEMPTION_REQUESTED, redemption)
        return redemption

    async def process_redemption(
        self,
        redemption_id: UUID,
        admin_id: UUID,
        action: RedemptionAction | str,
        notes: str | None = None,
    ) -> PointRedemption:
        try:
            action = RedemptionAction(action)
        except ValueError as exc:
            raise LedgerValidationError("Action must be approve or reject", action=str(action)) from exc

        redemption = await self._require_pending(redemption_id)
        target = PointRedemptionStatus.APPROVED if action == RedemptionAction.APPROVE else PointRedemptionStatus.REJECTED
        outcome = ReservationOutcome.COMPLETE if action == RedemptionAction.APPROVE else ReservationOutcome.CANCEL

        def _transition(record: PointRedemption, transaction: PointTransaction) -> None:
            record.status = target
            record.processed_at = transaction.processed_at
            record.processed_by = admin_id
            record.admin_notes = notes

        redemption = await self._finalize(redemption, outcome, processed_by=admin_id, mutate=_transition)
        self._observability.record_redemption(action.value)
        logger.info(
            "Redemption processed",
            redemption_id=str(redemption_id),
            admin_id=str(admin_id),
            action=action.value,
        )
        await self._publish(
            LedgerEventType.REDEMPTION_APPROVED
            if action == RedemptionAction.APPROVE
            else LedgerEventType.REDEMPTION_REJECTED,
            redemption,
        )
        return redemption

    async def cancel_redemption(self, redemption_id: UUID, user_id: UUID) -> PointRedemption:
        """User-initiated withdrawal of their own pending request."""

        redemption = await self.get_redemption(redemption_id)
        if redemption is None or redemption.user_id != user_id:
            raise RedemptionNotFoundError(redemption_id)
        if redemption.status != PointRedemptionStatus.PENDING:
            raise AlreadyProcessedError(redemption_id, redemption.status.value)

        def _transition(record: PointRedemption, transaction: PointTransaction) -> None:
            record.status = PointRedemptionStatus.CANCELLED
            record.processed_at = transaction.processed_at

        redemption = await self._finalize(redemption, ReservationOutcome.CANCEL, processed_by=None, mutate=_transition)
        self._observability.record_redemption("cancelled")
        logger.info("Redemption cancelled by user", redemption_id=str(redemption_id), user_id=str(user_id))
        await self._publish(LedgerEventType.REDEMPTION_CANCELLED, redemption)
        return redemption

    async def expire_stale_reservations(
        self,
        *,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> ExpirySweepResult:
        """Cancel reservations past ``expires_at`` and the redemptions waiting on them."""

        moment = ensure_utc(now) or utcnow()
        expired = await self._ledger.list_expired_reservations(
            now=moment,
            limit=limit or settings.reservation_sweep_batch_size,
        )
        transaction_ids = [transaction.id for transaction in expired]
        result = ExpirySweepResult()

        for transaction_id in transaction_ids:
            cancelled: list[PointRedemption] = []

            async def _expire(transaction: PointTransaction, cancelled: list[PointRedemption] = cancelled) -> None:
                stmt = (
                    select(PointRedemption)
                    .where(PointRedemption.transaction_id == transaction.id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                record = (await self._db.execute(stmt)).scalar_one_or_none()
                if record is not None and record.status == PointRedemptionStatus.PENDING:
                    record.status = PointRedemptionStatus.CANCELLED
                    record.processed_at = transaction.processed_at
                    record.admin_notes = "Reservation expired"
                    cancelled.append(record)

            try:
                await self._ledger.finalize_reservation(transaction_id, ReservationOutcome.CANCEL, then=_expire)
            except (AlreadyFinalizedError, TransactionNotFoundError):
                result.skipped += 1
                continue
            except LedgerInternalError as exc:
                result.failed += 1
                logger.warning("Reservation expiry failed", transaction_id=str(transaction_id), error=exc.message)
                continue

            result.expired += 1
            if cancelled:
                self._observability.record_redemption("expired")
                await self._publish(LedgerEventType.REDEMPTION_CANCELLED, cancelled[-1])

        if transaction_ids:
            logger.info("Expired stale reservations", **result.as_dict())
        return result

    async def list_redemptions(
        self,
        *,
        user_id: UUID | None = None,
        status: PointRedemptionStatus | None = None,
        redemption_type: str | None = None,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
    ) -> RedemptionPage:
        bounded_limit = max(1, min(limit, settings.history_max_page_size))
        conditions = []
        if user_id is not None:
            conditions.append(PointRedemption.user_id == user_id)
        if status is not None:
            conditions.append(PointRedemption.status == status)
        if redemption_type:
            conditions.append(PointRedemption.redemption_type == redemption_type)

        total = int(await self._db.scalar(select(func.count(PointRedemption.id)).where(*conditions)) or 0)
        stmt = (
            select(PointRedemption)
            .where(*conditions)
            .order_by(PointRedemption.requested_at.desc(), PointRedemption.id.desc())
        )
        if cursor:
            cursor_time, cursor_id = cursor
            cursor_time = ensure_utc(cursor_time)
            stmt = stmt.where(
                or_(
                    PointRedemption.requested_at < cursor_time,
                    and_(PointRedemption.requested_at == cursor_time, PointRedemption.id < cursor_id),
                )
            )
        rows = list((await self._db.execute(stmt.limit(bounded_limit + 1))).scalars().all())
        items = rows[:bounded_limit]
        next_cursor = None
        if len(rows) > bounded_limit and items:
            next_cursor = (ensure_utc(items[-1].requested_at), items[-1].id)
        return RedemptionPage(items=items, next_cursor=next_cursor, total=total)

    async def pending_totals(self, *, user_id: UUID | None = None) -> tuple[int, int]:
        """Return ``(count, points)`` of redemptions awaiting a decision."""

        stmt = select(
            func.count(PointRedemption.id),
            func.coalesce(func.sum(PointRedemption.points_redeemed), 0),
        ).where(PointRedemption.status == PointRedemptionStatus.PENDING)
        if user_id is not None:
            stmt = stmt.where(PointRedemption.user_id == user_id)
        count, points = (await self._db.execute(stmt)).one()
        return int(count or 0), int(points or 0)

    async def _require_pending(self, redemption_id: UUID) -> PointRedemption:
        redemption = await self.get_redemption(redemption_id)
        if redemption is None:
            raise RedemptionNotFoundError(redemption_id)
        if redemption.status != PointRedemptionStatus.PENDING:
            raise AlreadyProcessedError(redemption_id, redemption.status.value)
        return redemption

    async def _finalize(
        self,
        redemption: PointRedemption,
        outcome: ReservationOutcome,
        *,
        processed_by: UUID | None,
        mutate: Callable[[PointRedemption, PointTransaction], None],
    ) -> PointRedemption:
        redemption_id = redemption.id
        transaction_id = redemption.transaction_id
        if transaction_id is None:
            raise TransactionNotFoundError(f"redemption:{redemption_id}")
        resolved: list[PointRedemption] = []

        # Re-checked under the user's lock: two admins (or an admin and the
        # owner) racing on the same request must see exactly one winner.
        async def _still_pending() -> None:
            record = await self._reload_for_update(redemption_id)
            if record is None:
                raise RedemptionNotFoundError(redemption_id)
            if record.status != PointRedemptionStatus.PENDING:
                raise AlreadyProcessedError(redemption_id, record.status.value)

        async def _transition(transaction: PointTransaction) -> None:
            record = await self._reload_for_update(redemption_id)
            mutate(record, transaction)
            resolved.append(record)

        await self._ledger.finalize_reservation(
            transaction_id,
            outcome,
            processed_by=processed_by,
            guard=_still_pending,
            then=_transition,
        )
        return resolved[-1]

    async def _reload_for_update(self, redemption_id: UUID) -> PointRedemption | None:
        stmt = (
            select(PointRedemption)
            .where(PointRedemption.id == redemption_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def _validated_type(redemption_type: Any) -> str:
        if not isinstance(redemption_type, str) or not redemption_type.strip() or len(redemption_type.strip()) > 50:
            raise InvalidRedemptionTypeError(
                "Redemption type must be 1-50 characters",
                redemptionType=redemption_type,
            )
        return redemption_type.strip()

    @staticmethod
    def _validated_value(value: Decimal | float | str | None, points: int) -> Decimal:
        if value is None:
            return default_redemption_value(points)
        try:
            parsed = Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            raise LedgerValidationError("Redemption value must be numeric", redemptionValue=str(value)) from exc
        if not parsed.is_finite():
            raise LedgerValidationError("Redemption value must be a finite number", redemptionValue=str(value))
        if parsed < 0:
            raise LedgerValidationError("Redemption value cannot be negative", redemptionValue=str(value))
        if parsed > _MAX_REDEMPTION_VALUE:
            raise LedgerValidationError(
                "Redemption value is too large",
                redemptionValue=str(value),
                maximum=str(_MAX_REDEMPTION_VALUE),
            )
        return parsed

    async def _publish(self, event_type: LedgerEventType, redemption: PointRedemption) -> None:
        await self._ledger.publisher.publish(
            LedgerEvent(
                event_type=event_type,
                user_id=redemption.user_id,
                payload={
                    "redemptionId": str(redemption.id),
                    "status": redemption.status.value,
                    "pointsRedeemed": redemption.points_redeemed,
                    "redemptionType": redemption.redemption_type,
                    "redemptionValue": str(redemption.redemption_value),
                    "adminNotes": redemption.admin_notes,
                },
            )
        )


__all__ = [
    "ExpirySweepResult",
    "RedemptionAction",
    "RedemptionPage",
    "RedemptionWorkflow",
    "default_redemption_value",
]
