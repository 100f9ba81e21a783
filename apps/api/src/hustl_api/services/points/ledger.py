"""Balance store and transaction log primitives.

All balance-affecting writes go through :class:`PointsLedger`. Each public
mutation is its own unit of work: it takes the per-user lock, re-reads the
balance row, performs every write, and commits (or rolls back everything).
The balance row carries an optimistic version column so writers in other
processes are still linearised per user; a version conflict restarts the
unit of work a bounded number of times.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Tuple, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from hustl_api.core.settings import settings
from hustl_api.core.time import ensure_utc, utcnow
from hustl_api.models.points import (
    LedgerProvenance,
    PointBalance,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)
from hustl_api.observability.points import PointsObservabilityStore, get_points_store
from hustl_api.services.notifications import (
    LedgerEvent,
    LedgerEventPublisher,
    LedgerEventType,
    get_event_publisher,
)

from .errors import (
    AlreadyFinalizedError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerContentionError,
    LedgerStorageError,
    TransactionNotFoundError,
)
from .locks import UserLockRegistry, get_user_lock_registry

T = TypeVar("T")
Guard = Callable[[], Awaitable[None]]
FollowUp = Callable[[PointTransaction], Awaitable[None]]


class ReservationOutcome(str, Enum):
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass
class TransactionFilters:
    """Optional filters for ledger history queries."""

    activity_type: str | None = None
    transaction_type: PointTransactionType | None = None
    status: PointTransactionStatus | None = None
    start: datetime | None = None
    end: datetime | None = None


@dataclass
class TransactionPage:
    items: list[PointTransaction]
    next_cursor: Tuple[datetime, UUID] | None
    total: int


@dataclass
class BalanceSnapshot:
    """Point-in-time view of a user's account."""

    user_id: UUID
    current_points: int
    pending_points: int
    available_points: int
    total_earned: int
    total_spent: int
    credit_count: int
    debit_count: int
    pending_count: int


class _StaleBalance(Exception):
    """Raised inside a unit of work when another writer got there first."""


def signed_amount_expression():
    return case(
        (PointTransaction.transaction_type == PointTransactionType.DEBIT, -PointTransaction.amount),
        else_=PointTransaction.amount,
    )


def counts_toward_log_balance():
    """Rows that make up the authoritative, log-derived balance.

    Cache corrections only repair the cached value, so they are left out.
    """

    return and_(
        PointTransaction.status == PointTransactionStatus.COMPLETED,
        PointTransaction.activity_type != LedgerProvenance.CORRECTION.value,
    )


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class PointsLedger:
    """Atomic ledger writes plus read helpers over the balance store."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        locks: UserLockRegistry | None = None,
        publisher: LedgerEventPublisher | None = None,
        observability: PointsObservabilityStore | None = None,
        lock_timeout_seconds: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._locks = locks or get_user_lock_registry()
        self._publisher = publisher or get_event_publisher()
        self._observability = observability or get_points_store()
        self._lock_timeout = (
            lock_timeout_seconds if lock_timeout_seconds is not None else settings.ledger_lock_timeout_seconds
        )
        self._max_attempts = max(max_attempts or settings.ledger_max_write_attempts, 1)

    @property
    def session(self) -> AsyncSession:
        return self._db

    @property
    def publisher(self) -> LedgerEventPublisher:
        return self._publisher

    # Reads

    async def get_balance(self, user_id: UUID) -> PointBalance | None:
        stmt = select(PointBalance).where(PointBalance.user_id == user_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def current_points(self, user_id: UUID) -> int:
        stmt = select(PointBalance.current_points).where(PointBalance.user_id == user_id)
        value = await self._db.scalar(stmt)
        return int(value or 0)

    async def pending_reserved_points(self, user_id: UUID) -> int:
        stmt = select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
            PointTransaction.user_id == user_id,
            PointTransaction.transaction_type == PointTransactionType.DEBIT,
            PointTransaction.status == PointTransactionStatus.PENDING,
        )
        return int(await self._db.scalar(stmt) or 0)

    async def available_points(self, user_id: UUID) -> int:
        current = await self.current_points(user_id)
        return current - await self.pending_reserved_points(user_id)

    async def log_balance(self, user_id: UUID) -> int:
        """Recompute the balance from the transaction log."""

        stmt = select(func.coalesce(func.sum(signed_amount_expression()), 0)).where(
            PointTransaction.user_id == user_id,
            counts_toward_log_balance(),
        )
        return int(await self._db.scalar(stmt) or 0)

    async def snapshot(self, user_id: UUID) -> BalanceSnapshot:
        stmt = (
            select(
                PointTransaction.transaction_type,
                PointTransaction.status,
                func.count(PointTransaction.id),
                func.coalesce(func.sum(PointTransaction.amount), 0),
            )
            .where(
                PointTransaction.user_id == user_id,
                PointTransaction.activity_type != LedgerProvenance.CORRECTION.value,
            )
            .group_by(PointTransaction.transaction_type, PointTransaction.status)
        )
        rows = (await self._db.execute(stmt)).all()

        total_earned = total_spent = credit_count = debit_count = pending_points = pending_count = 0
        for transaction_type, status, count, amount in rows:
            if status == PointTransactionStatus.COMPLETED:
                if transaction_type == PointTransactionType.CREDIT:
                    total_earned += int(amount)
                    credit_count += int(count)
                else:
                    total_spent += int(amount)
                    debit_count += int(count)
            elif status == PointTransactionStatus.PENDING and transaction_type == PointTransactionType.DEBIT:
                pending_points += int(amount)
                pending_count += int(count)

        current = await self.current_points(user_id)
        return BalanceSnapshot(
            user_id=user_id,
            current_points=current,
            pending_points=pending_points,
            available_points=current - pending_points,
            total_earned=total_earned,
            total_spent=total_spent,
            credit_count=credit_count,
            debit_count=debit_count,
            pending_count=pending_count,
        )

    async def get_transaction(self, transaction_id: UUID) -> PointTransaction | None:
        return await self._db.get(PointTransaction, transaction_id)

    async def get_transaction_history(
        self,
        user_id: UUID | None,
        *,
        filters: TransactionFilters | None = None,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
    ) -> TransactionPage:
        """Return a newest-first page of ledger entries.

        ``user_id=None`` lists every user's entries (admin listing).
        """

        filters = filters or TransactionFilters()
        bounded_limit = max(1, min(limit, settings.history_max_page_size))

        conditions = []
        if user_id is not None:
            conditions.append(PointTransaction.user_id == user_id)
        if filters.activity_type:
            conditions.append(PointTransaction.activity_type == filters.activity_type)
        if filters.transaction_type is not None:
            conditions.append(PointTransaction.transaction_type == filters.transaction_type)
        if filters.status is not None:
            conditions.append(PointTransaction.status == filters.status)
        if filters.start is not None:
            conditions.append(PointTransaction.created_at >= ensure_utc(filters.start))
        if filters.end is not None:
            conditions.append(PointTransaction.created_at <= ensure_utc(filters.end))

        total = int(
            await self._db.scalar(select(func.count(PointTransaction.id)).where(*conditions)) or 0
        )

        stmt = (
            select(PointTransaction)
            .where(*conditions)
            .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        )
        if cursor:
            cursor_time, cursor_id = cursor
            cursor_time = ensure_utc(cursor_time)
            stmt = stmt.where(
                or_(
                    PointTransaction.created_at < cursor_time,
                    and_(
                        PointTransaction.created_at == cursor_time,
                        PointTransaction.id < cursor_id,
                    ),
                )
            )

        rows = list((await self._db.execute(stmt.limit(bounded_limit + 1))).scalars().all())
        items = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if len(rows) > bounded_limit and items:
            tail = items[-1]
            next_cursor = (ensure_utc(tail.created_at), tail.id)
        return TransactionPage(items=items, next_cursor=next_cursor, total=total)

    async def list_expired_reservations(self, *, now: datetime, limit: int = 100) -> list[PointTransaction]:
        stmt = (
            select(PointTransaction)
            .where(
                PointTransaction.status == PointTransactionStatus.PENDING,
                PointTransaction.reserved_at.is_not(None),
                PointTransaction.expires_at.is_not(None),
                PointTransaction.expires_at <= ensure_utc(now),
            )
            .order_by(PointTransaction.expires_at.asc())
            .limit(limit)
        )
        return list((await self._db.execute(stmt)).scalars().all())

    # Writes

    async def apply_transaction(
        self,
        user_id: UUID,
        *,
        transaction_type: PointTransactionType,
        amount: int,
        activity_type: str,
        description: str | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
        processed_by: UUID | None = None,
        metadata: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
        guard: Guard | None = None,
        then: FollowUp | None = None,
    ) -> PointTransaction:
        """Insert a completed entry and move the cached balance in one step.

        ``guard`` runs under the user's lock before anything is written and
        may raise to abort; ``then`` runs after the entry is flushed and its
        writes commit together with it.
        """

        amount = _validate_amount(amount)

        async def _apply() -> PointTransaction:
            balance = await self._lock_balance(user_id, create=transaction_type == PointTransactionType.CREDIT)
            if guard is not None:
                await guard()

            current = int(balance.current_points) if balance is not None else 0
            if transaction_type == PointTransactionType.DEBIT:
                if balance is None or amount > current:
                    pending = await self.pending_reserved_points(user_id) if balance is not None else 0
                    raise InsufficientBalanceError(
                        current_balance=current,
                        available_balance=max(current - pending, 0),
                        requested_amount=amount,
                    )
                balance_after = current - amount
            else:
                balance_after = current + amount

            now = utcnow()
            transaction = PointTransaction(
                user_id=user_id,
                transaction_type=transaction_type,
                amount=amount,
                balance_before=current,
                balance_after=balance_after,
                activity_type=activity_type,
                description=description,
                reference_id=reference_id,
                reference_type=reference_type,
                status=PointTransactionStatus.COMPLETED,
                processed_by=processed_by,
                processed_at=now,
                metadata_json=metadata or {},
                occurred_at=ensure_utc(occurred_at) or now,
            )
            self._db.add(transaction)
            balance.current_points = balance_after
            await self._db.flush()
            if then is not None:
                await then(transaction)
                await self._db.flush()
            return transaction

        transaction = await self._run_exclusive(user_id, _apply, action="apply_transaction")
        self._observability.record_transaction(transaction_type.value, activity_type)
        logger.info(
            "Applied ledger transaction",
            user_id=str(user_id),
            transaction_id=str(transaction.id),
            transaction_type=transaction_type.value,
            amount=amount,
            activity_type=activity_type,
            balance_after=transaction.balance_after,
        )
        await self._publish_balance_changed(transaction)
        return transaction

    async def reserve_debit(
        self,
        user_id: UUID,
        *,
        amount: int,
        activity_type: str,
        description: str | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
        metadata: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
        guard: Guard | None = None,
        then: FollowUp | None = None,
    ) -> PointTransaction:
        """Hold ``amount`` points as a pending debit without touching the cached balance."""

        amount = _validate_amount(amount)

        async def _reserve() -> PointTransaction:
            balance = await self._lock_balance(user_id, create=False)
            if guard is not None:
                await guard()

            current = int(balance.current_points) if balance is not None else 0
            pending = await self.pending_reserved_points(user_id) if balance is not None else 0
            available = current - pending
            if balance is None or amount > available:
                raise InsufficientBalanceError(
                    current_balance=current,
                    available_balance=max(available, 0),
                    requested_amount=amount,
                )

            now = utcnow()
            transaction = PointTransaction(
                user_id=user_id,
                transaction_type=PointTransactionType.DEBIT,
                amount=amount,
                balance_before=current,
                balance_after=current - amount,
                activity_type=activity_type,
                description=description,
                reference_id=reference_id,
                reference_type=reference_type,
                status=PointTransactionStatus.PENDING,
                metadata_json=metadata or {},
                occurred_at=now,
                reserved_at=now,
                expires_at=ensure_utc(expires_at),
            )
            self._db.add(transaction)
            # The points stay put, but the row version still has to move so a
            # competing reservation from another process fails its version check.
            balance.updated_at = now
            await self._db.flush()
            if then is not None:
                await then(transaction)
                await self._db.flush()
            return transaction

        transaction = await self._run_exclusive(user_id, _reserve, action="reserve_debit")
        self._observability.record_reservation("reserved")
        logger.info(
            "Reserved ledger debit",
            user_id=str(user_id),
            transaction_id=str(transaction.id),
            amount=amount,
            activity_type=activity_type,
            expires_at=transaction.expires_at.isoformat() if transaction.expires_at else None,
        )
        return transaction

    async def finalize_reservation(
        self,
        transaction_id: UUID,
        outcome: ReservationOutcome,
        *,
        processed_by: UUID | None = None,
        guard: Guard | None = None,
        then: FollowUp | None = None,
    ) -> PointTransaction:
        """Complete or cancel a pending reservation exactly once."""

        outcome = ReservationOutcome(outcome)
        user_id = await self._db.scalar(
            select(PointTransaction.user_id).where(PointTransaction.id == transaction_id)
        )
        if user_id is None:
            raise TransactionNotFoundError(transaction_id)

        async def _finalize() -> PointTransaction:
            stmt = (
                select(PointTransaction)
                .where(PointTransaction.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            transaction = (await self._db.execute(stmt)).scalar_one()
            if not transaction.is_reservation or transaction.transaction_type != PointTransactionType.DEBIT:
                raise TransactionNotFoundError(transaction_id)

            balance = await self._lock_balance(user_id, create=False)
            if guard is not None:
                await guard()
            if transaction.status != PointTransactionStatus.PENDING:
                raise AlreadyFinalizedError(transaction_id, transaction.status.value)

            now = utcnow()
            current = int(balance.current_points)
            amount = int(transaction.amount)
            if outcome == ReservationOutcome.COMPLETE:
                if amount > current:
                    pending = await self.pending_reserved_points(user_id)
                    raise InsufficientBalanceError(
                        current_balance=current,
                        available_balance=max(current - pending, 0),
                        requested_amount=amount,
                    )
                transaction.balance_before = current
                transaction.balance_after = current - amount
                transaction.status = PointTransactionStatus.COMPLETED
                balance.current_points = current - amount
            else:
                transaction.balance_before = current
                transaction.balance_after = current
                transaction.status = PointTransactionStatus.CANCELLED
                balance.updated_at = now
            transaction.processed_at = now
            transaction.processed_by = processed_by
            await self._db.flush()
            if then is not None:
                await then(transaction)
                await self._db.flush()
            return transaction

        transaction = await self._run_exclusive(user_id, _finalize, action="finalize_reservation")
        self._observability.record_reservation(
            "completed" if outcome == ReservationOutcome.COMPLETE else "cancelled"
        )
        logger.info(
            "Finalized ledger reservation",
            user_id=str(user_id),
            transaction_id=str(transaction_id),
            outcome=outcome.value,
            amount=transaction.amount,
        )
        if outcome == ReservationOutcome.COMPLETE:
            self._observability.record_transaction(
                PointTransactionType.DEBIT.value, transaction.activity_type
            )
            await self._publish_balance_changed(transaction)
        return transaction

    # Internals

    async def _lock_balance(self, user_id: UUID, *, create: bool) -> PointBalance | None:
        stmt = (
            select(PointBalance)
            .where(PointBalance.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = (await self._db.execute(stmt)).scalar_one_or_none()
        if balance is not None or not create:
            return balance

        balance = PointBalance(user_id=user_id, current_points=0)
        self._db.add(balance)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            raise _StaleBalance(f"balance row for {user_id} created concurrently") from exc
        logger.info("Opened points account", user_id=str(user_id))
        return balance

    async def _run_exclusive(
        self,
        user_id: UUID,
        operation: Callable[[], Awaitable[T]],
        *,
        action: str,
    ) -> T:
        async with self._locks.hold(user_id, timeout=self._lock_timeout):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    result = await operation()
                    await self._db.commit()
                    return result
                except (StaleDataError, _StaleBalance) as exc:
                    await self._db.rollback()
                    self._observability.record_write_retry()
                    logger.warning(
                        "Ledger write lost a version race",
                        action=action,
                        user_id=str(user_id),
                        attempt=attempt,
                        error=str(exc),
                    )
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Ledger storage failure", action=action, user_id=str(user_id))
                    raise LedgerStorageError("Ledger storage failure", action=action) from exc
                except BaseException:
                    await self._db.rollback()
                    raise

        self._observability.record_contention_failure()
        logger.error(
            "Ledger write abandoned after repeated version conflicts",
            action=action,
            user_id=str(user_id),
            attempts=self._max_attempts,
        )
        raise LedgerContentionError(
            "Account is busy, retry the operation",
            userId=str(user_id),
            attempts=self._max_attempts,
        )

    async def _publish_balance_changed(self, transaction: PointTransaction) -> None:
        await self._publisher.publish(
            LedgerEvent(
                event_type=LedgerEventType.BALANCE_CHANGED,
                user_id=transaction.user_id,
                payload={
                    "transactionId": str(transaction.id),
                    "transactionType": transaction.transaction_type.value,
                    "amount": transaction.amount,
                    "balanceBefore": transaction.balance_before,
                    "balanceAfter": transaction.balance_after,
                    "activityType": transaction.activity_type,
                },
            )
        )


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{ensure_utc(timestamp).isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return ensure_utc(datetime.fromisoformat(timestamp_str)), UUID(identifier_str)


__all__ = [
    "BalanceSnapshot",
    "PointsLedger",
    "ReservationOutcome",
    "TransactionFilters",
    "TransactionPage",
    "counts_toward_log_balance",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
    "signed_amount_expression",
]
