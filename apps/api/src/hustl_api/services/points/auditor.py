"""Consistency auditor: detect and repair drift between cache and log.

The transaction log is authoritative. A repair moves the cached balance to
the log-derived value by applying a ``correction`` entry through the normal
ledger write path; corrections are excluded from the log-derived balance so
that a repaired account audits clean.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.time import utcnow
from hustl_api.models.points import LedgerProvenance, PointBalance, PointTransaction, PointTransactionType
from hustl_api.observability.points import get_points_store

from .errors import LedgerError
from .ledger import PointsLedger, counts_toward_log_balance, signed_amount_expression


@dataclass
class BalanceDrift:
    user_id: UUID
    cached_balance: int
    computed_balance: int

    @property
    def delta(self) -> int:
        return self.computed_balance - self.cached_balance

    def as_dict(self) -> dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "cachedBalance": self.cached_balance,
            "computedBalance": self.computed_balance,
            "delta": self.delta,
        }


@dataclass
class ConsistencyReport:
    checked_users: int
    mismatches: list[BalanceDrift]
    checked_at: datetime
    passes: int = 1

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches

    @property
    def total_discrepancy(self) -> int:
        return sum(abs(drift.delta) for drift in self.mismatches)


@dataclass
class BalanceCorrection:
    user_id: UUID
    old_balance: int
    new_balance: int
    transaction_id: UUID

    @property
    def delta(self) -> int:
        return self.new_balance - self.old_balance


@dataclass
class ReconciliationReport:
    checked_users: int
    corrections: list[BalanceCorrection] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    completed_at: datetime = field(default_factory=utcnow)


class _DriftChanged(Exception):
    """The account moved between the scan and the repair; leave it for the next run."""


class ConsistencyAuditor:
    """Recompute, diff, and emit corrective ledger writes."""

    def __init__(self, db_session: AsyncSession, *, ledger: PointsLedger | None = None) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._observability = get_points_store()

    async def check_consistency(
        self,
        user_ids: Sequence[UUID] | None = None,
        *,
        passes: int = 1,
        delay_seconds: float = 0.0,
        record: bool = True,
    ) -> ConsistencyReport:
        """Compare cached balances against the log.

        With ``passes > 1`` mismatches are re-scanned after ``delay_seconds``
        and only users that still drift are reported, filtering out snapshots
        that raced an in-flight write. ``record=False`` leaves the last
        recorded run (read by readiness) untouched.
        """

        checked, drift = await self._scan(user_ids)
        completed_passes = 1
        while drift and completed_passes < max(passes, 1):
            if delay_seconds:
                await asyncio.sleep(delay_seconds)
            _, drift = await self._scan([item.user_id for item in drift])
            completed_passes += 1

        report = ConsistencyReport(
            checked_users=checked,
            mismatches=drift,
            checked_at=utcnow(),
            passes=completed_passes,
        )
        if record:
            self._observability.record_consistency_run(
                checked_users=checked,
                mismatches=len(drift),
                total_discrepancy=report.total_discrepancy,
            )
        if drift:
            logger.warning(
                "Balance drift detected",
                checked_users=checked,
                mismatches=len(drift),
                total_discrepancy=report.total_discrepancy,
                users=[item.user_id.hex for item in drift[:20]],
            )
        else:
            logger.info("Balances consistent with transaction log", checked_users=checked)
        return report

    async def fix_inconsistent_balances(
        self,
        user_ids: Sequence[UUID] | None = None,
        *,
        admin_id: UUID | None = None,
        report: ConsistencyReport | None = None,
    ) -> ReconciliationReport:
        report = report or await self.check_consistency(user_ids)
        result = ReconciliationReport(checked_users=report.checked_users)

        for drift in report.mismatches:
            try:
                correction = await self._correct(drift, admin_id=admin_id)
            except _DriftChanged:
                result.skipped.append(drift.user_id)
                logger.info("Skipped balance correction; account changed since scan", user_id=str(drift.user_id))
                continue
            except LedgerError as exc:
                result.errors.append({"userId": str(drift.user_id), "code": exc.code, "message": exc.message})
                logger.error(
                    "Balance correction failed",
                    user_id=str(drift.user_id),
                    code=exc.code,
                    cached_balance=drift.cached_balance,
                    computed_balance=drift.computed_balance,
                )
                continue
            result.corrections.append(correction)

        self._observability.record_consistency_run(
            checked_users=report.checked_users,
            mismatches=len(report.mismatches),
            corrected=len(result.corrections),
            total_discrepancy=report.total_discrepancy,
        )
        logger.info(
            "Balance reconciliation finished",
            corrected=len(result.corrections),
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        return result

    async def _correct(self, drift: BalanceDrift, *, admin_id: UUID | None) -> BalanceCorrection:
        user_id = drift.user_id
        expected = (drift.cached_balance, drift.computed_balance)

        async def _drift_unchanged() -> None:
            cached = await self._ledger.current_points(user_id)
            computed = await self._ledger.log_balance(user_id)
            if (cached, computed) != expected:
                raise _DriftChanged(user_id)

        transaction = await self._ledger.apply_transaction(
            user_id,
            transaction_type=PointTransactionType.CREDIT if drift.delta > 0 else PointTransactionType.DEBIT,
            amount=abs(drift.delta),
            activity_type=LedgerProvenance.CORRECTION.value,
            description="Cached balance realigned with transaction log",
            processed_by=admin_id,
            metadata={
                "cachedBalance": drift.cached_balance,
                "computedBalance": drift.computed_balance,
                "delta": drift.delta,
            },
            guard=_drift_unchanged,
        )
        logger.warning(
            "Corrected balance drift",
            user_id=str(user_id),
            old_balance=drift.cached_balance,
            new_balance=drift.computed_balance,
            transaction_id=str(transaction.id),
        )
        return BalanceCorrection(
            user_id=user_id,
            old_balance=drift.cached_balance,
            new_balance=drift.computed_balance,
            transaction_id=transaction.id,
        )

    async def _scan(self, user_ids: Sequence[UUID] | None) -> tuple[int, list[BalanceDrift]]:
        log_totals = (
            select(
                PointTransaction.user_id.label("user_id"),
                func.sum(signed_amount_expression()).label("computed"),
            )
            .where(counts_toward_log_balance())
            .group_by(PointTransaction.user_id)
            .subquery()
        )
        stmt = select(
            PointBalance.user_id,
            PointBalance.current_points,
            func.coalesce(log_totals.c.computed, 0),
        ).outerjoin(log_totals, log_totals.c.user_id == PointBalance.user_id)
        if user_ids is not None:
            stmt = stmt.where(PointBalance.user_id.in_(list(user_ids)))

        rows = (await self._db.execute(stmt.order_by(PointBalance.user_id))).all()
        drift = [
            BalanceDrift(user_id=user_id, cached_balance=int(cached), computed_balance=int(computed))
            for user_id, cached, computed in rows
            if int(cached) != int(computed)
        ]
        return len(rows), drift


__all__ = [
    "BalanceCorrection",
    "BalanceDrift",
    "ConsistencyAuditor",
    "ConsistencyReport",
    "ReconciliationReport",
]
