"""Points ledger domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from hustl_api.core.time import utcnow
from hustl_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PointTransactionType(str, Enum):
    """Direction of a ledger entry."""

    CREDIT = "credit"
    DEBIT = "debit"


class PointTransactionStatus(str, Enum):
    """Ledger entry lifecycle. Only ``pending`` rows may still change."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LedgerProvenance(str, Enum):
    """Provenance tags for entries that are not activity completions.

    Activity completions carry the upper-case activity code instead, so the
    two namespaces never collide.
    """

    MANUAL_AWARD = "manual_award"
    REDEMPTION = "redemption"
    CORRECTION = "correction"


class PointRedemptionStatus(str, Enum):
    """Redemption workflow states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PointBalance(Base):
    """Cached per-user balance derived from completed ledger entries."""

    __tablename__ = "point_balances"
    __table_args__ = (
        CheckConstraint("current_points >= 0", name="ck_point_balances_non_negative"),
    )

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, server_default="0")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Every flush that touches the row bumps ``version`` and asserts the value
    # read earlier, so concurrent writers across processes fail with StaleDataError.
    __mapper_args__ = {"version_id_col": version}


class PointTransaction(Base):
    """Append-only ledger entry."""

    __tablename__ = "point_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_point_transactions_amount_positive"),
        Index("ix_point_transactions_user_created", "user_id", "created_at"),
        Index("ix_point_transactions_user_activity", "user_id", "activity_type", "occurred_at"),
        Index("ix_point_transactions_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("point_balances.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_type = Column(
        SqlEnum(PointTransactionType, name="point_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    reference_id = Column(String(64), nullable=True)
    reference_type = Column(String(50), nullable=True)
    status = Column(
        SqlEnum(PointTransactionStatus, name="point_transaction_status", values_callable=_enum_values),
        nullable=False,
        default=PointTransactionStatus.COMPLETED,
    )
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_reservation(self) -> bool:
        return self.reserved_at is not None

    @property
    def signed_amount(self) -> int:
        if self.transaction_type == PointTransactionType.DEBIT:
            return -int(self.amount)
        return int(self.amount)


class PointActivity(Base):
    """Catalog entry describing an earnable activity."""

    __tablename__ = "point_activities"
    __table_args__ = (
        CheckConstraint("points_reward > 0", name="ck_point_activities_reward_positive"),
        CheckConstraint("daily_limit IS NULL OR daily_limit >= 1", name="ck_point_activities_daily_limit"),
        CheckConstraint("total_limit IS NULL OR total_limit >= 1", name="ck_point_activities_total_limit"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    points_reward = Column(Integer, nullable=False)
    daily_limit = Column(Integer, nullable=True)
    total_limit = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class PointRedemption(Base):
    """User request to convert points into an externally fulfilled reward."""

    __tablename__ = "point_redemptions"
    __table_args__ = (
        CheckConstraint("points_redeemed > 0", name="ck_point_redemptions_points_positive"),
        Index("ix_point_redemptions_user_requested", "user_id", "requested_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    points_redeemed = Column(Integer, nullable=False)
    redemption_type = Column(String(50), nullable=False)
    redemption_value = Column(Numeric(12, 2), nullable=False)
    redemption_details = Column(JSON, nullable=True)
    status = Column(
        SqlEnum(PointRedemptionStatus, name="point_redemption_status", values_callable=_enum_values),
        nullable=False,
        default=PointRedemptionStatus.PENDING,
        index=True,
    )
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    admin_notes = Column(Text, nullable=True)
    transaction_id = Column(
        UUID(as_uuid=True),
        ForeignKey("point_transactions.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


__all__ = [
    "LedgerProvenance",
    "PointActivity",
    "PointBalance",
    "PointRedemption",
    "PointRedemptionStatus",
    "PointTransaction",
    "PointTransactionStatus",
    "PointTransactionType",
]
