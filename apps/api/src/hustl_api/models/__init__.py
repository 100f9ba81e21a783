"""SQLAlchemy models package."""

from .points import (
    LedgerProvenance,
    PointActivity,
    PointBalance,
    PointRedemption,
    PointRedemptionStatus,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)

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
