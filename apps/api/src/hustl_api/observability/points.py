"""In-process counters for points ledger activity."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConsistencyRunSnapshot:
    checked_users: int
    mismatches: int
    corrected: int
    total_discrepancy: int
    completed_at: datetime

    def as_dict(self) -> Dict[str, object]:
        return {
            "checked_users": self.checked_users,
            "mismatches": self.mismatches,
            "corrected": self.corrected,
            "total_discrepancy": self.total_discrepancy,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class PointsSnapshot:
    transactions: Dict[str, int]
    provenance: Dict[str, int]
    reservations: Dict[str, int]
    redemptions: Dict[str, int]
    rejections: Dict[str, int]
    write_retries: int
    contention_failures: int
    last_consistency_run: ConsistencyRunSnapshot | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "transactions": self.transactions,
            "provenance": self.provenance,
            "reservations": self.reservations,
            "redemptions": self.redemptions,
            "rejections": self.rejections,
            "write_retries": self.write_retries,
            "contention_failures": self.contention_failures,
            "last_consistency_run": (
                self.last_consistency_run.as_dict() if self.last_consistency_run else None
            ),
        }


class PointsObservabilityStore:
    """Thread-safe counters describing ledger throughput and health."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: Counter[str] = Counter()
        self._provenance: Counter[str] = Counter()
        self._reservations: Counter[str] = Counter()
        self._redemptions: Counter[str] = Counter()
        self._rejections: Counter[str] = Counter()
        self._write_retries = 0
        self._contention_failures = 0
        self._last_consistency_run: ConsistencyRunSnapshot | None = None

    def reset(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._provenance.clear()
            self._reservations.clear()
            self._redemptions.clear()
            self._rejections.clear()
            self._write_retries = 0
            self._contention_failures = 0
            self._last_consistency_run = None

    def record_transaction(self, transaction_type: str, provenance: str) -> None:
        with self._lock:
            self._transactions[transaction_type] += 1
            self._provenance[provenance] += 1

    def record_reservation(self, outcome: str) -> None:
        with self._lock:
            self._reservations[outcome] += 1

    def record_redemption(self, action: str) -> None:
        with self._lock:
            self._redemptions[action] += 1

    def record_rejection(self, code: str) -> None:
        with self._lock:
            self._rejections[code] += 1

    def record_write_retry(self) -> None:
        with self._lock:
            self._write_retries += 1

    def record_contention_failure(self) -> None:
        with self._lock:
            self._contention_failures += 1

    def record_consistency_run(
        self,
        *,
        checked_users: int,
        mismatches: int,
        corrected: int = 0,
        total_discrepancy: int = 0,
    ) -> None:
        with self._lock:
            self._last_consistency_run = ConsistencyRunSnapshot(
                checked_users=checked_users,
                mismatches=mismatches,
                corrected=corrected,
                total_discrepancy=total_discrepancy,
                completed_at=_utcnow(),
            )

    def snapshot(self) -> PointsSnapshot:
        with self._lock:
            return PointsSnapshot(
                transactions=dict(self._transactions),
                provenance=dict(self._provenance),
                reservations=dict(self._reservations),
                redemptions=dict(self._redemptions),
                rejections=dict(self._rejections),
                write_retries=self._write_retries,
                contention_failures=self._contention_failures,
                last_consistency_run=self._last_consistency_run,
            )


_POINTS_STORE = PointsObservabilityStore()


def get_points_store() -> PointsObservabilityStore:
    return _POINTS_STORE


__all__ = ["PointsObservabilityStore", "PointsSnapshot", "get_points_store"]
