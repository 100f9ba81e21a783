"""Ledger events emitted for downstream notification delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from hustl_api.core.time import utcnow


class LedgerEventType(str, Enum):
    BALANCE_CHANGED = "balance.changed"
    REDEMPTION_REQUESTED = "redemption.requested"
    REDEMPTION_APPROVED = "redemption.approved"
    REDEMPTION_REJECTED = "redemption.rejected"
    REDEMPTION_CANCELLED = "redemption.cancelled"


@dataclass(slots=True)
class LedgerEvent:
    """Immutable description of something that already happened in the ledger."""

    event_type: LedgerEventType
    user_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type.value,
            "userId": str(self.user_id),
            "payload": self.payload,
            "occurredAt": self.occurred_at.isoformat(),
        }


__all__ = ["LedgerEvent", "LedgerEventType"]
