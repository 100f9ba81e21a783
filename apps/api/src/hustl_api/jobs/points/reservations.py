"""Release redemption holds whose reservation window has elapsed."""

# meta: job: points-reservation-expiry

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from hustl_api.core.time import utcnow
from hustl_api.services.points import RedemptionWorkflow

from ._session import SessionFactory, open_session


async def expire_points_reservations(
    *,
    session_factory: SessionFactory,
    limit: int | None = None,
) -> Dict[str, Any]:
    """Cancel expired pending reservations; each one commits on its own."""

    session = await open_session(session_factory)
    async with session as managed_session:
        started_at = utcnow()
        result = await RedemptionWorkflow(managed_session).expire_stale_reservations(now=started_at, limit=limit)

    summary = {**result.as_dict(), "ran_at": started_at.isoformat()}
    logger.bind(summary=summary).info("Reservation expiry sweep completed")
    return summary


__all__ = ["expire_points_reservations"]
