"""Periodic balance audit against the transaction log."""

# meta: job: points-consistency

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from hustl_api.core.settings import settings
from hustl_api.services.points import ConsistencyAuditor

from ._session import SessionFactory, open_session


async def run_points_consistency_audit(
    *,
    session_factory: SessionFactory,
    fix: bool = False,
) -> Dict[str, Any]:
    """Scan every balance; with ``fix`` emit correction entries for confirmed drift."""

    session = await open_session(session_factory)
    async with session as managed_session:
        auditor = ConsistencyAuditor(managed_session)
        report = await auditor.check_consistency(
            passes=settings.consistency_recheck_passes,
            delay_seconds=settings.consistency_recheck_delay_seconds,
        )
        summary: Dict[str, Any] = {
            "checked_users": report.checked_users,
            "mismatches": len(report.mismatches),
            "total_discrepancy": report.total_discrepancy,
            "corrected": 0,
            "skipped": 0,
            "errors": 0,
        }
        if fix and report.mismatches:
            reconciliation = await auditor.fix_inconsistent_balances(report=report)
            summary.update(
                corrected=len(reconciliation.corrections),
                skipped=len(reconciliation.skipped),
                errors=len(reconciliation.errors),
            )

    log = logger.bind(summary=summary)
    if summary["mismatches"] and not fix:
        log.warning("Points consistency audit found drift")
    else:
        log.info("Points consistency audit completed")
    return summary


__all__ = ["run_points_consistency_audit"]
