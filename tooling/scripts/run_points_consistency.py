#!/usr/bin/env python3
"""Compare cached point balances against the transaction log.

Example:
    python tooling/scripts/run_points_consistency.py
    python tooling/scripts/run_points_consistency.py --fix --admin <uuid>
    python tooling/scripts/run_points_consistency.py --user <uuid> --user <uuid>

Exits with status 1 when drift remains after the run.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from uuid import UUID

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit point balances against the ledger")
    parser.add_argument("--fix", action="store_true", help="Write correction entries for confirmed drift.")
    parser.add_argument("--user", dest="users", action="append", type=UUID, help="Limit the audit to a user id.")
    parser.add_argument("--admin", type=UUID, default=None, help="Admin id recorded on correction entries.")
    parser.add_argument("--passes", type=int, default=None, help="Re-check passes before drift is confirmed.")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from hustl_api.core.settings import settings  # type: ignore import-position
    from hustl_api.db.session import async_session  # type: ignore import-position
    from hustl_api.services.points import ConsistencyAuditor  # type: ignore import-position

    async with async_session() as session:
        auditor = ConsistencyAuditor(session)
        report = await auditor.check_consistency(
            args.users,
            passes=args.passes or settings.consistency_recheck_passes,
            delay_seconds=settings.consistency_recheck_delay_seconds,
        )
        summary = {
            "checkedUsers": report.checked_users,
            "mismatches": [drift.as_dict() for drift in report.mismatches],
            "totalDiscrepancy": report.total_discrepancy,
            "corrected": [],
            "remaining": len(report.mismatches),
        }
        if args.fix and report.mismatches:
            result = await auditor.fix_inconsistent_balances(admin_id=args.admin, report=report)
            summary["corrected"] = [
                {"userId": str(item.user_id), "delta": item.delta, "transactionId": str(item.transaction_id)}
                for item in result.corrections
            ]
            summary["remaining"] = len(report.mismatches) - len(result.corrections)
        return summary


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args))
    print(json.dumps(summary, indent=2))
    if summary["remaining"]:
        logger.warning("Balance drift remains", remaining=summary["remaining"], fix=args.fix)
        return 1
    logger.success("Points consistency run completed", checked_users=summary["checkedUsers"], fix=args.fix)
    return 0


if __name__ == "__main__":
    sys.exit(main())
