#!/usr/bin/env python3
"""Seed the default earnable activities (existing codes are left untouched).

Example:
    python tooling/scripts/seed_point_activities.py
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed default point activities")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables first (local sqlite development only).",
    )
    return parser.parse_args()


async def _run(create_tables: bool) -> list[str]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from hustl_api.db.base import Base  # type: ignore import-position
    from hustl_api.db.session import async_session, engine  # type: ignore import-position
    from hustl_api.services.points import ActivityCatalog  # type: ignore import-position

    if create_tables:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        return await ActivityCatalog(session).seed_defaults()


def main() -> int:
    args = parse_args()
    created = asyncio.run(_run(args.create_tables))
    logger.success("Point activities seeded", created=created, count=len(created))
    return 0


if __name__ == "__main__":
    sys.exit(main())
