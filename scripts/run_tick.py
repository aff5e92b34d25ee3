"""
Advance one job from the command line (cron-friendly trigger)

    python scripts/run_tick.py [--dry-run]
"""

import argparse
import asyncio
import json
import logging
import sys
import os

sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
from drivers.registry import build_registry
from engine.coordinator import JobCoordinator

logger = logging.getLogger(__name__)


async def run_tick(dry_run: bool = False) -> int:
    registry = build_registry(settings.SOURCES)
    try:
        async with async_session_maker() as session:
            summary = await JobCoordinator(session, registry).advance(dry_run=dry_run)
    finally:
        await registry.aclose()

    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return 1 if summary.status in ("failed", "retry") else 0


def main():
    parser = argparse.ArgumentParser(description="Advance one crawl job by one tick")
    parser.add_argument("--dry-run", action="store_true", help="Only report which job would be advanced")
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(run_tick(dry_run=args.dry_run)))


if __name__ == "__main__":
    main()
