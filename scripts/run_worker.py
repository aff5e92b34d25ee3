"""
Run a remote worker against an engine API

    python scripts/run_worker.py [--once] [--engine-url URL] [--worker-id ID]
"""

import argparse
import asyncio
import logging
import sys
import os

sys.path.append(os.getcwd())

from core.config import settings
from core.logging import setup_logging
from drivers.registry import build_registry
from engine.remote import RemoteWorker
from engine.worker import Worker

logger = logging.getLogger(__name__)


async def run(args) -> None:
    registry = build_registry(settings.SOURCES)
    remote = RemoteWorker(Worker(registry), engine_url=args.engine_url, worker_id=args.worker_id)
    try:
        if args.once:
            await remote.run_once()
        else:
            await remote.run_forever()
    finally:
        await remote.close()
        await registry.aclose()


def main():
    parser = argparse.ArgumentParser(description="Claim and execute crawl work from the engine API")
    parser.add_argument("--once", action="store_true", help="Run a single work unit and exit")
    parser.add_argument("--engine-url", default=None, help=f"Engine API base URL (default {settings.ENGINE_URL})")
    parser.add_argument("--worker-id", default=None, help=f"Worker id used as claim token (default {settings.WORKER_ID})")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
