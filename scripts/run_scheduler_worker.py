#!/usr/bin/env python3
"""Dedicated worker that runs the in-process nightly reconciliation schedule."""

import asyncio

from app.core.logging_config import get_logger
from app.core.scheduler import start_scheduler, stop_scheduler
from app.db import create_db_and_tables

logger = get_logger(__name__)


async def main():
    logger.info("starting dedicated scheduler worker")
    create_db_and_tables()
    start_scheduler()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("scheduler worker shutting down")
    finally:
        stop_scheduler()


if __name__ == "__main__":
    asyncio.run(main())
