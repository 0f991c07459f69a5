"""Initialize Prefect concurrency limits.

Run this once at startup to configure Prefect infrastructure.
"""

import asyncio
import logging

from prefect.client.orchestration import get_client

logger = logging.getLogger(__name__)

CONCURRENCY_LIMITS = {
    "db-heavy": 10,  # Max concurrent bulk metadata reads and upserts
    "sql-parse": 4,  # Max concurrent detection runs parsing procedure bodies
}


async def init_concurrency_limits() -> None:
    """Create or update concurrency limits."""
    async with get_client() as client:
        for tag, limit in CONCURRENCY_LIMITS.items():
            try:
                existing = await client.read_concurrency_limit_by_tag(tag)
            except Exception:
                existing = None

            try:
                if existing is None:
                    await client.create_concurrency_limit(tag=tag, concurrency_limit=limit)
                    logger.info("Created concurrency limit: %s=%d", tag, limit)
                elif existing.concurrency_limit != limit:
                    await client.delete_concurrency_limit_by_tag(tag)
                    await client.create_concurrency_limit(tag=tag, concurrency_limit=limit)
                    logger.info("Updated concurrency limit: %s=%d", tag, limit)
                else:
                    logger.info("Concurrency limit exists: %s=%d", tag, limit)
            except Exception as e:
                logger.warning("Could not configure concurrency limit %s: %s", tag, e)


async def init_prefect() -> None:
    """Initialize all Prefect infrastructure."""
    logger.info("Initializing Prefect infrastructure...")
    await init_concurrency_limits()
    logger.info("Prefect initialization complete")


def main() -> None:
    """Entry point for manual initialization."""
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_prefect())


if __name__ == "__main__":
    main()
