"""Media scheduler entry point."""

import asyncio
import logging

from media_scheduler.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the scheduler and block until interrupted."""
    from media_scheduler.app import run

    logger.info("Starting media scheduler (timezone %s)...", settings.scheduler_timezone)
    asyncio.run(run())


if __name__ == "__main__":
    main()
