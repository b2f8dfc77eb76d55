import asyncio
import logging

from hesco.bot.app import run_bot
from hesco.core.config import settings
from hesco.core.logging import setup_logging
from hesco.db.session import dispose_engine, init_engine
from hesco.scheduler.worker import run_scheduler

log = logging.getLogger(__name__)


async def main() -> None:
    setup_logging()
    init_engine(settings.database_url)

    tasks = []
    if settings.scheduler_enabled:
        tasks.append(asyncio.create_task(run_scheduler(), name="scheduler"))
    try:
        await run_bot()
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await dispose_engine()
        log.info("shutdown_complete")


if __name__ == "__main__":
    asyncio.run(main())
