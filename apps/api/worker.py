"""Standalone cron process: runs the daily analysis without the HTTP API."""

import asyncio
import logging
import signal

from config import settings
from database import Base, async_session_maker, engine
import models  # noqa: F401
from services.scheduler import create_analysis_scheduler, run_daily_analysis_service
from services.system_settings import get_cron_time, seed_default_settings

logger = logging.getLogger(__name__)


async def _bootstrap() -> str:
    if settings.AUTO_CREATE_DB_SCHEMA:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as db:
        await seed_default_settings(db)
        return await get_cron_time(db)


async def run_worker() -> None:
    cron_time = await _bootstrap()
    scheduler = create_analysis_scheduler(cron_time)
    scheduler.start()
    logger.info("Daily analysis scheduled: %s (%s)", cron_time, settings.SCHEDULER_TIMEZONE)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass
    try:
        if settings.RUN_IMMEDIATELY:
            summary = await run_daily_analysis_service()
            logger.info("Startup run finished: %s", summary.get("error") or "ok")
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        await engine.dispose()
        logger.info("Worker stopped")


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
