"""Background job tasks"""

import asyncio
import structlog

from app.jobs.celery_app import celery_app

logger = structlog.get_logger()


def run_async(coro):
    """Helper to run async functions in sync context, reusing the worker's loop"""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


@celery_app.task(name="expire_stale_reservations")
def expire_stale_reservations():
    """
    Close pending reservations whose confirmation window passed.
    Covers calls whose status callback never arrived.
    """
    async def _expire():
        from app.database import SessionLocal
        from app.services.lifecycle import expire_stale

        async with SessionLocal() as db:
            return await expire_stale(db)

    closed = run_async(_expire())
    logger.info("Expiry sweep finished", closed=closed)
    return closed
