"""
RQ tasks for background job processing.

This module contains synchronous wrapper functions for async operations,
designed to be executed by RQ workers.
"""

import asyncio
import logging
from datetime import datetime

from redis import Redis
from rq import Queue

from .config import config

logger = logging.getLogger(__name__)


def get_redis_connection() -> Redis:
    """Get Redis connection from config."""
    return Redis.from_url(config.REDIS_URL)


def get_queue(name: str = "default") -> Queue:
    """Get an RQ queue."""
    return Queue(name, connection=get_redis_connection())


def _build_services():
    from .database import DatabaseService
    from .notifier import Notifier
    from .sideshift_client import SideShiftClient

    db_service = DatabaseService(config.MONGO_URL, config.MONGO_DB, config.MONGO_TIMEOUT_MS)
    sideshift = SideShiftClient()
    notifier = Notifier(db_service)
    return db_service, sideshift, notifier


async def _connect_telegram(db_service, sideshift, notifier):
    """Attach a logged-in bot client to the notifier, if a token is configured."""
    if not config.TELEGRAM_BOT_TOKEN:
        return None
    from .telegram_bot import TelegramBot

    bot = TelegramBot(db_service, sideshift)
    await bot.connect()
    notifier.set_telegram_bot(bot)
    return bot


# =============================================================================
# Scheduler Tasks
# =============================================================================


def run_scheduler_tick_task() -> dict:
    """
    RQ task to run a single scheduler tick out of process.

    Checks pending limit orders, runs due DCA schedules and reconciles
    watched orders, exactly like one iteration of the in-app loop.

    Returns:
        dict with the per-step summaries of the tick
    """
    from .scheduler import create_scheduler

    logger.info("Starting scheduler tick task")

    async def _run():
        db_service, sideshift, notifier = _build_services()
        bot = None
        try:
            bot = await _connect_telegram(db_service, sideshift, notifier)
            scheduler = create_scheduler(db_service, sideshift, notifier)
            await scheduler.run_tick()
            return scheduler.last_tick_results
        finally:
            if bot:
                await bot.stop()
            await sideshift.close()

    try:
        results = asyncio.run(_run())
        logger.info(f"Scheduler tick task completed: {results}")
        return {
            "status": "success",
            "timestamp": datetime.utcnow().isoformat(),
            "results": results,
        }
    except Exception as e:
        logger.exception(f"Scheduler tick task failed: {e}")
        return {
            "status": "error",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e),
        }


def reconcile_order_task(order_id: str) -> dict:
    """
    RQ task to reconcile one swap history entry with SideShift.

    Returns:
        dict with the entry's status after reconciliation
    """
    from .order_monitor import OrderMonitor

    logger.info(f"Reconciling order {order_id}")

    async def _run():
        db_service, sideshift, notifier = _build_services()
        try:
            entry = await OrderMonitor(db_service, sideshift, notifier).reconcile(order_id)
        finally:
            await sideshift.close()
        if not entry:
            return {"order_id": order_id, "found": False}
        return {
            "order_id": entry["sideshift_order_id"],
            "found": True,
            "status": entry["status"],
            "tx_hash": entry.get("tx_hash"),
        }

    try:
        results = asyncio.run(_run())
        logger.info(f"Reconcile task completed: {results}")
        return {
            "status": "success",
            "timestamp": datetime.utcnow().isoformat(),
            "results": results,
        }
    except Exception as e:
        logger.exception(f"Reconcile task failed for {order_id}: {e}")
        return {
            "status": "error",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e),
        }


# =============================================================================
# Task Scheduling Helpers
# =============================================================================


def enqueue_scheduler_tick():
    """Enqueue a scheduler tick to run now."""
    queue = get_queue("high")
    return queue.enqueue(run_scheduler_tick_task, job_timeout="10m")


def enqueue_reconcile(order_id: str):
    """Enqueue a reconciliation of one order."""
    queue = get_queue("default")
    return queue.enqueue(reconcile_order_task, order_id, job_timeout="2m")
