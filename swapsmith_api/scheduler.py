"""
Order scheduler: the single periodic loop that drives limit orders, price
alerts, DCA schedules and watched-order reconciliation.

Runs as a background task, one tick per interval. A tick that would start
while the previous one is still running is skipped. stop() lets the running
tick finish instead of cancelling it.
"""
import asyncio
import inspect
import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from .config import config
from .database import DatabaseService
from .dca import DcaRunner
from .limit_orders import LimitOrderMonitor
from .notifier import Notifier
from .order_monitor import OrderMonitor
from .price_alerts import PriceAlertMonitor
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceMonitor(Protocol):
    async def init(self) -> None:
        ...

    async def check_pending_limit_orders(self) -> dict:
        ...


class OrderScheduler:
    def __init__(
        self,
        price_monitor: PriceMonitor,
        dca_runner: Optional[DcaRunner] = None,
        order_monitor: Optional[OrderMonitor] = None,
        interval_seconds: Optional[int] = None,
        alert_monitor: Optional[PriceAlertMonitor] = None,
    ):
        if not isinstance(price_monitor, PriceMonitor) or not all(
            inspect.iscoroutinefunction(getattr(price_monitor, name))
            for name in ("init", "check_pending_limit_orders")
        ):
            raise TypeError(
                f"{type(price_monitor).__name__} must provide async init() and check_pending_limit_orders()"
            )

        self.price_monitor = price_monitor
        self.dca_runner = dca_runner
        self.order_monitor = order_monitor
        self.alert_monitor = alert_monitor
        self.interval_seconds = interval_seconds or config.SCHEDULER_INTERVAL_SECONDS
        self.last_tick_results: dict = {}
        self.last_tick_at: Optional[datetime] = None
        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the scheduler background loop."""
        if self.running:
            logger.warning("Order scheduler already running")
            return

        await self.price_monitor.init()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Order scheduler started (interval: {self.interval_seconds}s)")

    async def stop(self):
        """Stop after the in-flight tick, if any, has finished."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("Order scheduler stopped")

    async def _run_loop(self):
        """Main scheduling loop."""
        while not self._stop_event.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Scheduler tick error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _steps(self):
        steps = [("limit_orders", self.price_monitor.check_pending_limit_orders)]
        if self.alert_monitor:
            steps.append(("price_alerts", self.alert_monitor.check_price_alerts))
        if self.dca_runner:
            steps.append(("dca", self.dca_runner.run_due_schedules))
        if self.order_monitor:
            steps.append(("watched_orders", self.order_monitor.check_watched_orders))
        return steps

    async def run_tick(self) -> bool:
        """
        Run one pass over every component.

        Returns:
            False if a tick was already running and this one was skipped
        """
        if self._tick_lock.locked():
            logger.warning("Previous scheduler tick still running, skipping")
            return False

        async with self._tick_lock:
            started = datetime.utcnow()
            results = {}
            for name, step in self._steps():
                try:
                    results[name] = await step()
                except Exception as e:
                    logger.error(f"Scheduler step {name} failed: {e}", exc_info=True)
                    results[name] = {"error": str(e)}

            self.last_tick_results = results
            self.last_tick_at = started
            elapsed = (datetime.utcnow() - started).total_seconds()
            logger.info(f"Scheduler tick complete in {elapsed:.1f}s: {results}")
        return True


def create_scheduler(
    db_service: DatabaseService,
    sideshift: SideShiftClient,
    notifier: Notifier,
    interval_seconds: Optional[int] = None,
) -> OrderScheduler:
    """Wire the scheduler with its production components."""
    return OrderScheduler(
        price_monitor=LimitOrderMonitor(db_service, sideshift, notifier),
        dca_runner=DcaRunner(db_service, sideshift, notifier),
        order_monitor=OrderMonitor(db_service, sideshift, notifier),
        interval_seconds=interval_seconds,
        alert_monitor=PriceAlertMonitor(db_service, notifier),
    )
