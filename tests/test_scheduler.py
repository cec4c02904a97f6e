"""
Tests for the order scheduler loop.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from swapsmith_api.scheduler import OrderScheduler, create_scheduler


class StubMonitor:
    """Price monitor whose check can be held open by the test."""

    def __init__(self, gate: asyncio.Event = None):
        self.gate = gate
        self.initialized = False
        self.checks = 0
        self.finished = 0

    async def init(self):
        self.initialized = True

    async def check_pending_limit_orders(self):
        self.checks += 1
        if self.gate is not None:
            await self.gate.wait()
        self.finished += 1
        return {"checked": 0}


class FailingMonitor(StubMonitor):
    async def check_pending_limit_orders(self):
        raise RuntimeError("price feed down")


class SyncMonitor:
    def init(self):
        pass

    def check_pending_limit_orders(self):
        return {}


class TestConstruction:

    def test_rejects_object_without_methods(self):
        with pytest.raises(TypeError):
            OrderScheduler(object())

    def test_rejects_sync_methods(self):
        with pytest.raises(TypeError):
            OrderScheduler(SyncMonitor())

    def test_accepts_async_monitor(self):
        scheduler = OrderScheduler(StubMonitor(), interval_seconds=5)
        assert scheduler.interval_seconds == 5
        assert not scheduler.running

    def test_create_scheduler_wires_components(self, mock_db, mock_sideshift, mock_notifier):
        scheduler = create_scheduler(mock_db, mock_sideshift, mock_notifier, interval_seconds=30)

        assert scheduler.dca_runner is not None
        assert scheduler.order_monitor is not None
        assert scheduler.alert_monitor is not None
        assert scheduler.interval_seconds == 30


class TestRunTick:

    @pytest.mark.asyncio
    async def test_runs_every_step(self):
        dca = MagicMock()
        dca.run_due_schedules = AsyncMock(return_value={"executed": 1})
        watcher = MagicMock()
        watcher.check_watched_orders = AsyncMock(return_value={"checked": 2})
        scheduler = OrderScheduler(StubMonitor(), dca_runner=dca, order_monitor=watcher)

        assert await scheduler.run_tick() is True

        assert scheduler.last_tick_results == {
            "limit_orders": {"checked": 0},
            "dca": {"executed": 1},
            "watched_orders": {"checked": 2},
        }
        assert scheduler.last_tick_at is not None

    @pytest.mark.asyncio
    async def test_price_alert_step_runs_after_limit_orders(self):
        alerts = MagicMock()
        alerts.check_price_alerts = AsyncMock(return_value={"triggered": 1})
        scheduler = OrderScheduler(StubMonitor(), alert_monitor=alerts)

        await scheduler.run_tick()

        assert list(scheduler.last_tick_results) == ["limit_orders", "price_alerts"]
        assert scheduler.last_tick_results["price_alerts"] == {"triggered": 1}

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_others(self):
        dca = MagicMock()
        dca.run_due_schedules = AsyncMock(return_value={"executed": 0})
        scheduler = OrderScheduler(FailingMonitor(), dca_runner=dca)

        await scheduler.run_tick()

        assert scheduler.last_tick_results["limit_orders"] == {"error": "price feed down"}
        assert scheduler.last_tick_results["dca"] == {"executed": 0}

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        gate = asyncio.Event()
        monitor = StubMonitor(gate)
        scheduler = OrderScheduler(monitor)

        first = asyncio.create_task(scheduler.run_tick())
        await asyncio.sleep(0)
        assert monitor.checks == 1

        assert await scheduler.run_tick() is False
        assert monitor.checks == 1

        gate.set()
        assert await first is True
        assert monitor.finished == 1


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_initializes_and_ticks(self):
        monitor = StubMonitor()
        scheduler = OrderScheduler(monitor, interval_seconds=3600)

        await scheduler.start()
        await asyncio.sleep(0.01)

        assert monitor.initialized
        assert monitor.checks == 1
        assert scheduler.running

        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self):
        gate = asyncio.Event()
        monitor = StubMonitor(gate)
        scheduler = OrderScheduler(monitor, interval_seconds=3600)

        await scheduler.start()
        await asyncio.sleep(0.01)
        assert monitor.checks == 1

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)
        assert not stopping.done()

        gate.set()
        await stopping
        assert monitor.finished == 1
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self):
        monitor = StubMonitor()
        scheduler = OrderScheduler(monitor, interval_seconds=3600)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()
