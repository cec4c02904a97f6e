"""
Tests for order creation shared by the API and the bot.
"""
import pytest
from datetime import datetime
from unittest.mock import patch, AsyncMock

from swapsmith_api import orders
from swapsmith_api.errors import ValidationError


class TestPlaceSwapOrder:

    @pytest.mark.asyncio
    async def test_records_and_watches(self, mock_db, mock_sideshift, sample_order):
        with patch.object(orders.price_service, 'estimate_volume_usd', AsyncMock(return_value=3500.0)):
            order = await orders.place_swap_order(
                mock_db, mock_sideshift, "telegram:1", "q1", "bc1qsettle", refund_address="0xrefund",
            )

        assert order.id == sample_order.id
        mock_sideshift.create_order.assert_awaited_once_with("q1", "bc1qsettle", refund_address="0xrefund", user_ip=None)
        entry = mock_db.create_swap_history_entry.call_args.args[0]
        assert entry["sideshift_order_id"] == sample_order.id
        assert entry["user_id"] == "telegram:1"
        assert entry["from_amount"] == 1.0
        assert entry["volume_usd"] == 3500.0
        assert entry["source"] == "manual"
        mock_db.watch_order.assert_awaited_once_with(sample_order.id, "telegram:1", "waiting")

    @pytest.mark.asyncio
    async def test_provider_error_stores_nothing(self, mock_db, mock_sideshift):
        mock_sideshift.create_order = AsyncMock(side_effect=ValidationError("Quote expired", 400))

        with pytest.raises(ValidationError):
            await orders.place_swap_order(mock_db, mock_sideshift, "telegram:1", "q1", "bc1qsettle")

        mock_db.create_swap_history_entry.assert_not_called()
        mock_db.watch_order.assert_not_called()


class TestPlaceLimitOrder:

    @pytest.mark.asyncio
    async def test_creates_order_and_pending_history(self, mock_db):
        order = await orders.place_limit_order(
            mock_db, "telegram:1", "eth", "btc", 1.0, "below", 40000.0, "bc1qsettle",
        )

        assert order["status"] == "pending"
        assert order["condition_asset"] == "BTC"
        assert order["condition_operator"] == "lt"
        assert order["from_chain"] == "ethereum"
        assert order["to_chain"] == "bitcoin"
        mock_db.create_limit_order.assert_awaited_once_with(order)

        entry = mock_db.create_swap_history_entry.call_args.args[0]
        assert entry["sideshift_order_id"] == f"limit-{order['_id']}"
        assert entry["source"] == "limit"
        assert entry["status"] == "pending"

    @pytest.mark.asyncio
    async def test_invalid_operator(self, mock_db):
        with pytest.raises(ValueError):
            await orders.place_limit_order(mock_db, "telegram:1", "ETH", "BTC", 1.0, "sideways", 1.0, "bc1q")
        mock_db.create_limit_order.assert_not_called()


class TestPlaceDcaSchedule:

    @pytest.mark.asyncio
    async def test_first_run_is_next_matching_day(self, mock_db):
        # Monday 2026-10-19 12:00, first Wednesday after it
        schedule = await orders.place_dca_schedule(
            mock_db, "telegram:1", "USDC", "ETH", 50.0, "weekly", "0xsettle",
            day_of_week=2, now=datetime(2026, 10, 19, 12, 0),
        )

        assert schedule["next_execution"] == datetime(2026, 10, 21, 12, 0)
        assert schedule["is_active"] is True
        assert schedule["execution_count"] == 0
        mock_db.create_dca_schedule.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_daily(self, mock_db):
        schedule = await orders.place_dca_schedule(
            mock_db, "telegram:1", "USDC", "ETH", 10.0, "daily", "0xsettle",
            smart=True, now=datetime(2026, 10, 19, 12, 0, 30),
        )

        assert schedule["next_execution"] == datetime(2026, 10, 20, 12, 0)
        assert schedule["smart"] is True


class TestCancelLimitOrder:

    @pytest.mark.asyncio
    async def test_cancel_closes_history(self, mock_db):
        mock_db.cancel_limit_order = AsyncMock(return_value=True)

        assert await orders.cancel_limit_order(mock_db, "lim1", "telegram:1") is True
        mock_db.cancel_limit_order.assert_awaited_once_with("lim1", "telegram:1")
        mock_db.update_swap_history_status.assert_awaited_once_with("limit-lim1", "cancelled")

    @pytest.mark.asyncio
    async def test_cancel_refused(self, mock_db):
        mock_db.cancel_limit_order = AsyncMock(return_value=False)

        assert await orders.cancel_limit_order(mock_db, "lim1", "telegram:1") is False
        mock_db.update_swap_history_status.assert_not_called()
