"""
Tests for the CoinGecko price service and its cache.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch, AsyncMock, MagicMock
import httpx

from swapsmith_api import price_service
from swapsmith_api.price_service import (
    clear_price_cache,
    estimate_volume_usd,
    get_price,
    get_price_snapshots,
    get_prices,
    get_prices_with_change,
)


def coingecko_response(data: dict, status_code: int = 200):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = data
    return mock_response


class TestGetPrices:
    """Test multi-symbol price fetching."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Clear caches before each test."""
        clear_price_cache()

    @pytest.mark.asyncio
    async def test_get_prices_success(self):
        mock_response = coingecko_response({
            "bitcoin": {"usd": 50000.5, "usd_24h_change": -1.2},
            "ethereum": {"usd": 3000.0, "usd_24h_change": 2.5},
        })

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(return_value=mock_response)

            prices = await get_prices(["btc", "ETH"])

        assert prices == {"BTC": 50000.5, "ETH": 3000.0}
        params = mock_client.return_value.get.call_args.kwargs["params"]
        assert params["ids"] == "bitcoin,ethereum"
        assert params["include_24hr_change"] == "true"

    @pytest.mark.asyncio
    async def test_missing_coin_is_omitted(self):
        mock_response = coingecko_response({"bitcoin": {"usd": 50000.0}})

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(return_value=mock_response)

            prices = await get_prices(["BTC", "ETH"])

        assert prices == {"BTC": 50000.0}

    @pytest.mark.asyncio
    async def test_unknown_symbol_not_requested(self):
        with patch('httpx.AsyncClient') as mock_client:
            prices = await get_prices(["NOTACOIN"])

        assert prices == {}
        mock_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_returns_empty(self):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(return_value=coingecko_response({}, status_code=429))

            prices = await get_prices(["BTC"])

        assert prices == {}

    @pytest.mark.asyncio
    async def test_timeout_returns_empty(self):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(side_effect=httpx.TimeoutException("timeout"))

            assert await get_price("BTC") is None


class TestPriceCache:
    """Prices are cached for CACHE_TTL_SECONDS."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Clear caches before each test."""
        clear_price_cache()

    @pytest.mark.asyncio
    async def test_second_call_uses_cache(self):
        mock_response = coingecko_response({"bitcoin": {"usd": 50000.0}})

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(return_value=mock_response)

            await get_price("BTC")
            await get_price("BTC")

        assert mock_client.return_value.get.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self):
        expired = datetime.utcnow() - timedelta(seconds=price_service.CACHE_TTL_SECONDS + 1)
        price_service._price_cache["BTC"] = (40000.0, None, expired)
        mock_response = coingecko_response({"bitcoin": {"usd": 50000.0}})

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.get = AsyncMock(return_value=mock_response)

            assert await get_price("BTC") == 50000.0

    @pytest.mark.asyncio
    async def test_snapshots_carry_fetch_time(self):
        fetched_at = datetime.utcnow() - timedelta(seconds=10)
        price_service._price_cache["BTC"] = (50000.0, 1.5, fetched_at)

        snapshots = await get_price_snapshots(["BTC"])

        assert snapshots["BTC"].price == 50000.0
        assert snapshots["BTC"].fetched_at == fetched_at

    @pytest.mark.asyncio
    async def test_prices_with_change(self):
        price_service._price_cache["ETH"] = (3000.0, -6.0, datetime.utcnow())

        result = await get_prices_with_change(["eth"])

        assert result == {"ETH": {"price": 3000.0, "change_24h": -6.0}}


class TestEstimateVolume:
    @pytest.fixture(autouse=True)
    def setup(self):
        clear_price_cache()

    @pytest.mark.asyncio
    async def test_volume(self):
        price_service._price_cache["ETH"] = (3000.0, None, datetime.utcnow())
        assert await estimate_volume_usd("ETH", 0.5) == 1500.0

    @pytest.mark.asyncio
    async def test_zero_amount(self):
        assert await estimate_volume_usd("ETH", 0) == 0.0

    @pytest.mark.asyncio
    async def test_unknown_price(self):
        assert await estimate_volume_usd("NOTACOIN", 1.0) is None
