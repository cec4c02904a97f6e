"""
Price service for fetching USD prices and 24h change from CoinGecko.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple
import httpx

from swapsmith_api.config import config as app_config
from swapsmith_api.conditions import PriceSnapshot

logger = logging.getLogger(__name__)

# Cache for prices (simple in-memory cache)
# symbol -> (price, change_24h, fetched_at)
_price_cache: Dict[str, Tuple[float, Optional[float], datetime]] = {}
CACHE_TTL_SECONDS = 60  # Cache prices for 60 seconds

# Ticker -> CoinGecko coin id
SYMBOL_TO_ID = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDT": "tether",
    "USDC": "usd-coin",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "POL": "matic-network",
    "LINK": "chainlink",
    "DAI": "dai",
    "UNI": "uniswap",
    "WBTC": "wrapped-bitcoin",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "WETH": "weth",
    "SHIB": "shiba-inu",
    "TRX": "tron",
    "ATOM": "cosmos",
    "XLM": "stellar",
    "ETC": "ethereum-classic",
    "FIL": "filecoin",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "PEPE": "pepe",
}


def _normalize(symbols: Iterable[str]) -> list:
    return sorted(set(s.upper() for s in symbols if s))


def _cached(symbol: str, now: datetime) -> Optional[Tuple[float, Optional[float], datetime]]:
    entry = _price_cache.get(symbol)
    if entry and (now - entry[2]).total_seconds() < CACHE_TTL_SECONDS:
        return entry
    return None


async def _fetch_from_coingecko(symbols: list) -> Dict[str, Tuple[float, Optional[float], datetime]]:
    """
    Fetch prices for symbols not already cached.

    Unknown symbols and API failures are logged and left out of the result.
    """
    ids_to_symbols: Dict[str, list] = {}
    for symbol in symbols:
        coin_id = SYMBOL_TO_ID.get(symbol)
        if coin_id:
            ids_to_symbols.setdefault(coin_id, []).append(symbol)
        else:
            logger.warning(f"No CoinGecko id for symbol {symbol}")

    if not ids_to_symbols:
        return {}

    headers = {}
    if app_config.COINGECKO_API_KEY:
        headers["x-cg-demo-api-key"] = app_config.COINGECKO_API_KEY

    results = {}
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{app_config.COINGECKO_API_URL}/simple/price",
                params={
                    "ids": ",".join(ids_to_symbols.keys()),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                },
                headers=headers,
                timeout=app_config.HTTP_TIMEOUT_SECONDS,
            )

            if response.status_code == 200:
                data = response.json()
                fetched_at = datetime.utcnow()
                for coin_id, coin_symbols in ids_to_symbols.items():
                    coin = data.get(coin_id) or {}
                    price = coin.get("usd")
                    if not price:
                        continue
                    change = coin.get("usd_24h_change")
                    for symbol in coin_symbols:
                        entry = (float(price), float(change) if change is not None else None, fetched_at)
                        _price_cache[symbol] = entry
                        results[symbol] = entry
            else:
                logger.warning(f"CoinGecko simple/price API error: {response.status_code}")

    except httpx.TimeoutException:
        logger.warning(f"Timeout fetching prices for {symbols}")
    except Exception as e:
        logger.error(f"Error fetching prices for {symbols}: {e}")

    return results


async def _load(symbols: Iterable[str]) -> Dict[str, Tuple[float, Optional[float], datetime]]:
    now = datetime.utcnow()
    results = {}
    to_fetch = []
    for symbol in _normalize(symbols):
        entry = _cached(symbol, now)
        if entry:
            results[symbol] = entry
        else:
            to_fetch.append(symbol)

    if to_fetch:
        results.update(await _fetch_from_coingecko(to_fetch))
    return results


async def get_prices(symbols: Iterable[str]) -> Dict[str, float]:
    """
    Get USD prices for several tickers.

    Args:
        symbols: Tickers such as "BTC", "ETH"

    Returns:
        Dict mapping upper-case ticker to USD price. Missing tickers are omitted.
    """
    return {symbol: entry[0] for symbol, entry in (await _load(symbols)).items()}


async def get_prices_with_change(symbols: Iterable[str]) -> Dict[str, Dict[str, Optional[float]]]:
    """Get USD price and 24h change (percent) per ticker."""
    return {
        symbol: {"price": entry[0], "change_24h": entry[1]}
        for symbol, entry in (await _load(symbols)).items()
    }


async def get_price_snapshots(symbols: Iterable[str]) -> Dict[str, PriceSnapshot]:
    """Prices together with the time they were fetched, for freshness checks."""
    return {
        symbol: PriceSnapshot(symbol=symbol, price=entry[0], fetched_at=entry[2])
        for symbol, entry in (await _load(symbols)).items()
    }


async def get_price(symbol: str) -> Optional[float]:
    if not symbol:
        return None
    prices = await get_prices([symbol])
    return prices.get(symbol.upper())


async def estimate_volume_usd(symbol: str, amount: float) -> Optional[float]:
    """USD value of an amount of a ticker, or None when no price is known."""
    if not amount or amount <= 0:
        return 0.0
    price = await get_price(symbol)
    if price is None:
        return None
    return round(price * amount, 2)


def clear_price_cache():
    """Clear the price cache."""
    _price_cache.clear()
