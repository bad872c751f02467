"""
Market data service for fetching crypto prices and FX rates.
Uses yfinance ("BTC-USD" style tickers, "USDVND=X" style FX pairs).
Enhanced with tenacity for retry logic and an injected TTL cache.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional

import pandas as pd
import yfinance as yf
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings
from services.common import USD_PEGGED_SYMBOLS, TTLCache

logger = logging.getLogger(__name__)


def to_yfinance_symbol(symbol: str, quote: str = "USD") -> str:
    """
    Convert a crypto symbol to yfinance format.

    Examples:
        >>> to_yfinance_symbol("btc")
        'BTC-USD'
    """
    return f"{symbol.strip().upper()}-{quote}"


class MarketDataService:
    """
    Service for fetching current crypto prices and exchange rates.
    Prices are cached per symbol for the configured TTL; a failed lookup
    returns None and is not cached.
    """

    def __init__(self, cache: Optional[TTLCache] = None):
        if cache is None:
            cache = TTLCache(get_settings().price_cache_ttl_seconds)
        self.cache = cache

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_ticker_history(yf_symbol: str, period: str = "1d") -> pd.DataFrame:
        """Fetch ticker history with retry logic."""
        return yf.Ticker(yf_symbol).history(period=period)

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_fast_info_price(yf_symbol: str) -> Optional[float]:
        """Fetch the last traded price from the ticker's fast_info."""
        return yf.Ticker(yf_symbol).fast_info.get("lastPrice")

    def _load_price(self, symbol: str) -> Optional[float]:
        yf_symbol = to_yfinance_symbol(symbol)
        try:
            price = self._fetch_fast_info_price(yf_symbol)
            if not price:
                hist = self._fetch_ticker_history(yf_symbol, period="1d")
                if not hist.empty:
                    price = hist['Close'].iloc[-1]

            if price and price > 0:
                return float(price)

            logger.warning(f"Could not retrieve price for {symbol}")
            return None

        except Exception as e:
            logger.error(f"Error fetching price for {symbol}: {e}")
            return None

    def get_current_price(self, symbol: str) -> Optional[float]:
        """
        Fetch the current USD price of a crypto asset.

        Args:
            symbol: Asset symbol (e.g., "BTC")

        Returns:
            Price in USD, or None if unavailable
        """
        canonical = symbol.strip().upper()
        if canonical in USD_PEGGED_SYMBOLS:
            return 1.0
        return self.cache.get_or_load(("price", canonical), lambda: self._load_price(canonical))

    def get_current_prices(self, symbols: Iterable[str], max_workers: int = 5) -> Dict[str, Optional[float]]:
        """
        Fetch current prices for several symbols in parallel.

        Returns:
            Dict mapping upper-cased symbol to price (or None)
        """
        unique = sorted({s.strip().upper() for s in symbols})
        if not unique:
            return {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            prices = list(executor.map(self.get_current_price, unique))
        return dict(zip(unique, prices))

    def _load_exchange_rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        ticker_symbol = f"{from_currency}{to_currency}=X"
        try:
            hist = self._fetch_ticker_history(ticker_symbol, period="5d")
            if not hist.empty:
                rate = hist['Close'].iloc[-1]
                if rate > 0:
                    return float(rate)

            logger.warning(f"Could not get exchange rate for {ticker_symbol}")
            return None

        except Exception as e:
            logger.error(f"Error fetching exchange rate {from_currency}->{to_currency}: {e}")
            return None

    def get_exchange_rate(self, from_currency: str, to_currency: str = "VND") -> Optional[float]:
        """
        Fetch a real-time exchange rate using yfinance FX tickers.

        Args:
            from_currency: Source currency code (e.g., "USD")
            to_currency: Target currency code (default: "VND")

        Returns:
            Exchange rate as float, 1.0 if same currency, or None if unavailable

        Examples:
            get_exchange_rate("USD", "VND") -> 25400.0
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return 1.0
        return self.cache.get_or_load(
            ("fx", from_currency, to_currency),
            lambda: self._load_exchange_rate(from_currency, to_currency)
        )

    def clear_cache(self) -> None:
        """Drop every cached price and rate."""
        self.cache.invalidate()
        logger.info("Market data cache cleared")
