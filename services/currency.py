"""
Currency service for USD -> VND conversion.
Prefers the latest stored USDT/VND market rate (the P2P market is where the
user actually converts), and falls back to the configured default rate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from config import get_settings
from models import MarketRate
from repositories import MarketRateRepository
from services.common import USDT_SYMBOL, TTLCache
from services.market_data import MarketDataService

logger = logging.getLogger(__name__)

DEFAULT_RATE_SOURCE = "Default"


@dataclass
class ConversionRate:
    """USD to local currency rate and where it came from."""
    rate: float
    source: str
    timestamp: datetime


class CurrencyService:
    """
    Service for converting USD figures to the local currency (VND).
    The resolved rate is cached for the configured TTL.
    """

    def __init__(
        self,
        market_data: Optional[MarketDataService] = None,
        cache: Optional[TTLCache] = None,
        default_rate: Optional[float] = None,
        local_currency: Optional[str] = None
    ):
        settings = get_settings()
        self.market_data = market_data
        self.cache = cache if cache is not None else TTLCache(settings.rate_cache_ttl_seconds)
        self.default_rate = default_rate if default_rate is not None else settings.default_usd_vnd_rate
        self.local_currency = (local_currency or settings.local_currency).upper()

    def _resolve_rate(self) -> ConversionRate:
        try:
            latest = MarketRateRepository.get_latest(USDT_SYMBOL, self.local_currency)
            if latest is not None and latest.rate > 0:
                return ConversionRate(
                    rate=latest.rate,
                    source=latest.source or "P2P Market",
                    timestamp=latest.timestamp
                )
        except Exception as e:
            logger.error(f"Failed to read stored {USDT_SYMBOL}/{self.local_currency} rate: {e}")

        logger.debug(f"No stored market rate, using default {self.default_rate}")
        return ConversionRate(
            rate=self.default_rate,
            source=DEFAULT_RATE_SOURCE,
            timestamp=datetime.now()
        )

    def get_usd_to_vnd_rate(self) -> ConversionRate:
        """
        Get the current USD to VND conversion rate.
        Prioritizes the stored P2P market rate, falls back to the default.
        """
        return self.cache.get_or_load("usd_local", self._resolve_rate)

    def convert_usd_to_vnd(self, usd_amount: float) -> dict:
        """Convert a USD amount to VND."""
        rates = self.get_usd_to_vnd_rate()
        return {
            'vnd': usd_amount * rates.rate,
            'rate': rates.rate,
            'source': rates.source,
        }

    def batch_convert_usd_to_vnd(self, usd_amounts: List[float]) -> dict:
        """Convert several USD amounts with one rate lookup."""
        rates = self.get_usd_to_vnd_rate()
        return {
            'vnd_amounts': [usd * rates.rate for usd in usd_amounts],
            'rate': rates.rate,
            'source': rates.source,
        }

    def refresh_market_rate(self) -> Optional[MarketRate]:
        """
        Fetch the current USD/local FX rate and store it as the USDT rate.

        USDT is treated as pegged to USD. Returns the stored MarketRate, or
        None when no market data service is configured or the fetch fails.
        """
        if self.market_data is None:
            logger.warning("No market data service configured, cannot refresh market rate")
            return None

        rate = self.market_data.get_exchange_rate("USD", self.local_currency)
        if not rate:
            logger.warning(f"Could not refresh USD/{self.local_currency} rate")
            return None

        stored = MarketRateRepository.add(USDT_SYMBOL, self.local_currency, rate, source="yfinance")
        self.cache.invalidate()
        logger.info(f"Stored {USDT_SYMBOL}/{self.local_currency} market rate {rate:,.2f}")
        return stored

    def invalidate(self) -> None:
        self.cache.invalidate()

    @staticmethod
    def format_vnd(amount: float) -> str:
        """Format an amount as Vietnamese dong, e.g. '1.234.567 ₫'."""
        return f"{CurrencyService.format_number(round(amount))} ₫"

    @staticmethod
    def format_number(amount: float) -> str:
        """Format a number with Vietnamese grouping (dot thousands, comma decimals)."""
        text = f"{amount:,.0f}" if float(amount).is_integer() else f"{amount:,.2f}"
        return text.replace(",", "_").replace(".", ",").replace("_", ".")
