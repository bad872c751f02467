"""
Services package for the crypto ledger.
Provides core business logic separated from the data layer.
"""

from services.common import (
    normalize_symbol,
    TTLCache,
    LedgerError,
    ValidationError,
    TransactionNotFoundError,
    AssetNotFoundError,
    USDT_SYMBOL,
)
from services.registry import AssetRegistry
from services.recorder import TransactionRecorder, TradeIntent, TransactionUpdate
from services.market_data import MarketDataService
from services.currency import CurrencyService, ConversionRate
from services.portfolio import PortfolioService, AssetSummary, PortfolioSummary
from services.p2p import P2PService, P2PIntent, P2PSummary
from services.history import PortfolioHistoryService, TimeRange
from services.consistency import ConsistencyChecker, ConsistencyReport

__all__ = [
    # Common utilities
    'normalize_symbol',
    'TTLCache',
    'LedgerError',
    'ValidationError',
    'TransactionNotFoundError',
    'AssetNotFoundError',
    'USDT_SYMBOL',
    # Ledger writes
    'AssetRegistry',
    'TransactionRecorder',
    'TradeIntent',
    'TransactionUpdate',
    'P2PService',
    'P2PIntent',
    'P2PSummary',
    # Market data
    'MarketDataService',
    'CurrencyService',
    'ConversionRate',
    # Reporting
    'PortfolioService',
    'AssetSummary',
    'PortfolioSummary',
    'PortfolioHistoryService',
    'TimeRange',
    'ConsistencyChecker',
    'ConsistencyReport',
]
