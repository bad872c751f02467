"""
Repositories package for the crypto ledger.
Provides data access layer for all database operations.
"""

from repositories.asset_repository import AssetRepository
from repositories.transaction_repository import TransactionRepository
from repositories.p2p_repository import P2PRepository
from repositories.market_rate_repository import MarketRateRepository
from repositories.snapshot_repository import SnapshotRepository

__all__ = [
    'AssetRepository',
    'TransactionRepository',
    'P2PRepository',
    'MarketRateRepository',
    'SnapshotRepository',
]
