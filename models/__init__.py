"""
Database models for the crypto ledger.
All SQLModel table definitions are centralized here.
"""

from models.asset import CryptoAsset
from models.transaction import CryptoTransaction, TransactionType, FeeCurrency, FundingSource
from models.p2p_transaction import P2PTransaction
from models.market_rate import MarketRate
from models.portfolio_snapshot import PortfolioSnapshot

__all__ = [
    'CryptoAsset',
    'CryptoTransaction',
    'TransactionType',
    'FeeCurrency',
    'FundingSource',
    'P2PTransaction',
    'MarketRate',
    'PortfolioSnapshot',
]
