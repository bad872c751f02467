"""
CryptoTransaction model - represents one executed buy/sell leg for an asset.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class FeeCurrency(str, Enum):
    USD = "USD"
    CRYPTO = "CRYPTO"


class FundingSource(str, Enum):
    """Where the cash for a leg came from."""
    CASH = "CASH"
    USDT = "USDT"


class CryptoTransaction(SQLModel, table=True):
    """
    Represents one trade leg.

    total_amount is the real external cash flow of the leg in USD. A buy paid
    with USDT carries total_amount = 0 and fee = 0; its cost lives on the
    linked USDT sell leg (funding_source = USDT on both rows).
    """
    __tablename__ = "crypto_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    asset_id: int = Field(foreign_key="crypto_asset.id", index=True)
    transaction_type: TransactionType
    quantity: float  # Units of the asset
    price_per_unit: float  # USD
    total_amount: float = Field(default=0.0)  # USD actually changing hands
    fee: float = Field(default=0.0)  # Always stored in USD
    fee_currency: FeeCurrency = Field(default=FeeCurrency.USD)
    fee_in_crypto: Optional[float] = Field(default=None)  # Original fee if paid in the asset
    funding_source: FundingSource = Field(default=FundingSource.CASH)
    linked_transaction_id: Optional[int] = Field(
        default=None, foreign_key="crypto_transaction.id", index=True
    )
    exchange: Optional[str] = Field(default=None)  # Binance, Coinbase, P2P-..., etc.
    notes: Optional[str] = Field(default=None)
    transaction_date: datetime = Field(default_factory=datetime.now, index=True)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_funding_leg(self) -> bool:
        """True for the synthetic USDT sell that pays for another purchase."""
        return (
            self.funding_source == FundingSource.USDT
            and self.transaction_type == TransactionType.SELL
        )

    @property
    def is_usdt_funded_buy(self) -> bool:
        return (
            self.funding_source == FundingSource.USDT
            and self.transaction_type == TransactionType.BUY
        )
