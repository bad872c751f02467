"""
P2PTransaction model - a fiat <-> crypto trade made peer to peer.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from models.transaction import TransactionType


class P2PTransaction(SQLModel, table=True):
    """A P2P trade of crypto (usually USDT) against a fiat currency (usually VND)."""
    __tablename__ = "p2p_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_type: TransactionType
    crypto: str = Field(default="USDT", index=True)
    crypto_amount: float
    fiat_currency: str = Field(default="VND", index=True)
    fiat_amount: float
    exchange_rate: float  # Fiat per unit of crypto
    market_rate: Optional[float] = Field(default=None)  # Market rate at trade time, for spread
    spread_percent: Optional[float] = Field(default=None)
    fee_amount: Optional[float] = Field(default=None)  # In fiat
    fee_percent: Optional[float] = Field(default=None)
    platform: Optional[str] = Field(default=None)  # Binance P2P, OTC, ...
    counterparty: Optional[str] = Field(default=None)
    payment_method: Optional[str] = Field(default=None)
    bank_name: Optional[str] = Field(default=None)
    reference_id: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    crypto_transaction_id: Optional[int] = Field(
        default=None, foreign_key="crypto_transaction.id"
    )  # Mirrored ledger leg
    transaction_date: datetime = Field(default_factory=datetime.now, index=True)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
