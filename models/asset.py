"""
CryptoAsset model - represents a tradable crypto symbol in the portfolio.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class CryptoAsset(SQLModel, table=True):
    """Represents a crypto asset. One row per upper-cased symbol."""
    __tablename__ = "crypto_asset"

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True, unique=True)  # e.g., "BTC", "ETH", "USDT"
    name: str  # e.g., "Bitcoin", "Tether"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
