"""
MarketRate model - observed crypto/fiat market rates.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class MarketRate(SQLModel, table=True):
    """A crypto/fiat rate observation, e.g. USDT/VND from P2P or an API."""
    __tablename__ = "market_rate"

    id: Optional[int] = Field(default=None, primary_key=True)
    crypto: str = Field(index=True)
    fiat_currency: str = Field(index=True)
    rate: float
    source: Optional[str] = Field(default=None)  # "P2P Market", "yfinance", ...
    timestamp: datetime = Field(default_factory=datetime.now, index=True)
