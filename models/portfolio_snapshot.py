"""
PortfolioSnapshot model - timestamped total portfolio value for history charts.
"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class PortfolioSnapshot(SQLModel, table=True):
    __tablename__ = "portfolio_snapshot"

    id: Optional[int] = Field(default=None, primary_key=True)
    total_value_usd: float
    total_value_vnd: Optional[float] = Field(default=None)  # None when no USD->VND rate was available
    snapshot_date: datetime = Field(default_factory=datetime.now, index=True)
    created_at: datetime = Field(default_factory=datetime.now)
