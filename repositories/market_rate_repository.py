"""
MarketRate Repository - data access layer for MarketRate model.
"""

from typing import Optional, List
from sqlmodel import Session, select

from db_engine import session_scope
from models import MarketRate


class MarketRateRepository:
    """Repository for MarketRate operations."""

    @staticmethod
    def add(
        crypto: str,
        fiat_currency: str,
        rate: float,
        source: Optional[str] = None,
        session: Optional[Session] = None
    ) -> MarketRate:
        """Store a rate observation."""
        with session_scope(session) as sess:
            market_rate = MarketRate(
                crypto=crypto,
                fiat_currency=fiat_currency,
                rate=rate,
                source=source
            )
            sess.add(market_rate)
            sess.flush()
            sess.refresh(market_rate)
            return market_rate

    @staticmethod
    def get_latest(crypto: str, fiat_currency: str, session: Optional[Session] = None) -> Optional[MarketRate]:
        """Get the most recent rate for a crypto/fiat pair."""
        with session_scope(session) as sess:
            statement = select(MarketRate).where(
                MarketRate.crypto == crypto,
                MarketRate.fiat_currency == fiat_currency
            ).order_by(MarketRate.timestamp.desc(), MarketRate.id.desc()).limit(1)
            return sess.exec(statement).first()

    @staticmethod
    def get_history(
        crypto: str,
        fiat_currency: str,
        limit: int = 100,
        session: Optional[Session] = None
    ) -> List[MarketRate]:
        """Get recent rates for a pair, newest first."""
        with session_scope(session) as sess:
            statement = select(MarketRate).where(
                MarketRate.crypto == crypto,
                MarketRate.fiat_currency == fiat_currency
            ).order_by(MarketRate.timestamp.desc(), MarketRate.id.desc()).limit(limit)
            return list(sess.exec(statement).all())
