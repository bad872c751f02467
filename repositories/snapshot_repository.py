"""
Snapshot Repository - data access layer for PortfolioSnapshot model.
"""

from typing import Optional, List
from datetime import datetime
from sqlmodel import Session, select

from db_engine import session_scope
from models import PortfolioSnapshot


class SnapshotRepository:
    """Repository for PortfolioSnapshot operations."""

    @staticmethod
    def add(
        total_value_usd: float,
        total_value_vnd: Optional[float],
        snapshot_date: Optional[datetime] = None,
        session: Optional[Session] = None
    ) -> PortfolioSnapshot:
        with session_scope(session) as sess:
            snapshot = PortfolioSnapshot(
                total_value_usd=total_value_usd,
                total_value_vnd=total_value_vnd,
                snapshot_date=snapshot_date or datetime.now()
            )
            sess.add(snapshot)
            sess.flush()
            sess.refresh(snapshot)
            return snapshot

    @staticmethod
    def get_since(start: datetime, session: Optional[Session] = None) -> List[PortfolioSnapshot]:
        """Snapshots taken at or after start, oldest first."""
        with session_scope(session) as sess:
            statement = select(PortfolioSnapshot).where(
                PortfolioSnapshot.snapshot_date >= start
            ).order_by(PortfolioSnapshot.snapshot_date, PortfolioSnapshot.id)
            return list(sess.exec(statement).all())

    @staticmethod
    def get_latest(session: Optional[Session] = None) -> Optional[PortfolioSnapshot]:
        with session_scope(session) as sess:
            statement = select(PortfolioSnapshot).order_by(
                PortfolioSnapshot.snapshot_date.desc(), PortfolioSnapshot.id.desc()
            ).limit(1)
            return sess.exec(statement).first()

    @staticmethod
    def delete_older_than(cutoff: datetime, session: Optional[Session] = None) -> int:
        """Delete snapshots taken before cutoff. Returns the number removed."""
        with session_scope(session) as sess:
            statement = select(PortfolioSnapshot).where(PortfolioSnapshot.snapshot_date < cutoff)
            snapshots = sess.exec(statement).all()
            for snapshot in snapshots:
                sess.delete(snapshot)
            sess.flush()
            return len(snapshots)
