"""
Portfolio history: periodic snapshots of total portfolio value for charts.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import pandas as pd

from models import PortfolioSnapshot
from repositories import SnapshotRepository
from services.common import ValidationError
from services.portfolio import PortfolioService

logger = logging.getLogger(__name__)


class TimeRange(str, Enum):
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    ONE_YEAR = "1Y"
    ALL = "ALL"


RANGE_LENGTHS = {
    TimeRange.ONE_DAY: timedelta(days=1),
    TimeRange.ONE_WEEK: timedelta(days=7),
    TimeRange.ONE_MONTH: timedelta(days=30),
    TimeRange.THREE_MONTHS: timedelta(days=90),
    TimeRange.ONE_YEAR: timedelta(days=365),
}

HISTORY_COLUMNS = ['total_value_usd', 'total_value_vnd']


def _coerce_range(value: Union[TimeRange, str]) -> TimeRange:
    try:
        return TimeRange(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(
            f"Time range must be one of {', '.join(r.value for r in TimeRange)}, got {value!r}"
        )


class PortfolioHistoryService:
    """
    Creates and reads portfolio value snapshots.

    Args:
        portfolio: Aggregator used to value the portfolio when snapshotting
        clock: Source of "now", injectable for tests
    """

    def __init__(
        self,
        portfolio: Optional[PortfolioService] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.portfolio = portfolio if portfolio is not None else PortfolioService()
        self.clock = clock

    def range_start(self, time_range: Union[TimeRange, str] = TimeRange.ONE_WEEK) -> datetime:
        """Earliest snapshot date included in a range."""
        time_range = _coerce_range(time_range)
        if time_range == TimeRange.ALL:
            return datetime.min
        return self.clock() - RANGE_LENGTHS[time_range]

    def create_snapshot(self) -> PortfolioSnapshot:
        """Value the portfolio now and store the totals."""
        total_usd, total_vnd = self.portfolio.get_total_value()
        snapshot = SnapshotRepository.add(total_usd, total_vnd, snapshot_date=self.clock())
        vnd_text = f"{total_vnd:,.0f}" if total_vnd is not None else "n/a"
        logger.info(f"Portfolio snapshot created: USD {total_usd:,.2f}, VND {vnd_text}")
        return snapshot

    def get_history(self, time_range: Union[TimeRange, str] = TimeRange.ONE_WEEK) -> List[PortfolioSnapshot]:
        """Snapshots within the range, oldest first."""
        return SnapshotRepository.get_since(self.range_start(time_range))

    def get_latest_snapshot(self) -> Optional[PortfolioSnapshot]:
        return SnapshotRepository.get_latest()

    def get_portfolio_change(self, time_range: Union[TimeRange, str] = TimeRange.ONE_DAY) -> Optional[Dict[str, float]]:
        """
        Change between the first snapshot in the range and the latest one.

        Returns:
            Dict with current_value, previous_value, change and change_percent
            (USD), or None when the range holds no snapshots
        """
        history = self.get_history(time_range)
        if not history:
            return None
        latest = self.get_latest_snapshot()
        if latest is None:
            return None

        current_value = latest.total_value_usd
        previous_value = history[0].total_value_usd
        change = current_value - previous_value
        return {
            'current_value': current_value,
            'previous_value': previous_value,
            'change': change,
            'change_percent': change / previous_value * 100 if previous_value > 0 else 0.0,
        }

    def cleanup_old_snapshots(self, days_to_keep: int = 90) -> int:
        """Delete snapshots older than days_to_keep. Returns the number removed."""
        cutoff = self.clock() - timedelta(days=days_to_keep)
        removed = SnapshotRepository.delete_older_than(cutoff)
        logger.info(f"Cleaned up {removed} portfolio snapshot(s) older than {days_to_keep} days")
        return removed

    def get_history_frame(
        self,
        time_range: Union[TimeRange, str] = TimeRange.ONE_WEEK,
        freq: Optional[str] = "D"
    ) -> pd.DataFrame:
        """
        Snapshot history as a DataFrame indexed by snapshot date.

        Args:
            time_range: Range to include
            freq: pandas offset alias; each period keeps its last snapshot.
                None returns the raw snapshots.

        Returns:
            DataFrame with total_value_usd and total_value_vnd columns
        """
        history = self.get_history(time_range)
        if not history:
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        df = pd.DataFrame(
            [{'snapshot_date': s.snapshot_date, 'total_value_usd': s.total_value_usd,
              'total_value_vnd': s.total_value_vnd} for s in history]
        ).set_index('snapshot_date')
        df['total_value_vnd'] = df['total_value_vnd'].astype(float)

        if freq is None:
            return df
        return df.resample(freq).last().dropna(subset=['total_value_usd'])
