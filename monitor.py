"""
Background portfolio monitoring script using APScheduler.
Periodically refreshes the USDT/VND market rate, snapshots total portfolio
value, prunes old snapshots and checks USDT-funded pairs for consistency.
"""

import logging
import sys
import time
from typing import Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from config import get_settings
from db_engine import init_db
from services import (
    ConsistencyChecker,
    CurrencyService,
    MarketDataService,
    PortfolioHistoryService,
    PortfolioService,
)

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_services() -> Tuple[PortfolioHistoryService, CurrencyService]:
    """Wire the snapshot service and the rate refresher to live market data."""
    market_data = MarketDataService()
    currency = CurrencyService(market_data=market_data)
    portfolio = PortfolioService(
        price_lookup=market_data.get_current_price,
        rate_lookup=currency.get_usd_to_vnd_rate
    )
    return PortfolioHistoryService(portfolio=portfolio), currency


def take_snapshot(history: PortfolioHistoryService, currency: CurrencyService) -> None:
    """
    Main job function: refresh the rate, then snapshot portfolio value.
    Called by the scheduler at the configured interval.
    """
    logger.info("=" * 60)
    logger.info("Starting portfolio snapshot...")

    if get_settings().refresh_market_rate:
        try:
            currency.refresh_market_rate()
        except Exception as e:
            logger.error(f"Market rate refresh failed: {e}")

    try:
        history.create_snapshot()
    except Exception as e:
        logger.error(f"Failed to create portfolio snapshot: {e}")

    logger.info("=" * 60)


def run_maintenance(history: PortfolioHistoryService) -> None:
    """Daily job: drop old snapshots and report ledger inconsistencies."""
    settings = get_settings()
    try:
        history.cleanup_old_snapshots(settings.snapshot_retention_days)
    except Exception as e:
        logger.error(f"Snapshot cleanup failed: {e}")

    try:
        report = ConsistencyChecker.run()
    except Exception as e:
        logger.error(f"Consistency check failed: {e}")
        return

    if not report.ok:
        logger.warning(
            f"Found {len(report.orphaned_legs)} orphaned leg(s) and "
            f"{len(report.amount_mismatches)} amount mismatch(es)"
        )


def start_monitor_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler.
    Snapshots run every snapshot_interval_minutes, maintenance daily at 03:00.
    """
    settings = get_settings()
    init_db()
    history, currency = build_services()
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        take_snapshot,
        trigger=IntervalTrigger(minutes=settings.snapshot_interval_minutes),
        args=[history, currency],
        id='portfolio_snapshot',
        name='Portfolio Snapshot',
        replace_existing=True
    )
    scheduler.add_job(
        run_maintenance,
        trigger=CronTrigger(hour=3, minute=0),
        args=[history],
        id='ledger_maintenance',
        name='Ledger Maintenance',
        replace_existing=True
    )

    logger.info("Taking initial snapshot on startup...")
    take_snapshot(history, currency)

    scheduler.start()
    logger.info(f"Portfolio monitor started. Snapshot every {settings.snapshot_interval_minutes} minutes.")
    return scheduler


def run_one_time_check() -> None:
    """Run a single snapshot and maintenance pass."""
    init_db()
    history, currency = build_services()
    take_snapshot(history, currency)
    run_maintenance(history)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "--once":
        run_one_time_check()
    else:
        scheduler = None
        try:
            scheduler = start_monitor_scheduler()
            print("\n" + "=" * 60)
            print("Crypto ledger monitor is running...")
            print("Press Ctrl+C to stop.")
            print("=" * 60 + "\n")

            while True:
                time.sleep(1)

        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down portfolio monitor...")
            if scheduler is not None:
                scheduler.shutdown()
            logger.info("Portfolio monitor stopped.")
