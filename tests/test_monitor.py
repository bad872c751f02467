"""Scheduler job tests for monitor.py"""

from unittest.mock import MagicMock

from config import reload_settings
from monitor import run_maintenance, take_snapshot
from repositories import TransactionRepository
from services.currency import CurrencyService
from services.history import PortfolioHistoryService
from services.recorder import TradeIntent, TransactionRecorder


class TestTakeSnapshot:

    def test_refreshes_rate_then_snapshots(self):
        history = MagicMock(spec=PortfolioHistoryService)
        currency = MagicMock(spec=CurrencyService)

        take_snapshot(history, currency)

        currency.refresh_market_rate.assert_called_once()
        history.create_snapshot.assert_called_once()

    def test_refresh_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("REFRESH_MARKET_RATE", "false")
        reload_settings()
        history = MagicMock(spec=PortfolioHistoryService)
        currency = MagicMock(spec=CurrencyService)

        take_snapshot(history, currency)

        currency.refresh_market_rate.assert_not_called()
        history.create_snapshot.assert_called_once()

    def test_job_survives_failures(self):
        history = MagicMock(spec=PortfolioHistoryService)
        history.create_snapshot.side_effect = RuntimeError("db locked")
        currency = MagicMock(spec=CurrencyService)
        currency.refresh_market_rate.side_effect = ConnectionError("offline")

        take_snapshot(history, currency)

        history.create_snapshot.assert_called_once()


class TestMaintenance:

    def test_cleans_up_and_checks_consistency(self):
        _, purchase = TransactionRecorder.record(TradeIntent("ETH", "buy", 1, 3000, funded_by_usdt=True))
        TransactionRepository.delete(purchase.id)
        history = MagicMock(spec=PortfolioHistoryService)

        run_maintenance(history)

        history.cleanup_old_snapshots.assert_called_once_with(90)

    def test_consistency_failure_is_logged(self, monkeypatch, caplog):
        def broken_run():
            raise RuntimeError("database is locked")

        monkeypatch.setattr("monitor.ConsistencyChecker.run", staticmethod(broken_run))
        history = MagicMock(spec=PortfolioHistoryService)

        run_maintenance(history)

        history.cleanup_old_snapshots.assert_called_once_with(90)
        assert "Consistency check failed" in caplog.text
