"""TransactionRecorder tests: single-row trades, USDT-funded pairs, edits and deletes"""

import math
from datetime import datetime

import pytest

from models import FeeCurrency, FundingSource, TransactionType
from repositories import TransactionRepository
from services.common import FUNDING_NOTE_SUFFIX, TransactionNotFoundError, ValidationError
from services.recorder import TradeIntent, TransactionRecorder, TransactionUpdate
from services.registry import AssetRegistry


class TestCashTrades:

    def test_cash_buy_writes_one_row(self):
        rows = TransactionRecorder.record(TradeIntent("btc", "buy", 0.5, 45000, fee=10))

        assert len(rows) == 1
        tx = rows[0]
        assert tx.transaction_type == TransactionType.BUY
        assert tx.total_amount == pytest.approx(22500)
        assert tx.fee == pytest.approx(10)
        assert tx.funding_source == FundingSource.CASH
        assert tx.linked_transaction_id is None
        assert TransactionRepository.count() == 1
        assert AssetRegistry.find("BTC").id == tx.asset_id

    def test_crypto_fee_normalized_to_usd(self):
        tx, = TransactionRecorder.record(
            TradeIntent("BTC", "buy", 1, 45000, fee=0.001, fee_currency="crypto")
        )

        assert tx.fee == pytest.approx(45)
        assert tx.fee_currency == FeeCurrency.CRYPTO
        assert tx.fee_in_crypto == pytest.approx(0.001)

    def test_sell_ignores_usdt_funding_flag(self):
        rows = TransactionRecorder.record(TradeIntent("ETH", "sell", 1, 3000, funded_by_usdt=True))

        assert len(rows) == 1
        assert rows[0].total_amount == pytest.approx(3000)
        assert rows[0].funding_source == FundingSource.CASH
        assert AssetRegistry.find("USDT") is None


class TestUsdtFundedPurchase:

    def test_writes_linked_pair(self):
        occurred_at = datetime(2026, 3, 1, 10, 30)
        funding_leg, purchase = TransactionRecorder.record(
            TradeIntent("ETH", "buy", 2, 3000, funded_by_usdt=True, notes="dip", transaction_date=occurred_at)
        )

        assert purchase.transaction_type == TransactionType.BUY
        assert purchase.quantity == pytest.approx(2)
        assert purchase.price_per_unit == pytest.approx(3000)
        assert purchase.total_amount == 0
        assert purchase.fee == 0
        assert purchase.notes == f"dip {FUNDING_NOTE_SUFFIX}"

        assert funding_leg.transaction_type == TransactionType.SELL
        assert funding_leg.asset_id == AssetRegistry.find("USDT").id
        assert funding_leg.quantity == pytest.approx(6000)
        assert funding_leg.price_per_unit == 1.0
        assert funding_leg.total_amount == pytest.approx(6000)
        assert funding_leg.fee == 0
        assert "ETH" in funding_leg.notes

        assert funding_leg.transaction_date == purchase.transaction_date == occurred_at
        assert purchase.linked_transaction_id == funding_leg.id
        assert funding_leg.linked_transaction_id == purchase.id
        assert purchase.is_usdt_funded_buy and funding_leg.is_funding_leg

    def test_fee_folded_into_funding_amount(self):
        funding_leg, purchase = TransactionRecorder.record(
            TradeIntent("ETH", "buy", 2, 3000, fee=5, funded_by_usdt=True)
        )

        assert funding_leg.quantity == pytest.approx(6005)
        assert funding_leg.total_amount == pytest.approx(6005)
        assert purchase.fee == 0

    def test_usdt_created_lazily_with_name(self):
        TransactionRecorder.record(TradeIntent("ETH", "buy", 1, 3000, funded_by_usdt=True))
        assert AssetRegistry.find("USDT").name == "Tether"

    def test_second_leg_failure_rolls_back_everything(self, monkeypatch):
        original_add = TransactionRepository.add
        calls = []

        def failing_add(transaction, session=None):
            calls.append(transaction)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return original_add(transaction, session=session)

        monkeypatch.setattr(TransactionRepository, "add", staticmethod(failing_add))

        with pytest.raises(RuntimeError):
            TransactionRecorder.record(TradeIntent("ETH", "buy", 2, 3000, funded_by_usdt=True))

        monkeypatch.undo()
        assert TransactionRepository.count() == 0
        assert AssetRegistry.list_assets() == []


class TestRejections:

    @pytest.mark.parametrize("intent", [
        TradeIntent("BTC", "buy", 0, 100),
        TradeIntent("BTC", "buy", -1, 100),
        TradeIntent("BTC", "buy", 1, 0),
        TradeIntent("BTC", "buy", 1, math.nan),
        TradeIntent("BTC", "buy", math.inf, 100),
        TradeIntent("BTC", "buy", 1, 100, fee=-1),
        TradeIntent("BTC", "hold", 1, 100),
        TradeIntent("BTC", "buy", 1, 100, fee_currency="EUR"),
        TradeIntent("   ", "buy", 1, 100),
        TradeIntent("usdt", "buy", 100, 1.0, funded_by_usdt=True),
    ])
    def test_invalid_intent_persists_nothing(self, intent):
        with pytest.raises(ValidationError):
            TransactionRecorder.record(intent)

        assert TransactionRepository.count() == 0
        assert AssetRegistry.list_assets() == []


class TestUpdate:

    def test_cash_edit_recomputes_total_and_keeps_fee(self):
        tx, = TransactionRecorder.record(TradeIntent("BTC", "buy", 1, 100, fee=1))

        updated = TransactionRecorder.update(tx.id, TransactionUpdate(price_per_unit=200))

        assert updated.total_amount == pytest.approx(200)
        assert updated.fee == pytest.approx(1)

    def test_crypto_fee_follows_new_price(self):
        tx, = TransactionRecorder.record(TradeIntent("BTC", "buy", 1, 100, fee=0.01, fee_currency="CRYPTO"))

        updated = TransactionRecorder.update(tx.id, TransactionUpdate(price_per_unit=200))

        assert updated.fee == pytest.approx(2.0)
        assert updated.fee_in_crypto == pytest.approx(0.01)

    def test_funded_edit_resyncs_funding_leg(self):
        funding_leg, purchase = TransactionRecorder.record(
            TradeIntent("ETH", "buy", 2, 3000, fee=5, funded_by_usdt=True)
        )

        updated = TransactionRecorder.update(purchase.id, TransactionUpdate(quantity=3))
        leg = TransactionRepository.get_by_id(funding_leg.id)

        assert updated.total_amount == 0
        assert updated.fee == 0
        assert leg.quantity == pytest.approx(9005)
        assert leg.total_amount == pytest.approx(9005)
        assert leg.linked_transaction_id == purchase.id

    def test_switch_funded_to_cash_removes_funding_leg(self):
        funding_leg, purchase = TransactionRecorder.record(
            TradeIntent("ETH", "buy", 2, 3000, fee=5, funded_by_usdt=True, notes="dip")
        )

        updated = TransactionRecorder.update(purchase.id, TransactionUpdate(funded_by_usdt=False))

        assert TransactionRepository.get_by_id(funding_leg.id) is None
        assert updated.total_amount == pytest.approx(6000)
        assert updated.fee == pytest.approx(5)
        assert updated.funding_source == FundingSource.CASH
        assert updated.linked_transaction_id is None
        assert updated.notes == "dip"
        assert TransactionRepository.count() == 1

    def test_switch_cash_to_funded_creates_funding_leg(self):
        tx, = TransactionRecorder.record(TradeIntent("ETH", "buy", 2, 3000, fee=5))

        updated = TransactionRecorder.update(tx.id, TransactionUpdate(funded_by_usdt=True))
        leg = TransactionRepository.get_by_id(updated.linked_transaction_id)

        assert updated.total_amount == 0
        assert updated.fee == 0
        assert leg.is_funding_leg
        assert leg.total_amount == pytest.approx(6005)
        assert leg.linked_transaction_id == updated.id

    def test_funding_leg_cannot_be_edited(self):
        funding_leg, _ = TransactionRecorder.record(TradeIntent("ETH", "buy", 2, 3000, funded_by_usdt=True))

        with pytest.raises(ValidationError):
            TransactionRecorder.update(funding_leg.id, TransactionUpdate(quantity=1))

    def test_fee_currency_change_requires_fee(self):
        tx, = TransactionRecorder.record(TradeIntent("BTC", "buy", 1, 100, fee=1))

        with pytest.raises(ValidationError):
            TransactionRecorder.update(tx.id, TransactionUpdate(fee_currency="CRYPTO"))

    def test_update_unknown_transaction(self):
        with pytest.raises(TransactionNotFoundError):
            TransactionRecorder.update(123, TransactionUpdate(quantity=1))


class TestDelete:

    def test_deleting_purchase_removes_funding_leg(self):
        funding_leg, purchase = TransactionRecorder.record(TradeIntent("ETH", "buy", 2, 3000, funded_by_usdt=True))

        deleted = TransactionRecorder.delete(purchase.id)

        assert sorted(deleted) == sorted([funding_leg.id, purchase.id])
        assert TransactionRepository.count() == 0

    def test_deleting_funding_leg_removes_purchase(self):
        funding_leg, purchase = TransactionRecorder.record(TradeIntent("ETH", "buy", 2, 3000, funded_by_usdt=True))

        TransactionRecorder.delete(funding_leg.id)

        assert TransactionRepository.get_by_id(purchase.id) is None

    def test_delete_single_row(self):
        keep, = TransactionRecorder.record(TradeIntent("BTC", "buy", 1, 100))
        drop, = TransactionRecorder.record(TradeIntent("BTC", "sell", 1, 120))

        assert TransactionRecorder.delete(drop.id) == [drop.id]
        assert TransactionRepository.get_by_id(keep.id) is not None

    def test_delete_unknown_transaction(self):
        with pytest.raises(TransactionNotFoundError):
            TransactionRecorder.delete(7)
