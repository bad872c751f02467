"""P2PService tests: validation, spread, fee, ledger mirroring, edits and summary"""

from datetime import datetime

import pytest

from models import FundingSource, TransactionType
from repositories import P2PRepository, TransactionRepository
from services.common import TransactionNotFoundError, ValidationError
from services.p2p import P2PIntent, P2PService, calculate_spread
from services.recorder import TransactionRecorder, TransactionUpdate
from services.registry import AssetRegistry


def _buy(amount=1000.0, rate=25500.0, **kwargs):
    return P2PIntent(
        transaction_type="buy",
        crypto_amount=amount,
        fiat_amount=amount * rate,
        exchange_rate=rate,
        **kwargs
    )


class TestRecord:

    def test_usdt_buy_is_mirrored_into_ledger(self):
        p2p = P2PService.record(_buy(transaction_date=datetime(2026, 2, 1, 9, 0)))

        assert p2p.id is not None
        assert p2p.crypto == "USDT"
        assert p2p.crypto_amount == pytest.approx(1000)
        assert p2p.crypto_transaction_id is not None

        mirror = TransactionRepository.get_by_id(p2p.crypto_transaction_id)
        assert mirror.asset_id == AssetRegistry.find("USDT").id
        assert mirror.transaction_type == TransactionType.BUY
        assert mirror.quantity == pytest.approx(1000)
        assert mirror.price_per_unit == 1.0
        assert mirror.total_amount == pytest.approx(1000)
        assert mirror.fee == 0
        assert mirror.funding_source == FundingSource.CASH
        assert mirror.exchange == "P2P-Direct"
        assert mirror.transaction_date == datetime(2026, 2, 1, 9, 0)

    def test_mirror_fee_converted_to_crypto_terms(self):
        p2p = P2PService.record(_buy(fee_percent=0.1, platform="Binance"))

        assert p2p.fee_amount == pytest.approx(25500)
        mirror = TransactionRepository.get_by_id(p2p.crypto_transaction_id)
        assert mirror.fee == pytest.approx(1.0)
        assert mirror.exchange == "P2P-Binance"

    def test_explicit_fee_amount_wins_over_percent(self):
        p2p = P2PService.record(_buy(fee_amount=10000, fee_percent=1))
        assert p2p.fee_amount == pytest.approx(10000)

    def test_sell_mirrors_usdt_sell(self):
        p2p = P2PService.record(P2PIntent("sell", 200, 200 * 26000, 26000))

        mirror = TransactionRepository.get_by_id(p2p.crypto_transaction_id)
        assert mirror.transaction_type == TransactionType.SELL
        assert mirror.total_amount == pytest.approx(200)

    def test_non_usdt_trade_not_mirrored(self):
        p2p = P2PService.record(P2PIntent("buy", 0.01, 0.01 * 1.5e9, 1.5e9, crypto="btc"))

        assert p2p.crypto == "BTC"
        assert p2p.crypto_transaction_id is None
        assert TransactionRepository.count() == 0

    def test_stores_calculated_crypto_amount(self):
        p2p = P2PService.record(P2PIntent("buy", 1000.005, 25_500_000, 25500))
        assert p2p.crypto_amount == pytest.approx(1000.0)

    def test_amount_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            P2PService.record(P2PIntent("buy", 990, 25_500_000, 25500))

        assert P2PService.list_transactions() == []
        assert TransactionRepository.count() == 0

    @pytest.mark.parametrize("intent", [
        P2PIntent("buy", 0, 0, 25500),
        P2PIntent("buy", 100, 2_550_000, 0),
        P2PIntent("buy", 100, 2_550_000, 25500, fee_amount=-1),
        P2PIntent("swap", 100, 2_550_000, 25500),
    ])
    def test_invalid_intent(self, intent):
        with pytest.raises(ValidationError):
            P2PService.record(intent)
        assert P2PService.list_transactions() == []

    def test_mirror_failure_rolls_back_p2p_row(self, monkeypatch):
        def failing_add(transaction, session=None):
            raise RuntimeError("locked")

        monkeypatch.setattr(TransactionRepository, "add", staticmethod(failing_add))

        with pytest.raises(RuntimeError):
            P2PService.record(_buy())

        monkeypatch.undo()
        assert P2PService.list_transactions() == []


class TestSpread:

    def test_spread_against_latest_market_rate(self):
        P2PService.update_market_rate("USDT", "VND", 25000, source="P2P Market")

        buy = P2PService.record(_buy(rate=25500))
        sell = P2PService.record(P2PIntent("sell", 100, 100 * 24500, 24500))

        assert buy.market_rate == 25000
        assert buy.spread_percent == pytest.approx(2.0)
        assert sell.spread_percent == pytest.approx(2.0)

    def test_no_market_rate_means_no_spread(self):
        p2p = P2PService.record(_buy())
        assert p2p.market_rate is None
        assert p2p.spread_percent is None

    def test_calculate_spread_signs(self):
        assert calculate_spread(TransactionType.BUY, 24000, 25000) == pytest.approx(-4.0)
        assert calculate_spread(TransactionType.SELL, 26000, 25000) == pytest.approx(-4.0)


class TestUpdate:

    def test_update_resyncs_mirrored_leg(self):
        recorded_at = datetime(2026, 2, 1, 9, 0)
        p2p = P2PService.record(_buy(1000, 25500, transaction_date=recorded_at))
        mirror_id = p2p.crypto_transaction_id

        updated = P2PService.update(
            p2p.id, P2PIntent("buy", 500, 500 * 26000, 26000, fee_amount=26000, platform="OKX")
        )

        assert updated.crypto_amount == pytest.approx(500)
        assert updated.exchange_rate == 26000
        assert updated.transaction_date == recorded_at
        assert updated.crypto_transaction_id == mirror_id

        mirror = TransactionRepository.get_by_id(mirror_id)
        assert mirror.quantity == pytest.approx(500)
        assert mirror.total_amount == pytest.approx(500)
        assert mirror.fee == pytest.approx(1.0)
        assert mirror.exchange == "P2P-OKX"
        assert mirror.transaction_date == recorded_at
        assert TransactionRepository.count() == 1

    def test_update_to_sell_flips_mirror(self):
        p2p = P2PService.record(_buy())

        P2PService.update(p2p.id, P2PIntent("sell", 200, 200 * 26000, 26000))

        mirror = TransactionRepository.get_by_id(p2p.crypto_transaction_id)
        assert mirror.transaction_type == TransactionType.SELL
        assert P2PService.summarize().current_holdings == pytest.approx(-200)

    def test_update_recomputes_spread_and_fee(self):
        p2p = P2PService.record(_buy(rate=25500))
        P2PService.update_market_rate("USDT", "VND", 25000)

        updated = P2PService.update(p2p.id, _buy(rate=25500, fee_percent=0.1))

        assert updated.market_rate == 25000
        assert updated.spread_percent == pytest.approx(2.0)
        assert updated.fee_amount == pytest.approx(25500)

    def test_invalid_update_changes_nothing(self):
        p2p = P2PService.record(_buy())

        with pytest.raises(ValidationError):
            P2PService.update(p2p.id, P2PIntent("buy", 990, 25_500_000, 25500))

        assert P2PService.get(p2p.id).crypto_amount == pytest.approx(1000)
        assert TransactionRepository.get_by_id(p2p.crypto_transaction_id).quantity == pytest.approx(1000)

    def test_changing_crypto_drops_and_restores_mirror(self):
        p2p = P2PService.record(_buy())

        btc = P2PService.update(p2p.id, P2PIntent("buy", 0.01, 0.01 * 1.5e9, 1.5e9, crypto="btc"))
        assert btc.crypto == "BTC"
        assert btc.crypto_transaction_id is None
        assert TransactionRepository.count() == 0

        usdt = P2PService.update(p2p.id, _buy())
        assert usdt.crypto_transaction_id is not None
        assert TransactionRepository.get_by_id(usdt.crypto_transaction_id).quantity == pytest.approx(1000)

    def test_update_unknown(self):
        with pytest.raises(TransactionNotFoundError):
            P2PService.update(99, _buy())

    def test_recorder_refuses_to_edit_mirrored_leg(self):
        p2p = P2PService.record(_buy())

        with pytest.raises(ValidationError):
            TransactionRecorder.update(p2p.crypto_transaction_id, TransactionUpdate(quantity=50))

        assert TransactionRepository.get_by_id(p2p.crypto_transaction_id).quantity == pytest.approx(1000)
        assert P2PService.summarize().current_holdings == pytest.approx(1000)


class TestDeleteAndList:

    def test_delete_removes_mirror(self):
        p2p = P2PService.record(_buy())

        deleted = P2PService.delete(p2p.id)

        assert deleted == [p2p.crypto_transaction_id]
        assert P2PRepository.get_by_id(p2p.id) is None
        assert TransactionRepository.count() == 0

    def test_delete_unknown(self):
        with pytest.raises(TransactionNotFoundError):
            P2PService.delete(99)

    def test_deleting_mirror_leg_keeps_p2p_row(self):
        p2p = P2PService.record(_buy())

        TransactionRepository.delete(p2p.crypto_transaction_id)

        survivor = P2PService.get(p2p.id)
        assert survivor.crypto_transaction_id is None

    def test_list_filters_and_orders_newest_first(self):
        older = P2PService.record(_buy(transaction_date=datetime(2026, 1, 1)))
        newer = P2PService.record(_buy(transaction_date=datetime(2026, 1, 2)))
        P2PService.record(P2PIntent("sell", 10, 10 * 26000, 26000, transaction_date=datetime(2026, 1, 3)))

        buys = P2PService.list_transactions(transaction_type="buy")

        assert [p.id for p in buys] == [newer.id, older.id]
        assert len(P2PService.list_transactions(crypto="usdt", fiat_currency="vnd")) == 3


class TestSummary:

    def test_weighted_average_and_pl(self):
        P2PService.update_market_rate("USDT", "VND", 26500)
        P2PService.record(_buy(1000, 25000))
        P2PService.record(_buy(1000, 26000))
        P2PService.record(P2PIntent("sell", 500, 500 * 27000, 27000))

        summary = P2PService.summarize()

        assert summary.total_bought == pytest.approx(2000)
        assert summary.total_sold == pytest.approx(500)
        assert summary.current_holdings == pytest.approx(1500)
        assert summary.total_fiat_spent == pytest.approx(51_000_000)
        assert summary.total_fiat_received == pytest.approx(13_500_000)
        assert summary.weighted_average_rate == pytest.approx(25500)
        assert summary.current_market_rate == 26500
        assert summary.current_value == pytest.approx(39_750_000)
        assert summary.cost_basis == pytest.approx(38_250_000)
        assert summary.unrealized_pl == pytest.approx(1_500_000)
        assert summary.realized_pl == pytest.approx(750_000)
        assert summary.total_pl == pytest.approx(2_250_000)
        assert summary.net_invested == pytest.approx(37_500_000)
        assert summary.total_spread == pytest.approx(1_500_000 + 500_000 + 250_000)
        assert summary.transaction_count == 3

    def test_fees_included_in_spent_and_deducted_from_received(self):
        P2PService.record(_buy(1000, 25000, fee_amount=50_000))
        P2PService.record(P2PIntent("sell", 100, 2_600_000, 26000, fee_amount=10_000))

        summary = P2PService.summarize("usdt", "vnd")

        assert summary.total_fees == pytest.approx(60_000)
        assert summary.total_fiat_spent == pytest.approx(25_050_000)
        assert summary.total_fiat_received == pytest.approx(2_590_000)
        assert summary.weighted_average_rate == pytest.approx(25050)

    def test_empty_pair(self):
        summary = P2PService.summarize()

        assert summary.transaction_count == 0
        assert summary.weighted_average_rate == 0
        assert summary.to_dict()['crypto'] == "USDT"


class TestMarketRates:

    def test_history_newest_first(self):
        P2PService.update_market_rate("usdt", "vnd", 25000)
        P2PService.update_market_rate("USDT", "VND", 25100, source="Manual")

        rates = P2PService.get_market_rates("USDT", "VND")

        assert [r.rate for r in rates] == [25100, 25000]
        assert rates[0].source == "Manual"

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationError):
            P2PService.update_market_rate("USDT", "VND", 0)
