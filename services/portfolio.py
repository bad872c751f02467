"""
Portfolio service for calculating holdings, DCA cost basis, PnL, and net worth.
Read-only: derives every figure from the stored transaction rows.
Enhanced with VND conversion of all USD figures.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from db_engine import session_scope
from models import CryptoAsset, CryptoTransaction, TransactionType
from repositories import AssetRepository, TransactionRepository
from services.common import USDT_SYMBOL, AssetNotFoundError, safe_call
from services.currency import ConversionRate, CurrencyService
from services.market_data import MarketDataService

logger = logging.getLogger(__name__)

PriceLookup = Callable[[str], Optional[float]]
RateLookup = Callable[[], Optional[ConversionRate]]


@dataclass
class LedgerTotals:
    """Sums over one asset's transaction rows, before any market data."""
    total_bought_qty: float = 0.0
    total_sold_qty: float = 0.0
    buy_cash_usd: float = 0.0  # Σ total_amount over buys
    total_invested_usd: float = 0.0  # Σ (total_amount + fee) over buys
    total_sold_usd: float = 0.0  # Σ (total_amount - fee) over sells
    total_fees_usd: float = 0.0
    transaction_count: int = 0

    @property
    def current_holdings(self) -> float:
        return self.total_bought_qty - self.total_sold_qty

    @property
    def avg_buy_price_usd(self) -> float:
        """DCA price: cash paid on buys per unit bought, 0 when nothing was bought."""
        if self.total_bought_qty > 0:
            return self.buy_cash_usd / self.total_bought_qty
        return 0.0

    @property
    def realized_pl(self) -> float:
        # Sold units are valued at today's running average, not per-lot cost
        return self.total_sold_usd - self.total_sold_qty * self.avg_buy_price_usd


def tally_transactions(transactions: Iterable[CryptoTransaction]) -> LedgerTotals:
    """
    Sum transaction rows for one asset.

    USDT-funded purchases carry total_amount = 0 and fee = 0, so they add
    quantity but no invested capital; the cash is counted once on the USDT
    funding leg.
    """
    totals = LedgerTotals()
    for tx in transactions:
        fee = tx.fee or 0.0
        totals.transaction_count += 1
        totals.total_fees_usd += fee
        if tx.transaction_type == TransactionType.BUY:
            totals.total_bought_qty += tx.quantity
            totals.buy_cash_usd += tx.total_amount
            totals.total_invested_usd += tx.total_amount + fee
        elif tx.transaction_type == TransactionType.SELL:
            totals.total_sold_qty += tx.quantity
            totals.total_sold_usd += tx.total_amount - fee
    return totals


def _to_local(amount: Optional[float], rate: Optional[float]) -> Optional[float]:
    if amount is None or rate is None:
        return None
    return amount * rate


@dataclass
class AssetSummary:
    """Derived figures for one asset. *_vnd fields are None when no rate is available."""
    asset_id: int
    symbol: str
    name: str
    total_bought_qty: float
    total_sold_qty: float
    current_holdings: float
    total_invested_usd: float
    total_sold_usd: float
    total_fees_usd: float
    avg_buy_price_usd: float
    realized_pl: float
    unrealized_pl: float
    current_price: Optional[float]
    current_value_usd: float
    transaction_count: int
    usd_to_vnd_rate: Optional[float] = None
    rate_source: Optional[str] = None
    total_invested_vnd: Optional[float] = None
    total_sold_vnd: Optional[float] = None
    avg_buy_price_vnd: Optional[float] = None
    realized_pl_vnd: Optional[float] = None
    unrealized_pl_vnd: Optional[float] = None
    current_price_vnd: Optional[float] = None
    current_value_vnd: Optional[float] = None

    @property
    def total_pl(self) -> float:
        return self.realized_pl + self.unrealized_pl

    @property
    def unrealized_pl_pct(self) -> float:
        cost_basis = self.current_holdings * self.avg_buy_price_usd
        if cost_basis > 0:
            return self.unrealized_pl / cost_basis * 100
        return 0.0

    def to_dict(self) -> Dict:
        """Rounded view for display layers."""
        def r(value: Optional[float], digits: int = 2) -> Optional[float]:
            return round(value, digits) if value is not None else None

        return {
            'asset_id': self.asset_id,
            'symbol': self.symbol,
            'name': self.name,
            'total_bought_qty': r(self.total_bought_qty, 8),
            'total_sold_qty': r(self.total_sold_qty, 8),
            'current_holdings': r(self.current_holdings, 8),
            'total_invested_usd': r(self.total_invested_usd),
            'total_sold_usd': r(self.total_sold_usd),
            'total_fees_usd': r(self.total_fees_usd),
            'avg_buy_price_usd': r(self.avg_buy_price_usd, 8),
            'realized_pl': r(self.realized_pl),
            'unrealized_pl': r(self.unrealized_pl),
            'unrealized_pl_pct': r(self.unrealized_pl_pct),
            'total_pl': r(self.total_pl),
            'current_price': r(self.current_price, 8),
            'current_value_usd': r(self.current_value_usd),
            'transaction_count': self.transaction_count,
            'usd_to_vnd_rate': self.usd_to_vnd_rate,
            'rate_source': self.rate_source,
            'total_invested_vnd': r(self.total_invested_vnd, 0),
            'total_sold_vnd': r(self.total_sold_vnd, 0),
            'avg_buy_price_vnd': r(self.avg_buy_price_vnd, 0),
            'realized_pl_vnd': r(self.realized_pl_vnd, 0),
            'unrealized_pl_vnd': r(self.unrealized_pl_vnd, 0),
            'current_price_vnd': r(self.current_price_vnd, 0),
            'current_value_vnd': r(self.current_value_vnd, 0),
        }


@dataclass
class PortfolioSummary:
    """Figures for every asset plus portfolio-wide totals."""
    assets: List[AssetSummary] = field(default_factory=list)
    total_value_usd: float = 0.0
    total_invested_usd: float = 0.0
    total_sold_usd: float = 0.0
    total_fees_usd: float = 0.0
    total_realized_pl: float = 0.0
    total_unrealized_pl: float = 0.0
    usdt_balance: float = 0.0
    usd_to_vnd_rate: Optional[float] = None
    rate_source: Optional[str] = None
    total_value_vnd: Optional[float] = None
    total_invested_vnd: Optional[float] = None
    total_sold_vnd: Optional[float] = None
    total_realized_pl_vnd: Optional[float] = None
    total_unrealized_pl_vnd: Optional[float] = None

    @property
    def total_pl(self) -> float:
        return self.total_realized_pl + self.total_unrealized_pl

    @property
    def net_invested_usd(self) -> float:
        return self.total_invested_usd - self.total_sold_usd

    def get(self, symbol: str) -> Optional[AssetSummary]:
        for summary in self.assets:
            if summary.symbol == symbol.upper():
                return summary
        return None

    def to_dict(self) -> Dict:
        def r(value: Optional[float], digits: int = 2) -> Optional[float]:
            return round(value, digits) if value is not None else None

        return {
            'total_value_usd': r(self.total_value_usd),
            'total_invested_usd': r(self.total_invested_usd),
            'total_sold_usd': r(self.total_sold_usd),
            'net_invested_usd': r(self.net_invested_usd),
            'total_fees_usd': r(self.total_fees_usd),
            'total_realized_pl': r(self.total_realized_pl),
            'total_unrealized_pl': r(self.total_unrealized_pl),
            'total_pl': r(self.total_pl),
            'usdt_balance': r(self.usdt_balance),
            'usd_to_vnd_rate': self.usd_to_vnd_rate,
            'rate_source': self.rate_source,
            'total_value_vnd': r(self.total_value_vnd, 0),
            'total_invested_vnd': r(self.total_invested_vnd, 0),
            'total_sold_vnd': r(self.total_sold_vnd, 0),
            'total_realized_pl_vnd': r(self.total_realized_pl_vnd, 0),
            'total_unrealized_pl_vnd': r(self.total_unrealized_pl_vnd, 0),
            'assets': [summary.to_dict() for summary in self.assets],
        }


class PortfolioService:
    """
    Service for portfolio calculations.

    The current-price and USD->VND collaborators are injected; when either
    is unavailable (returns None or raises) the affected figures fall back
    to 0/None and the rest of the summary is still returned.
    """

    def __init__(
        self,
        price_lookup: Optional[PriceLookup] = None,
        rate_lookup: Optional[RateLookup] = None
    ):
        if price_lookup is None:
            price_lookup = MarketDataService().get_current_price
        if rate_lookup is None:
            rate_lookup = CurrencyService().get_usd_to_vnd_rate
        self.price_lookup = price_lookup
        self.rate_lookup = rate_lookup

    def _current_price(self, symbol: str) -> Optional[float]:
        price = safe_call(self.price_lookup, symbol, label=f"price of {symbol}")
        if price is None or price <= 0:
            logger.warning(f"Current price unavailable for {symbol}")
            return None
        return float(price)

    def _current_rate(self) -> Tuple[Optional[float], Optional[str]]:
        conversion = safe_call(self.rate_lookup, label="USD->VND rate")
        if conversion is None or not conversion.rate or conversion.rate <= 0:
            logger.warning("USD->VND rate unavailable, VND figures omitted")
            return None, None
        return conversion.rate, conversion.source

    def _build_summary(
        self,
        asset: CryptoAsset,
        transactions: List[CryptoTransaction],
        rate: Optional[float],
        rate_source: Optional[str]
    ) -> AssetSummary:
        totals = tally_transactions(transactions)
        holdings = totals.current_holdings
        avg_price = totals.avg_buy_price_usd

        current_price = self._current_price(asset.symbol) if holdings > 0 else None
        if holdings > 0 and current_price is not None:
            current_value = holdings * current_price
            unrealized = current_value - holdings * avg_price
        else:
            current_value = 0.0
            unrealized = 0.0

        return AssetSummary(
            asset_id=asset.id,
            symbol=asset.symbol,
            name=asset.name,
            total_bought_qty=totals.total_bought_qty,
            total_sold_qty=totals.total_sold_qty,
            current_holdings=holdings,
            total_invested_usd=totals.total_invested_usd,
            total_sold_usd=totals.total_sold_usd,
            total_fees_usd=totals.total_fees_usd,
            avg_buy_price_usd=avg_price,
            realized_pl=totals.realized_pl,
            unrealized_pl=unrealized,
            current_price=current_price,
            current_value_usd=current_value,
            transaction_count=totals.transaction_count,
            usd_to_vnd_rate=rate,
            rate_source=rate_source,
            total_invested_vnd=_to_local(totals.total_invested_usd, rate),
            total_sold_vnd=_to_local(totals.total_sold_usd, rate),
            avg_buy_price_vnd=_to_local(avg_price, rate),
            realized_pl_vnd=_to_local(totals.realized_pl, rate),
            unrealized_pl_vnd=_to_local(unrealized, rate),
            current_price_vnd=_to_local(current_price, rate),
            current_value_vnd=_to_local(current_value, rate),
        )

    def summarize_asset(self, asset_id: int) -> AssetSummary:
        """
        Calculate holdings, DCA and PnL for one asset.

        Raises:
            AssetNotFoundError: If no asset has this id
        """
        with session_scope() as sess:
            asset = AssetRepository.get_by_id(asset_id, session=sess)
            if asset is None:
                raise AssetNotFoundError(f"Asset {asset_id} not found")
            transactions = TransactionRepository.get_by_asset(asset_id, session=sess)

        rate, rate_source = self._current_rate()
        return self._build_summary(asset, transactions, rate, rate_source)

    def summarize_portfolio(self) -> PortfolioSummary:
        """Calculate per-asset figures for every asset plus portfolio totals."""
        with session_scope() as sess:
            assets = AssetRepository.get_all(session=sess)
            transactions = TransactionRepository.get_all(session=sess)

        by_asset: Dict[int, List[CryptoTransaction]] = {}
        for tx in transactions:
            by_asset.setdefault(tx.asset_id, []).append(tx)

        rate, rate_source = self._current_rate()
        portfolio = PortfolioSummary(usd_to_vnd_rate=rate, rate_source=rate_source)

        for asset in assets:
            summary = self._build_summary(asset, by_asset.get(asset.id, []), rate, rate_source)
            portfolio.assets.append(summary)
            portfolio.total_value_usd += summary.current_value_usd
            portfolio.total_invested_usd += summary.total_invested_usd
            portfolio.total_sold_usd += summary.total_sold_usd
            portfolio.total_fees_usd += summary.total_fees_usd
            portfolio.total_realized_pl += summary.realized_pl
            portfolio.total_unrealized_pl += summary.unrealized_pl
            if asset.symbol == USDT_SYMBOL:
                portfolio.usdt_balance = summary.current_holdings

        portfolio.total_value_vnd = _to_local(portfolio.total_value_usd, rate)
        portfolio.total_invested_vnd = _to_local(portfolio.total_invested_usd, rate)
        portfolio.total_sold_vnd = _to_local(portfolio.total_sold_usd, rate)
        portfolio.total_realized_pl_vnd = _to_local(portfolio.total_realized_pl, rate)
        portfolio.total_unrealized_pl_vnd = _to_local(portfolio.total_unrealized_pl, rate)
        return portfolio

    def summarize(self, asset_id: Optional[int] = None):
        """
        Summarize one asset, or the whole portfolio when asset_id is None.

        Returns:
            AssetSummary for a single asset, PortfolioSummary otherwise
        """
        if asset_id is None:
            return self.summarize_portfolio()
        return self.summarize_asset(asset_id)

    def get_total_value(self) -> Tuple[float, Optional[float]]:
        """Total market value of all holdings as (USD, VND or None)."""
        portfolio = self.summarize_portfolio()
        return portfolio.total_value_usd, portfolio.total_value_vnd

    def get_top_holdings(self, limit: int = 5) -> List[AssetSummary]:
        """Get top holdings by current value."""
        holdings = [s for s in self.summarize_portfolio().assets if s.current_holdings > 0]
        holdings.sort(key=lambda s: s.current_value_usd, reverse=True)
        return holdings[:limit]

    def get_allocation(self) -> Dict[str, float]:
        """Share of total portfolio value per symbol, in percent."""
        portfolio = self.summarize_portfolio()
        if portfolio.total_value_usd <= 0:
            return {}
        return {
            s.symbol: round(s.current_value_usd / portfolio.total_value_usd * 100, 2)
            for s in portfolio.assets
            if s.current_value_usd > 0
        }
