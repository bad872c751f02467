"""
P2P ledger: fiat <-> crypto trades made peer to peer (typically VND <-> USDT).

A USDT trade is mirrored into the crypto ledger as a USDT buy or sell at 1.0
so the portfolio sees the USDT it can later spend; both rows are written,
edited and deleted together in one unit of work.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from sqlmodel import Session

from db_engine import session_scope
from models import CryptoTransaction, FeeCurrency, MarketRate, P2PTransaction, TransactionType
from repositories import MarketRateRepository, P2PRepository, TransactionRepository
from services.common import (
    USDT_NAME,
    USDT_SYMBOL,
    TransactionNotFoundError,
    ValidationError,
    coerce_transaction_type,
    normalize_symbol,
    optional_non_negative,
    require_positive,
)
from services.recorder import TradeIntent, TransactionRecorder

logger = logging.getLogger(__name__)

# Allowed gap between the entered crypto amount and fiat_amount / exchange_rate
AMOUNT_TOLERANCE = 0.01


@dataclass
class P2PIntent:
    """A P2P trade as entered by the user."""
    transaction_type: Union[TransactionType, str]
    crypto_amount: float
    fiat_amount: float
    exchange_rate: float  # Fiat per unit of crypto
    crypto: str = USDT_SYMBOL
    fiat_currency: str = "VND"
    fee_amount: Optional[float] = None  # In fiat
    fee_percent: Optional[float] = None  # Of fiat_amount, used when fee_amount is missing
    platform: Optional[str] = None
    counterparty: Optional[str] = None
    payment_method: Optional[str] = None
    bank_name: Optional[str] = None
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: Optional[datetime] = None


@dataclass
class P2PSummary:
    """Position and P/L of one crypto/fiat pair, in fiat."""
    crypto: str
    fiat_currency: str
    total_bought: float = 0.0
    total_sold: float = 0.0
    current_holdings: float = 0.0
    total_fiat_spent: float = 0.0  # Including fees
    total_fiat_received: float = 0.0  # Net of fees
    total_fees: float = 0.0
    total_spread: float = 0.0
    weighted_average_rate: float = 0.0
    current_market_rate: float = 0.0
    current_value: float = 0.0
    cost_basis: float = 0.0
    unrealized_pl: float = 0.0
    unrealized_pl_percent: float = 0.0
    realized_pl: float = 0.0
    total_pl: float = 0.0
    net_invested: float = 0.0
    transaction_count: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

def calculate_spread(transaction_type: TransactionType, rate: float, market_rate: float) -> float:
    """
    Spread against the market in percent.
    Positive means paying more than market on a buy, or receiving less on a sell.
    """
    if transaction_type == TransactionType.BUY:
        return (rate - market_rate) / market_rate * 100
    return (market_rate - rate) / market_rate * 100


def _trade_fields(intent: P2PIntent) -> Dict:
    """
    Validate a P2P intent and return the column values it stores.

    The stored crypto amount is fiat_amount / exchange_rate; the entered amount
    only has to agree with it within AMOUNT_TOLERANCE.

    Raises:
        ValidationError: If amounts are not positive or do not agree
    """
    transaction_type = coerce_transaction_type(intent.transaction_type)
    crypto = normalize_symbol(intent.crypto)
    crypto_amount = require_positive("Crypto amount", intent.crypto_amount)
    fiat_amount = require_positive("Fiat amount", intent.fiat_amount)
    exchange_rate = require_positive("Exchange rate", intent.exchange_rate)
    fee_amount = optional_non_negative("Fee amount", intent.fee_amount)
    fee_percent = optional_non_negative("Fee percent", intent.fee_percent)

    calculated_amount = fiat_amount / exchange_rate
    difference = abs(calculated_amount - crypto_amount)
    if difference > AMOUNT_TOLERANCE:
        raise ValidationError(
            f"Crypto amount ({crypto_amount}) doesn't match calculation "
            f"({calculated_amount:.4f}). Difference: {difference:.4f} {crypto}"
        )

    if fee_percent and not fee_amount:
        fee_amount = fiat_amount * fee_percent / 100

    return dict(
        transaction_type=transaction_type,
        crypto=crypto,
        crypto_amount=calculated_amount,
        fiat_currency=normalize_symbol(intent.fiat_currency),
        fiat_amount=fiat_amount,
        exchange_rate=exchange_rate,
        fee_amount=fee_amount,
        fee_percent=fee_percent,
        platform=intent.platform,
        counterparty=intent.counterparty,
        payment_method=intent.payment_method,
        bank_name=intent.bank_name,
        reference_id=intent.reference_id,
        notes=intent.notes,
        transaction_date=intent.transaction_date or datetime.now(),
    )


def _market_fields(fields: Dict, session: Session) -> Dict:
    """Market rate and spread of a trade against the latest stored rate for its pair."""
    latest = MarketRateRepository.get_latest(fields["crypto"], fields["fiat_currency"], session=session)
    market_rate = latest.rate if latest is not None and latest.rate > 0 else None
    spread = (
        calculate_spread(fields["transaction_type"], fields["exchange_rate"], market_rate)
        if market_rate else None
    )
    return dict(market_rate=market_rate, spread_percent=spread)


def _mirror_fee_and_notes(p2p: P2PTransaction) -> Tuple[float, str]:
    fee_usd = (p2p.fee_amount or 0.0) / p2p.exchange_rate
    notes = (
        f"P2P {p2p.transaction_type.value}: {p2p.fiat_amount:,.0f} {p2p.fiat_currency} "
        f"@ {p2p.exchange_rate:,.2f}"
    )
    if p2p.notes:
        notes = f"{notes} - {p2p.notes}"
    return fee_usd, notes


def _mirror_exchange(p2p: P2PTransaction) -> str:
    return f"P2P-{p2p.platform or 'Direct'}"


class P2PService:
    """Records P2P trades, keeps market rates, and summarizes a pair's position."""

    @staticmethod
    def record(intent: P2PIntent, session: Optional[Session] = None) -> P2PTransaction:
        """
        Record a P2P trade.

        Raises:
            ValidationError: If amounts are not positive or do not agree
                with the exchange rate; nothing is written
        """
        fields = _trade_fields(intent)

        with session_scope(session) as sess:
            p2p = P2PRepository.add(
                P2PTransaction(**fields, **_market_fields(fields, sess)),
                session=sess,
            )

            if p2p.crypto == USDT_SYMBOL:
                mirror = P2PService._mirror_to_ledger(p2p, session=sess)
                p2p.crypto_transaction_id = mirror.id
                p2p = P2PRepository.save(p2p, session=sess)

            logger.info(
                f"Recorded P2P {p2p.transaction_type.value} {p2p.crypto_amount:,.4f} {p2p.crypto} "
                f"for {p2p.fiat_amount:,.0f} {p2p.fiat_currency} @ {p2p.exchange_rate:,.2f}"
            )
            return p2p

    @staticmethod
    def update(
        transaction_id: int,
        intent: P2PIntent,
        session: Optional[Session] = None
    ) -> P2PTransaction:
        """
        Replace a P2P trade with the values of intent.

        Validation, fee and spread are recomputed as on record. The mirrored
        ledger leg is resynced in the same unit of work: created when the
        trade becomes a USDT trade, removed when it stops being one. A missing
        transaction_date keeps the stored one.

        Raises:
            TransactionNotFoundError: If no P2P trade has this id
            ValidationError: If the new values are invalid; nothing is written
        """
        fields = _trade_fields(intent)

        with session_scope(session) as sess:
            p2p = P2PRepository.get_by_id(transaction_id, session=sess)
            if p2p is None:
                raise TransactionNotFoundError(f"P2P transaction {transaction_id} not found")

            if intent.transaction_date is None:
                fields["transaction_date"] = p2p.transaction_date
            for name, value in {**fields, **_market_fields(fields, sess)}.items():
                setattr(p2p, name, value)

            mirror = None
            if p2p.crypto_transaction_id is not None:
                mirror = TransactionRepository.get_by_id(p2p.crypto_transaction_id, session=sess)

            if p2p.crypto == USDT_SYMBOL and mirror is not None:
                P2PService._resync_mirror(p2p, mirror, session=sess)
            elif p2p.crypto == USDT_SYMBOL:
                p2p = P2PRepository.save(p2p, session=sess)
                p2p.crypto_transaction_id = P2PService._mirror_to_ledger(p2p, session=sess).id
            elif mirror is not None:
                p2p.crypto_transaction_id = None
                p2p = P2PRepository.save(p2p, session=sess)
                TransactionRepository.delete_many([mirror.id], session=sess)

            p2p = P2PRepository.save(p2p, session=sess)
            logger.info(f"Updated P2P transaction {transaction_id} (ledger leg {p2p.crypto_transaction_id})")
            return p2p

    @staticmethod
    def _mirror_to_ledger(p2p: P2PTransaction, session: Session) -> CryptoTransaction:
        """Write the USDT ledger leg matching a P2P trade."""
        fee_usd, notes = _mirror_fee_and_notes(p2p)
        rows = TransactionRecorder.record(
            TradeIntent(
                symbol=USDT_SYMBOL,
                transaction_type=p2p.transaction_type,
                quantity=p2p.crypto_amount,
                price_per_unit=1.0,
                fee=fee_usd,
                display_name=USDT_NAME,
                exchange=_mirror_exchange(p2p),
                notes=notes,
                transaction_date=p2p.transaction_date,
            ),
            session=session,
        )
        return rows[0]

    @staticmethod
    def _resync_mirror(p2p: P2PTransaction, mirror: CryptoTransaction, session: Session) -> CryptoTransaction:
        """Bring an existing ledger leg back in line with its P2P trade."""
        fee_usd, notes = _mirror_fee_and_notes(p2p)
        mirror.transaction_type = p2p.transaction_type
        mirror.quantity = p2p.crypto_amount
        mirror.price_per_unit = 1.0
        mirror.total_amount = p2p.crypto_amount
        mirror.fee = fee_usd
        mirror.fee_currency = FeeCurrency.USD
        mirror.fee_in_crypto = None
        mirror.exchange = _mirror_exchange(p2p)
        mirror.notes = notes
        mirror.transaction_date = p2p.transaction_date
        return TransactionRepository.save(mirror, session=session)

    @staticmethod
    def get(transaction_id: int, session: Optional[Session] = None) -> P2PTransaction:
        """
        Raises:
            TransactionNotFoundError: If no P2P trade has this id
        """
        p2p = P2PRepository.get_by_id(transaction_id, session=session)
        if p2p is None:
            raise TransactionNotFoundError(f"P2P transaction {transaction_id} not found")
        return p2p

    @staticmethod
    def list_transactions(
        crypto: Optional[str] = None,
        fiat_currency: Optional[str] = None,
        transaction_type: Optional[Union[TransactionType, str]] = None,
        session: Optional[Session] = None
    ) -> List[P2PTransaction]:
        """P2P trades matching the optional filters, newest first."""
        return P2PRepository.get_filtered(
            crypto=normalize_symbol(crypto) if crypto else None,
            fiat_currency=normalize_symbol(fiat_currency) if fiat_currency else None,
            transaction_type=coerce_transaction_type(transaction_type) if transaction_type else None,
            session=session,
        )

    @staticmethod
    def delete(transaction_id: int, session: Optional[Session] = None) -> List[int]:
        """
        Delete a P2P trade and its mirrored ledger leg.

        Returns:
            IDs of the deleted ledger rows (empty when the trade had no mirror)

        Raises:
            TransactionNotFoundError: If no P2P trade has this id
        """
        with session_scope(session) as sess:
            p2p = P2PRepository.get_by_id(transaction_id, session=sess)
            if p2p is None:
                raise TransactionNotFoundError(f"P2P transaction {transaction_id} not found")

            mirror_id = p2p.crypto_transaction_id
            P2PRepository.delete(transaction_id, session=sess)
            deleted = TransactionRepository.delete_many([mirror_id], session=sess) if mirror_id else []

        logger.info(f"Deleted P2P transaction {transaction_id} and ledger row(s) {deleted}")
        return deleted

    @staticmethod
    def summarize(
        crypto: str = USDT_SYMBOL,
        fiat_currency: str = "VND",
        session: Optional[Session] = None
    ) -> P2PSummary:
        """
        Position and P/L of a crypto/fiat pair valued at the latest stored market rate.

        Buys are averaged into a weighted rate that includes fees; realized P/L
        values sold units at that rate.
        """
        crypto = normalize_symbol(crypto)
        fiat_currency = normalize_symbol(fiat_currency)

        with session_scope(session) as sess:
            transactions = P2PRepository.get_filtered(
                crypto=crypto, fiat_currency=fiat_currency, newest_first=False, session=sess
            )
            latest = MarketRateRepository.get_latest(crypto, fiat_currency, session=sess)

        summary = P2PSummary(crypto=crypto, fiat_currency=fiat_currency)
        summary.current_market_rate = latest.rate if latest is not None else 0.0
        summary.transaction_count = len(transactions)

        sells = []
        for tx in transactions:
            fee = tx.fee_amount or 0.0
            summary.total_fees += fee
            if tx.market_rate and tx.spread_percent:
                summary.total_spread += abs(tx.crypto_amount * (tx.exchange_rate - tx.market_rate))
            if tx.transaction_type == TransactionType.BUY:
                summary.total_bought += tx.crypto_amount
                summary.total_fiat_spent += tx.fiat_amount + fee
            else:
                summary.total_sold += tx.crypto_amount
                summary.total_fiat_received += tx.fiat_amount - fee
                sells.append(tx)

        if summary.total_bought > 0:
            summary.weighted_average_rate = summary.total_fiat_spent / summary.total_bought

        summary.current_holdings = summary.total_bought - summary.total_sold
        summary.current_value = summary.current_holdings * summary.current_market_rate
        summary.cost_basis = summary.current_holdings * summary.weighted_average_rate
        summary.unrealized_pl = summary.current_value - summary.cost_basis
        if summary.cost_basis > 0:
            summary.unrealized_pl_percent = summary.unrealized_pl / summary.cost_basis * 100

        if summary.weighted_average_rate > 0:
            for tx in sells:
                summary.realized_pl += tx.fiat_amount - tx.crypto_amount * summary.weighted_average_rate

        summary.total_pl = summary.unrealized_pl + summary.realized_pl
        summary.net_invested = summary.total_fiat_spent - summary.total_fiat_received
        return summary

    @staticmethod
    def update_market_rate(
        crypto: str,
        fiat_currency: str,
        rate: float,
        source: Optional[str] = None,
        session: Optional[Session] = None
    ) -> MarketRate:
        """Store a market rate observation for a pair."""
        rate = require_positive("Rate", rate)
        stored = MarketRateRepository.add(
            normalize_symbol(crypto), normalize_symbol(fiat_currency), rate, source=source, session=session
        )
        logger.info(f"Stored {stored.crypto}/{stored.fiat_currency} market rate {rate:,.2f} ({source or 'manual'})")
        return stored

    @staticmethod
    def get_market_rates(
        crypto: str,
        fiat_currency: str,
        limit: int = 100,
        session: Optional[Session] = None
    ) -> List[MarketRate]:
        """Recent rate observations for a pair, newest first."""
        return MarketRateRepository.get_history(
            normalize_symbol(crypto), normalize_symbol(fiat_currency), limit=limit, session=session
        )
