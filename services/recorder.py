"""
Transaction recorder: the only writer of crypto ledger rows.

A buy of a non-USDT asset paid with USDT is written as two linked rows in one
unit of work: a USDT sell carrying the cost, and the asset buy with its cash
fields zeroed. Every other trade is a single row whose total_amount is the
cash that changed hands.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple, Union

from sqlmodel import Session

from db_engine import session_scope
from models import CryptoTransaction, FeeCurrency, FundingSource, TransactionType
from repositories import AssetRepository, P2PRepository, TransactionRepository
from services.common import (
    USDT_NAME,
    USDT_SYMBOL,
    TransactionNotFoundError,
    ValidationError,
    coerce_transaction_type,
    funded_purchase_note,
    funding_note,
    normalize_symbol,
    require_non_negative,
    require_positive,
    strip_funding_marker,
)
from services.registry import AssetRegistry

logger = logging.getLogger(__name__)


@dataclass
class TradeIntent:
    """A user's request to record one trade."""
    symbol: str
    transaction_type: Union[TransactionType, str]
    quantity: float
    price_per_unit: float  # USD
    fee: float = 0.0
    fee_currency: Union[FeeCurrency, str] = FeeCurrency.USD  # USD, or CRYPTO for asset units
    funded_by_usdt: bool = False
    display_name: Optional[str] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: Optional[datetime] = None  # Defaults to now


@dataclass
class TransactionUpdate:
    """Fields to change on an existing transaction. None means unchanged."""
    transaction_type: Optional[Union[TransactionType, str]] = None
    quantity: Optional[float] = None
    price_per_unit: Optional[float] = None
    fee: Optional[float] = None
    fee_currency: Optional[Union[FeeCurrency, str]] = None
    funded_by_usdt: Optional[bool] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: Optional[datetime] = None


def _coerce_fee_currency(value: Union[FeeCurrency, str]) -> FeeCurrency:
    try:
        return FeeCurrency(value.upper() if isinstance(value, str) else value)
    except (ValueError, AttributeError):
        raise ValidationError(f"Fee currency must be 'USD' or 'CRYPTO', got {value!r}")


def fee_to_usd(fee: float, fee_currency: FeeCurrency, price_per_unit: float) -> Tuple[float, Optional[float]]:
    """
    Normalize a fee to USD.

    Returns:
        (fee in USD, original fee in asset units or None)
    """
    if fee_currency == FeeCurrency.CRYPTO:
        return fee * price_per_unit, fee
    return fee, None


class TransactionRecorder:
    """
    Records, edits and deletes crypto ledger transactions.
    All multi-row writes share one session and commit together.
    """

    @staticmethod
    def record(intent: TradeIntent, session: Optional[Session] = None) -> List[CryptoTransaction]:
        """
        Record a trade intent.

        Args:
            intent: The trade to record
            session: Optional existing session; the caller then owns the commit

        Returns:
            The written rows. For a USDT-funded purchase: [usdt_funding_leg, purchase]

        Raises:
            ValidationError: If the intent is invalid; nothing is written
        """
        symbol = normalize_symbol(intent.symbol)
        transaction_type = coerce_transaction_type(intent.transaction_type)
        quantity = require_positive("Quantity", intent.quantity)
        price_per_unit = require_positive("Price per unit", intent.price_per_unit)
        raw_fee = require_non_negative("Fee", intent.fee or 0.0)
        fee_currency = _coerce_fee_currency(intent.fee_currency)

        if intent.funded_by_usdt and symbol == USDT_SYMBOL:
            raise ValidationError("USDT cannot be used to pay for USDT")

        fee_usd, fee_in_crypto = fee_to_usd(raw_fee, fee_currency, price_per_unit)
        cash_amount = quantity * price_per_unit
        occurred_at = intent.transaction_date or datetime.now()
        funded = intent.funded_by_usdt and transaction_type == TransactionType.BUY

        if intent.funded_by_usdt and not funded:
            logger.debug(f"Ignoring USDT funding flag on a {transaction_type.value} of {symbol}")

        with session_scope(session) as sess:
            asset = AssetRegistry.ensure(symbol, intent.display_name, session=sess)

            if not funded:
                transaction = TransactionRepository.add(
                    CryptoTransaction(
                        asset_id=asset.id,
                        transaction_type=transaction_type,
                        quantity=quantity,
                        price_per_unit=price_per_unit,
                        total_amount=cash_amount,
                        fee=fee_usd,
                        fee_currency=fee_currency,
                        fee_in_crypto=fee_in_crypto,
                        funding_source=FundingSource.CASH,
                        exchange=intent.exchange,
                        notes=intent.notes,
                        transaction_date=occurred_at,
                    ),
                    session=sess,
                )
                logger.info(
                    f"Recorded {transaction_type.value} {quantity:g} {symbol} @ {price_per_unit:g} "
                    f"(total {cash_amount:.2f}, fee {fee_usd:.2f})"
                )
                return [transaction]

            funding_leg, purchase = TransactionRecorder._write_funded_purchase(
                sess,
                asset_id=asset.id,
                symbol=symbol,
                quantity=quantity,
                price_per_unit=price_per_unit,
                fee_usd=fee_usd,
                fee_currency=fee_currency,
                fee_in_crypto=fee_in_crypto,
                exchange=intent.exchange,
                notes=intent.notes,
                occurred_at=occurred_at,
            )
            logger.info(
                f"Recorded buy {quantity:g} {symbol} @ {price_per_unit:g} paid with "
                f"{funding_leg.quantity:.2f} USDT"
            )
            return [funding_leg, purchase]

    @staticmethod
    def _write_funded_purchase(
        sess: Session,
        asset_id: int,
        symbol: str,
        quantity: float,
        price_per_unit: float,
        fee_usd: float,
        fee_currency: FeeCurrency,
        fee_in_crypto: Optional[float],
        exchange: Optional[str],
        notes: Optional[str],
        occurred_at: datetime,
    ) -> Tuple[CryptoTransaction, CryptoTransaction]:
        """Write the USDT funding leg and the zero-cash purchase, linked to each other."""
        usdt = AssetRegistry.ensure(USDT_SYMBOL, USDT_NAME, session=sess)
        funding_amount = quantity * price_per_unit + fee_usd

        funding_leg = TransactionRepository.add(
            CryptoTransaction(
                asset_id=usdt.id,
                transaction_type=TransactionType.SELL,
                quantity=funding_amount,
                price_per_unit=1.0,
                total_amount=funding_amount,
                fee=0.0,
                funding_source=FundingSource.USDT,
                exchange=exchange,
                notes=funding_note(symbol, quantity, price_per_unit),
                transaction_date=occurred_at,
            ),
            session=sess,
        )
        purchase = TransactionRepository.add(
            CryptoTransaction(
                asset_id=asset_id,
                transaction_type=TransactionType.BUY,
                quantity=quantity,
                price_per_unit=price_per_unit,
                total_amount=0.0,
                fee=0.0,
                fee_currency=fee_currency,
                fee_in_crypto=fee_in_crypto,
                funding_source=FundingSource.USDT,
                linked_transaction_id=funding_leg.id,
                exchange=exchange,
                notes=funded_purchase_note(notes),
                transaction_date=occurred_at,
            ),
            session=sess,
        )
        TransactionRepository.link(funding_leg, purchase, session=sess)
        return funding_leg, purchase

    @staticmethod
    def update(
        transaction_id: int,
        changes: TransactionUpdate,
        session: Optional[Session] = None
    ) -> CryptoTransaction:
        """
        Edit a transaction and re-derive its cash fields.

        total_amount is recomputed from quantity x price, or zeroed when the
        purchase is paid with USDT. The payment source is the persisted one
        unless changes.funded_by_usdt says otherwise; the linked funding leg
        is created, resynced or removed in the same unit of work.

        Raises:
            TransactionNotFoundError: If the transaction does not exist
            ValidationError: If the edit is invalid, or targets a funding leg
                or the ledger leg of a P2P trade
        """
        with session_scope(session) as sess:
            transaction = TransactionRepository.get_by_id(transaction_id, session=sess)
            if transaction is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            if transaction.is_funding_leg:
                raise ValidationError(
                    f"Transaction {transaction_id} is a USDT funding leg; edit the purchase it pays for"
                )
            mirrored = P2PRepository.get_by_ledger_transaction(transaction_id, session=sess)
            if mirrored is not None:
                raise ValidationError(
                    f"Transaction {transaction_id} mirrors P2P trade {mirrored.id}; edit the P2P trade instead"
                )

            asset = AssetRepository.get_by_id(transaction.asset_id, session=sess)
            transaction_type = (
                coerce_transaction_type(changes.transaction_type)
                if changes.transaction_type is not None else transaction.transaction_type
            )
            quantity = require_positive(
                "Quantity", changes.quantity if changes.quantity is not None else transaction.quantity
            )
            price_per_unit = require_positive(
                "Price per unit",
                changes.price_per_unit if changes.price_per_unit is not None else transaction.price_per_unit,
            )

            was_funded = transaction.is_usdt_funded_buy
            funded = changes.funded_by_usdt if changes.funded_by_usdt is not None else was_funded
            if funded and asset.symbol == USDT_SYMBOL:
                raise ValidationError("USDT cannot be used to pay for USDT")
            funded = funded and transaction_type == TransactionType.BUY

            funding_leg = None
            if was_funded and transaction.linked_transaction_id is not None:
                funding_leg = TransactionRepository.get_by_id(transaction.linked_transaction_id, session=sess)

            fee_usd, fee_currency, fee_in_crypto = TransactionRecorder._resolve_fee(
                transaction, changes, price_per_unit, funding_leg
            )

            base_notes = changes.notes if changes.notes is not None else strip_funding_marker(transaction.notes)
            transaction.transaction_type = transaction_type
            transaction.quantity = quantity
            transaction.price_per_unit = price_per_unit
            transaction.fee_currency = fee_currency
            transaction.fee_in_crypto = fee_in_crypto
            if changes.exchange is not None:
                transaction.exchange = changes.exchange
            if changes.transaction_date is not None:
                transaction.transaction_date = changes.transaction_date

            cash_amount = quantity * price_per_unit
            if funded:
                transaction.total_amount = 0.0
                transaction.fee = 0.0
                transaction.funding_source = FundingSource.USDT
                transaction.notes = funded_purchase_note(base_notes)
                funding_amount = cash_amount + fee_usd
                if funding_leg is None:
                    usdt = AssetRegistry.ensure(USDT_SYMBOL, USDT_NAME, session=sess)
                    funding_leg = TransactionRepository.add(
                        CryptoTransaction(
                            asset_id=usdt.id,
                            transaction_type=TransactionType.SELL,
                            quantity=funding_amount,
                            price_per_unit=1.0,
                            total_amount=funding_amount,
                            fee=0.0,
                            funding_source=FundingSource.USDT,
                            transaction_date=transaction.transaction_date,
                        ),
                        session=sess,
                    )
                    TransactionRepository.link(funding_leg, transaction, session=sess)
                funding_leg.quantity = funding_amount
                funding_leg.total_amount = funding_amount
                funding_leg.price_per_unit = 1.0
                funding_leg.fee = 0.0
                funding_leg.exchange = transaction.exchange
                funding_leg.transaction_date = transaction.transaction_date
                funding_leg.notes = funding_note(asset.symbol, quantity, price_per_unit)
                TransactionRepository.save(funding_leg, session=sess)
            else:
                if funding_leg is not None:
                    TransactionRepository.delete_many([funding_leg.id], session=sess)
                transaction.linked_transaction_id = None
                transaction.total_amount = cash_amount
                transaction.fee = fee_usd
                transaction.funding_source = FundingSource.CASH
                transaction.notes = base_notes

            transaction = TransactionRepository.save(transaction, session=sess)
            logger.info(f"Updated transaction {transaction_id} ({asset.symbol})")
            return transaction

    @staticmethod
    def _resolve_fee(
        transaction: CryptoTransaction,
        changes: TransactionUpdate,
        price_per_unit: float,
        funding_leg: Optional[CryptoTransaction],
    ) -> Tuple[float, FeeCurrency, Optional[float]]:
        """Work out the edited fee in USD, its currency, and the asset-unit original."""
        if changes.fee is not None:
            fee_currency = (
                _coerce_fee_currency(changes.fee_currency)
                if changes.fee_currency is not None else transaction.fee_currency
            )
            fee = require_non_negative("Fee", changes.fee)
            fee_usd, fee_in_crypto = fee_to_usd(fee, fee_currency, price_per_unit)
            return fee_usd, fee_currency, fee_in_crypto

        if changes.fee_currency is not None and _coerce_fee_currency(changes.fee_currency) != transaction.fee_currency:
            raise ValidationError("Fee currency can only be changed together with the fee")

        if transaction.fee_currency == FeeCurrency.CRYPTO and transaction.fee_in_crypto is not None:
            # Asset-denominated fees follow the new price
            return transaction.fee_in_crypto * price_per_unit, FeeCurrency.CRYPTO, transaction.fee_in_crypto

        if transaction.is_usdt_funded_buy:
            # The purchase row holds no fee; it was folded into the funding amount
            if funding_leg is None:
                return 0.0, transaction.fee_currency, None
            previous_cash = transaction.quantity * transaction.price_per_unit
            return max(funding_leg.total_amount - previous_cash, 0.0), transaction.fee_currency, None

        return transaction.fee, transaction.fee_currency, transaction.fee_in_crypto

    @staticmethod
    def delete(transaction_id: int, session: Optional[Session] = None) -> List[int]:
        """
        Delete a transaction together with its linked leg, if any.

        Returns:
            IDs of all deleted rows

        Raises:
            TransactionNotFoundError: If the transaction does not exist
        """
        with session_scope(session) as sess:
            transaction = TransactionRepository.get_by_id(transaction_id, session=sess)
            if transaction is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

            ids = [transaction.id]
            if transaction.linked_transaction_id is not None:
                ids.append(transaction.linked_transaction_id)
            deleted = TransactionRepository.delete_many(ids, session=sess)

        logger.info(f"Deleted transaction(s) {deleted}")
        return deleted
