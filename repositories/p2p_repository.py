"""
P2P Repository - data access layer for P2PTransaction model.
"""

from typing import Optional, List
from datetime import datetime
from sqlmodel import Session, select

from db_engine import session_scope
from models import P2PTransaction, TransactionType


class P2PRepository:
    """Repository for P2PTransaction CRUD operations."""

    @staticmethod
    def add(transaction: P2PTransaction, session: Optional[Session] = None) -> P2PTransaction:
        """Insert a P2P trade and return it with its id assigned."""
        with session_scope(session) as sess:
            sess.add(transaction)
            sess.flush()
            sess.refresh(transaction)
            return transaction

    @staticmethod
    def save(transaction: P2PTransaction, session: Optional[Session] = None) -> P2PTransaction:
        with session_scope(session) as sess:
            transaction.updated_at = datetime.now()
            transaction = sess.merge(transaction)
            sess.flush()
            sess.refresh(transaction)
            return transaction

    @staticmethod
    def get_by_id(transaction_id: int, session: Optional[Session] = None) -> Optional[P2PTransaction]:
        with session_scope(session) as sess:
            return sess.get(P2PTransaction, transaction_id)

    @staticmethod
    def get_by_ledger_transaction(
        crypto_transaction_id: int,
        session: Optional[Session] = None
    ) -> Optional[P2PTransaction]:
        """Find the P2P trade whose mirrored ledger leg is this transaction."""
        with session_scope(session) as sess:
            statement = select(P2PTransaction).where(
                P2PTransaction.crypto_transaction_id == crypto_transaction_id
            )
            return sess.exec(statement).first()

    @staticmethod
    def get_filtered(
        crypto: Optional[str] = None,
        fiat_currency: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
        newest_first: bool = True,
        session: Optional[Session] = None
    ) -> List[P2PTransaction]:
        """
        Retrieve P2P trades matching the optional filters.

        Args:
            crypto: Crypto symbol filter (e.g., "USDT")
            fiat_currency: Fiat currency filter (e.g., "VND")
            transaction_type: buy or sell filter
            newest_first: Sort direction by transaction date
            session: Optional existing session for transaction reuse

        Returns:
            List of P2PTransaction objects
        """
        with session_scope(session) as sess:
            statement = select(P2PTransaction)
            if crypto:
                statement = statement.where(P2PTransaction.crypto == crypto)
            if fiat_currency:
                statement = statement.where(P2PTransaction.fiat_currency == fiat_currency)
            if transaction_type:
                statement = statement.where(P2PTransaction.transaction_type == transaction_type)
            if newest_first:
                statement = statement.order_by(P2PTransaction.transaction_date.desc(), P2PTransaction.id.desc())
            else:
                statement = statement.order_by(P2PTransaction.transaction_date, P2PTransaction.id)
            return list(sess.exec(statement).all())

    @staticmethod
    def delete(transaction_id: int, session: Optional[Session] = None) -> bool:
        """Delete a P2P trade row. The mirrored ledger leg is handled by P2PService."""
        with session_scope(session) as sess:
            transaction = sess.get(P2PTransaction, transaction_id)
            if transaction is None:
                return False
            sess.delete(transaction)
            sess.flush()
            return True
