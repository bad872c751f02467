"""
Transaction Repository - data access layer for CryptoTransaction model.
Optimized with optional session parameter for transaction reuse.
"""

from typing import Optional, List, Iterable
from datetime import datetime
from sqlmodel import Session, func, select

from db_engine import session_scope
from models import CryptoTransaction, FundingSource, P2PTransaction


class TransactionRepository:
    """Repository for CryptoTransaction CRUD operations."""

    @staticmethod
    def add(transaction: CryptoTransaction, session: Optional[Session] = None) -> CryptoTransaction:
        """
        Insert a transaction row.

        Args:
            transaction: Unsaved CryptoTransaction
            session: Optional existing session for transaction reuse

        Returns:
            The persisted CryptoTransaction with its id assigned
        """
        with session_scope(session) as sess:
            sess.add(transaction)
            sess.flush()
            sess.refresh(transaction)
            return transaction

    @staticmethod
    def save(transaction: CryptoTransaction, session: Optional[Session] = None) -> CryptoTransaction:
        """Persist changes to an existing transaction and bump updated_at."""
        with session_scope(session) as sess:
            transaction.updated_at = datetime.now()
            transaction = sess.merge(transaction)
            sess.flush()
            sess.refresh(transaction)
            return transaction

    @staticmethod
    def link(
        first: CryptoTransaction,
        second: CryptoTransaction,
        session: Optional[Session] = None
    ) -> None:
        """Point two legs of the same trade at each other."""
        with session_scope(session) as sess:
            first.linked_transaction_id = second.id
            second.linked_transaction_id = first.id
            sess.add(first)
            sess.add(second)
            sess.flush()

    @staticmethod
    def get_by_id(transaction_id: int, session: Optional[Session] = None) -> Optional[CryptoTransaction]:
        """
        Retrieve a transaction by its ID.

        Args:
            transaction_id: Transaction ID to look up
            session: Optional existing session for transaction reuse

        Returns:
            CryptoTransaction object or None if not found
        """
        with session_scope(session) as sess:
            return sess.get(CryptoTransaction, transaction_id)

    @staticmethod
    def get_by_asset(asset_id: int, session: Optional[Session] = None) -> List[CryptoTransaction]:
        """
        Retrieve all transactions for a specific asset, oldest first.

        Args:
            asset_id: Asset ID to look up
            session: Optional existing session for transaction reuse

        Returns:
            List of CryptoTransaction objects
        """
        with session_scope(session) as sess:
            statement = (
                select(CryptoTransaction)
                .where(CryptoTransaction.asset_id == asset_id)
                .order_by(CryptoTransaction.transaction_date, CryptoTransaction.id)
            )
            return list(sess.exec(statement).all())

    @staticmethod
    def get_all(session: Optional[Session] = None) -> List[CryptoTransaction]:
        """Retrieve all transactions, oldest first."""
        with session_scope(session) as sess:
            statement = select(CryptoTransaction).order_by(
                CryptoTransaction.transaction_date, CryptoTransaction.id
            )
            return list(sess.exec(statement).all())

    @staticmethod
    def get_usdt_funded(session: Optional[Session] = None) -> List[CryptoTransaction]:
        """Retrieve every leg that takes part in a USDT-funded purchase."""
        with session_scope(session) as sess:
            statement = (
                select(CryptoTransaction)
                .where(CryptoTransaction.funding_source == FundingSource.USDT)
                .order_by(CryptoTransaction.id)
            )
            return list(sess.exec(statement).all())

    @staticmethod
    def count(session: Optional[Session] = None) -> int:
        with session_scope(session) as sess:
            return sess.exec(select(func.count()).select_from(CryptoTransaction)).one()

    @staticmethod
    def delete_many(transaction_ids: Iterable[int], session: Optional[Session] = None) -> List[int]:
        """
        Delete transactions by ID.

        References to the deleted rows (a partner leg's link, a P2P trade's
        mirrored leg) are cleared first so foreign keys stay valid.

        Returns:
            IDs that existed and were deleted
        """
        ids = sorted(set(transaction_ids))
        if not ids:
            return []

        with session_scope(session) as sess:
            referencing = sess.exec(
                select(CryptoTransaction).where(CryptoTransaction.linked_transaction_id.in_(ids))
            ).all()
            for tx in referencing:
                tx.linked_transaction_id = None
                sess.add(tx)

            mirrored = sess.exec(
                select(P2PTransaction).where(P2PTransaction.crypto_transaction_id.in_(ids))
            ).all()
            for p2p in mirrored:
                p2p.crypto_transaction_id = None
                sess.add(p2p)
            sess.flush()

            deleted = []
            for transaction_id in ids:
                transaction = sess.get(CryptoTransaction, transaction_id)
                if transaction is not None:
                    sess.delete(transaction)
                    deleted.append(transaction_id)
            sess.flush()
            return deleted

    @staticmethod
    def delete(transaction_id: int, session: Optional[Session] = None) -> bool:
        """
        Delete a single transaction row by its ID.
        Linked legs are not touched here; TransactionRecorder.delete handles pairs.

        Returns:
            True if successful, False otherwise
        """
        return bool(TransactionRepository.delete_many([transaction_id], session=session))

    @staticmethod
    def delete_by_asset(asset_id: int, session: Optional[Session] = None) -> int:
        """
        Delete all transactions for a specific asset.
        Useful when deleting an asset.

        Args:
            asset_id: Asset ID whose transactions to delete
            session: Optional existing session for transaction reuse

        Returns:
            Number of transactions deleted
        """
        with session_scope(session) as sess:
            ids = sess.exec(
                select(CryptoTransaction.id).where(CryptoTransaction.asset_id == asset_id)
            ).all()
            return len(TransactionRepository.delete_many(ids, session=sess))

