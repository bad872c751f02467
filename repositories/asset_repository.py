"""
Asset Repository - data access layer for CryptoAsset model.
Optimized with optional session parameter for transaction reuse.
"""

from typing import Optional, List
from datetime import datetime
from sqlmodel import Session, select

from db_engine import session_scope
from models import CryptoAsset


class AssetRepository:
    """Repository for CryptoAsset CRUD operations."""

    @staticmethod
    def add(
        symbol: str,
        name: str,
        session: Optional[Session] = None
    ) -> CryptoAsset:
        """
        Add a new asset to the database.

        The symbol is stored as given; callers normalize it first. A duplicate
        symbol raises sqlalchemy.exc.IntegrityError from the unique index.

        Args:
            symbol: Canonical (upper-case) symbol
            name: Display name
            session: Optional existing session for transaction reuse

        Returns:
            Created CryptoAsset object
        """
        with session_scope(session) as sess:
            asset = CryptoAsset(symbol=symbol, name=name)
            sess.add(asset)
            sess.flush()
            sess.refresh(asset)
            return asset

    @staticmethod
    def get_all(session: Optional[Session] = None) -> List[CryptoAsset]:
        """Retrieve all assets, oldest first."""
        with session_scope(session) as sess:
            statement = select(CryptoAsset).order_by(CryptoAsset.id)
            return list(sess.exec(statement).all())

    @staticmethod
    def get_by_id(asset_id: int, session: Optional[Session] = None) -> Optional[CryptoAsset]:
        """
        Retrieve an asset by its ID.

        Args:
            asset_id: Asset ID to look up
            session: Optional existing session for transaction reuse

        Returns:
            CryptoAsset object or None if not found
        """
        with session_scope(session) as sess:
            return sess.get(CryptoAsset, asset_id)

    @staticmethod
    def get_by_symbol(symbol: str, session: Optional[Session] = None) -> Optional[CryptoAsset]:
        """
        Retrieve an asset by its canonical symbol (exact match).

        Args:
            symbol: Upper-case symbol to search for
            session: Optional existing session for transaction reuse

        Returns:
            CryptoAsset object or None if not found
        """
        with session_scope(session) as sess:
            statement = select(CryptoAsset).where(CryptoAsset.symbol == symbol)
            return sess.exec(statement).first()

    @staticmethod
    def update_name(
        asset_id: int,
        name: str,
        session: Optional[Session] = None
    ) -> Optional[CryptoAsset]:
        """Rename an asset. Returns None if the asset does not exist."""
        with session_scope(session) as sess:
            asset = sess.get(CryptoAsset, asset_id)
            if asset is None:
                return None
            asset.name = name
            asset.updated_at = datetime.now()
            sess.add(asset)
            sess.flush()
            sess.refresh(asset)
            return asset

    @staticmethod
    def delete(asset_id: int, session: Optional[Session] = None) -> bool:
        """
        Delete an asset and all its transactions.
        Transactions are removed first due to foreign key constraints.

        Args:
            asset_id: Asset ID to delete
            session: Optional existing session for transaction reuse

        Returns:
            True if the asset existed and was deleted, False otherwise
        """
        from repositories.transaction_repository import TransactionRepository

        with session_scope(session) as sess:
            asset = sess.get(CryptoAsset, asset_id)
            if asset is None:
                return False
            TransactionRepository.delete_by_asset(asset_id, session=sess)
            sess.delete(asset)
            sess.flush()
            return True
