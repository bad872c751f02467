"""
Asset registry: one canonical CryptoAsset row per symbol, created on first use.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from db_engine import session_scope
from models import CryptoAsset
from repositories import AssetRepository, TransactionRepository
from services.common import AssetNotFoundError, ValidationError, normalize_symbol

logger = logging.getLogger(__name__)


class AssetRegistry:
    """Find-or-create access to crypto assets."""

    @staticmethod
    def ensure(
        symbol: str,
        display_name: Optional[str] = None,
        session: Optional[Session] = None
    ) -> CryptoAsset:
        """
        Return the asset for a symbol, creating it if it does not exist yet.

        The symbol is normalized before lookup. An existing asset is returned
        unchanged; display_name is only used on creation so a user-edited
        name is never overwritten.

        Concurrent callers converge on one row: the insert runs in a
        SAVEPOINT and a unique-index violation falls back to re-reading the
        row the other writer created.

        Args:
            symbol: Symbol as entered (any case)
            display_name: Name to use if the asset has to be created
            session: Optional existing session for transaction reuse

        Returns:
            The canonical CryptoAsset

        Raises:
            ValidationError: If the symbol is empty
        """
        canonical = normalize_symbol(symbol)

        with session_scope(session) as sess:
            existing = AssetRepository.get_by_symbol(canonical, session=sess)
            if existing is not None:
                return existing

            name = (display_name or "").strip() or canonical
            try:
                with sess.begin_nested():
                    asset = AssetRepository.add(canonical, name, session=sess)
            except IntegrityError:
                logger.info(f"Asset {canonical} was created concurrently, reusing it")
                asset = AssetRepository.get_by_symbol(canonical, session=sess)
                if asset is None:
                    raise
                return asset

            logger.info(f"Created asset {canonical} ({name})")
            return asset

    @staticmethod
    def find(symbol: str, session: Optional[Session] = None) -> Optional[CryptoAsset]:
        """Look up an asset by symbol in any case, without creating it."""
        return AssetRepository.get_by_symbol(normalize_symbol(symbol), session=session)

    @staticmethod
    def get(asset_id: int, session: Optional[Session] = None) -> CryptoAsset:
        """
        Fetch an asset by id.

        Raises:
            AssetNotFoundError: If no asset has this id
        """
        asset = AssetRepository.get_by_id(asset_id, session=session)
        if asset is None:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        return asset

    @staticmethod
    def list_assets(session: Optional[Session] = None) -> List[CryptoAsset]:
        return AssetRepository.get_all(session=session)

    @staticmethod
    def rename(asset_id: int, name: str, session: Optional[Session] = None) -> CryptoAsset:
        """
        Change an asset's display name. The symbol never changes.

        Raises:
            ValidationError: If the name is empty
            AssetNotFoundError: If no asset has this id
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Asset name must not be empty")
        asset = AssetRepository.update_name(asset_id, name, session=session)
        if asset is None:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        return asset

    @staticmethod
    def delete(asset_id: int, session: Optional[Session] = None) -> List[int]:
        """
        Delete an asset together with all of its transactions.

        A purchase and its USDT funding leg are one event, so partner legs on
        other assets are deleted too.

        Returns:
            IDs of the deleted transactions

        Raises:
            AssetNotFoundError: If no asset has this id
        """
        with session_scope(session) as sess:
            if AssetRepository.get_by_id(asset_id, session=sess) is None:
                raise AssetNotFoundError(f"Asset {asset_id} not found")

            transactions = TransactionRepository.get_by_asset(asset_id, session=sess)
            ids = {tx.id for tx in transactions}
            ids.update(tx.linked_transaction_id for tx in transactions if tx.linked_transaction_id)
            deleted = TransactionRepository.delete_many(ids, session=sess)
            AssetRepository.delete(asset_id, session=sess)

        logger.info(f"Deleted asset {asset_id} and {len(deleted)} transaction(s)")
        return deleted
