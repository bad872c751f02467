"""
Common utilities and shared definitions.
Symbol normalization, input validators, ledger errors, and the TTL cache
used by the price and rate lookups.
"""

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar, Union

from models import TransactionType

logger = logging.getLogger(__name__)

USDT_SYMBOL = "USDT"
USDT_NAME = "Tether"

# Stablecoins treated as pegged 1:1 to USD
USD_PEGGED_SYMBOLS = frozenset({"USDT", "USDC", "BUSD", "DAI", "FDUSD"})

FUNDING_NOTE_SUFFIX = "[Paid with USDT]"


class LedgerError(Exception):
    """Base class for ledger errors."""


class ValidationError(LedgerError, ValueError):
    """Raised when an intent is rejected before anything is written."""


class TransactionNotFoundError(LedgerError, LookupError):
    """Raised when a transaction id does not exist."""


class AssetNotFoundError(LedgerError, LookupError):
    """Raised when an asset id does not exist."""


def normalize_symbol(symbol: Optional[str]) -> str:
    """
    Convert a user-entered symbol to its canonical stored form.

    Args:
        symbol: Symbol as typed (e.g., " btc", "Eth")

    Returns:
        Stripped, upper-cased symbol

    Raises:
        ValidationError: If the symbol is empty

    Examples:
        >>> normalize_symbol(" btc ")
        'BTC'
    """
    normalized = (symbol or "").strip().upper()
    if not normalized:
        raise ValidationError("Symbol must not be empty")
    return normalized


def coerce_transaction_type(value: Union[TransactionType, str]) -> TransactionType:
    """Accept 'buy'/'sell' in any case or a TransactionType."""
    try:
        return TransactionType(value.lower() if isinstance(value, str) else value)
    except (ValueError, AttributeError):
        raise ValidationError(f"Transaction type must be 'buy' or 'sell', got {value!r}")


def require_positive(name: str, value: Optional[float]) -> float:
    if value is None or not math.isfinite(value) or value <= 0:
        raise ValidationError(f"{name} must be a positive number, got {value!r}")
    return float(value)


def require_non_negative(name: str, value: Optional[float]) -> float:
    if value is None or not math.isfinite(value) or value < 0:
        raise ValidationError(f"{name} must be zero or positive, got {value!r}")
    return float(value)


def optional_non_negative(name: str, value: Optional[float]) -> Optional[float]:
    """Like require_non_negative, but None passes through."""
    if value is None:
        return None
    return require_non_negative(name, value)


def funding_note(symbol: str, quantity: float, price_per_unit: float) -> str:
    """Audit note for the USDT leg that pays for a purchase."""
    return f"Funding leg for {quantity:g} {symbol} @ {price_per_unit:g} USD"


def funded_purchase_note(notes: Optional[str]) -> str:
    """Append the USDT payment marker to a purchase note (display only)."""
    if not notes:
        return FUNDING_NOTE_SUFFIX
    if notes.endswith(FUNDING_NOTE_SUFFIX):
        return notes
    return f"{notes} {FUNDING_NOTE_SUFFIX}"


def strip_funding_marker(notes: Optional[str]) -> Optional[str]:
    """Remove the USDT payment marker added by funded_purchase_note."""
    if not notes:
        return notes
    if notes == FUNDING_NOTE_SUFFIX:
        return None
    if notes.endswith(" " + FUNDING_NOTE_SUFFIX):
        return notes[: -len(FUNDING_NOTE_SUFFIX) - 1]
    return notes


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Small thread-safe cache whose entries expire after a fixed TTL.

    Instances are injected into the services that use them so tests can
    supply their own clock or a zero TTL.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def get_or_load(self, key: K, loader: Callable[[], Optional[V]]) -> Optional[V]:
        """Return the cached value, or call loader and cache a non-None result."""
        value = self.get(key)
        if value is not None:
            return value
        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: Optional[K] = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


def safe_call(func: Callable[..., Any], *args: Any, default: Any = None, label: str = "") -> Any:
    """
    Call an external collaborator, logging and swallowing its failure.

    Used where a missing price or rate is a soft failure.
    """
    try:
        return func(*args)
    except Exception as e:
        logger.warning(f"Lookup {label or getattr(func, '__name__', func)} failed: {e}")
        return default
