"""
Per-instrument rolling quote history and signal confirmation counters.
"""

from collections import deque
from typing import Any, Deque, Dict, Iterable, List
import structlog

from ..shared.constants import TICK_CAPACITY

logger = structlog.get_logger(__name__)


class TickStore:
    """Bounded, insertion-ordered quote histories keyed by symbol."""

    def __init__(self, capacity: int = TICK_CAPACITY):
        """Initialize tick store.

        Args:
            capacity: Maximum number of quotes kept per symbol
        """
        if capacity <= 0:
            raise ValueError("Tick capacity must be positive")

        self.capacity = capacity
        self._histories: Dict[str, Deque[Any]] = {}
        self._confirmations: Dict[str, Dict[str, int]] = {}

        logger.debug("Tick store initialized", capacity=capacity)

    def subscribe(self, symbols: Iterable[str]) -> List[str]:
        """Reset history and confirmation counters of the given symbols.

        Returns:
            List[str]: Symbols now tracked, in subscription order
        """
        subscribed = []
        for symbol in symbols:
            self._histories[symbol] = deque(maxlen=self.capacity)
            self._confirmations[symbol] = {}
            subscribed.append(symbol)
        return subscribed

    def unsubscribe_all(self) -> None:
        """Forget every history and every confirmation counter."""
        self._histories = {}
        self._confirmations = {}

    def append(self, symbol: str, quote: Any) -> bool:
        """Append a quote, evicting the oldest beyond capacity.

        Returns:
            bool: False if the symbol is not subscribed (the tick is ignored)
        """
        history = self._histories.get(symbol)
        if history is None:
            logger.debug("Tick for unsubscribed symbol ignored", symbol=symbol)
            return False
        history.append(quote)
        return True

    def history(self, symbol: str) -> List[Any]:
        """Snapshot of a symbol's quotes, oldest first."""
        return list(self._histories.get(symbol, ()))

    def symbols(self) -> List[str]:
        """Subscribed symbols in insertion order."""
        return list(self._histories)

    def confirm(self, symbol: str, key: str) -> int:
        """Count one more hit for a (symbol, signal kind) pair.

        Counters only grow until the next subscribe/unsubscribe; evaluations
        that miss never reset them.

        Returns:
            int: Hit count after this confirmation
        """
        counters = self._confirmations.setdefault(symbol, {})
        counters[key] = counters.get(key, 0) + 1
        return counters[key]

    def confirmation_count(self, symbol: str, key: str) -> int:
        return self._confirmations.get(symbol, {}).get(key, 0)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "history_sizes": {symbol: len(h) for symbol, h in self._histories.items()},
            "confirmations": {symbol: dict(c) for symbol, c in self._confirmations.items()}
        }
