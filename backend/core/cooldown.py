"""Per-symbol cooldown store.

The only mutable state shared between concurrent engine calls. Claims are
atomic: check-and-set happens under one lock, so two workers scoring the
same symbol at once cannot both emit a directional decision.

Times are passed in explicitly (bar timestamps in ms) rather than read
from the wall clock, so live and backtest runs apply identical rules.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class CooldownStore:
    """Thread-safe map of symbol -> time of last directional decision."""

    def __init__(self, cooldown_ms: int):
        self.cooldown_ms = cooldown_ms
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()

    def remaining_ms(self, symbol: str, now_ms: int) -> int:
        """Milliseconds left on the symbol's cooldown (0 if not active)."""
        with self._lock:
            return self._remaining(normalize_symbol(symbol), now_ms)

    def is_active(self, symbol: str, now_ms: int) -> bool:
        return self.remaining_ms(symbol, now_ms) > 0

    def try_claim(self, symbol: str, now_ms: int) -> bool:
        """Atomically start a cooldown if none is active.

        Returns:
            True if the caller may emit a directional decision
        """
        key = normalize_symbol(symbol)
        with self._lock:
            if self._remaining(key, now_ms) > 0:
                return False
            self._last[key] = now_ms
        logger.debug("Cooldown started for %s at %d", key, now_ms)
        return True

    def clear(self, symbol: str | None = None) -> None:
        """Clear one symbol, or every symbol when ``symbol`` is None."""
        with self._lock:
            if symbol is None:
                self._last.clear()
            else:
                self._last.pop(normalize_symbol(symbol), None)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._last)

    def _remaining(self, key: str, now_ms: int) -> int:
        last = self._last.get(key)
        if last is None:
            return 0
        return max(0, last + self.cooldown_ms - now_ms)
