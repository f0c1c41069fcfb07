from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from quote_hub.schemas.quote import Quote


@dataclass(frozen=True)
class CacheEntry:
    quote: Quote
    expires_at: float


class QuoteCache:
    """symbol -> last good quote, with a fixed TTL and lazy expiry on read."""

    def __init__(self, ttl_sec: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._rows: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.strip().upper()

    def put(self, quote: Quote, symbol: str | None = None) -> CacheEntry:
        entry = CacheEntry(quote=quote, expires_at=self._clock() + self.ttl_sec)
        self._rows[self._key(symbol or quote.symbol)] = entry
        return entry

    def entry(self, symbol: str) -> CacheEntry | None:
        """Raw entry lookup without expiry handling or hit accounting."""
        return self._rows.get(self._key(symbol))

    def get(self, symbol: str) -> Quote | None:
        key = self._key(symbol)
        entry = self._rows.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() > entry.expires_at:
            self._rows.pop(key, None)
            self.misses += 1
            return None
        self.hits += 1
        return entry.quote

    def clear(self) -> None:
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)

    def stats(self) -> dict[str, float | int]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._rows),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }
