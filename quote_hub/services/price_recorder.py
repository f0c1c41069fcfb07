from __future__ import annotations

import json
from pathlib import Path
from typing import Awaitable, Protocol

from quote_hub.schemas.quote import Quote


class PriceRecorder(Protocol):
    """Receives every freshly fetched, non-simulated quote.

    Implementations may be sync or async. The manager calls them on a
    background task and only logs their failures.
    """

    def record_price(self, quote: Quote) -> Awaitable[None] | None: ...


class JsonlPriceRecorder:
    """Appends one JSON line per recorded quote."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self.recorded_count = 0

    @property
    def path(self) -> Path:
        return self._path

    def record_price(self, quote: Quote) -> None:
        row = {
            "symbol": quote.symbol,
            "price": quote.price,
            "change": quote.change,
            "change_percent": quote.change_percent,
            "volume": quote.volume,
            "provider": quote.provider,
            "market_state": quote.market_state,
            "recorded_at": quote.last_update.isoformat(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")
        self.recorded_count += 1
