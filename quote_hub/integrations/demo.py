from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Any, Optional

from quote_hub.integrations.base import BaseQuoteProvider, format_market_cap, round2
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.services.market_hours import US_EASTERN, market_state_at
from quote_hub.services.symbols import is_valid_symbol_format

PROVIDER_NAME = "Demo"

# per-call random walk, as a fraction of the last price
MAX_STEP = 0.01
# the walk never drifts further than this from the symbol's base price
MAX_DRIFT = 0.10


def symbol_hash(symbol: str) -> int:
    """Stable signed 32-bit string hash (``h * 31 + ord(c)``)."""
    h = 0
    for ch in symbol:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def base_price(symbol: str) -> float:
    # short tickers tend to be large caps
    low, high = (50, 500) if len(symbol) <= 3 else (10, 200)
    return low + (abs(symbol_hash(symbol)) % ((high - low) * 100)) / 100


def extended_variance(symbol: str) -> tuple[float, float]:
    h = symbol_hash(symbol)
    pre = (abs(h) % 100) / 1000
    post = (abs(h * 2) % 150) / 1000
    pre_sign = 1 if h % 2 == 0 else -1
    post_sign = 1 if (h * 3) % 2 == 0 else -1
    return pre_sign * pre, post_sign * post


def _session(price: float, variance: float) -> tuple[float, float, float]:
    session_price = price * (1 + variance)
    change = session_price - price
    return round2(session_price), round2(change), round2(change / price * 100)


def simulated_extended_hours(symbol: str, price: float, now: datetime) -> dict[str, Any]:
    """Extended-hours fields consistent with the US session at ``now``."""
    state = market_state_at(now)
    eastern = now.astimezone(US_EASTERN)
    out: dict[str, Any] = {"market_state": state, "has_extended_data": False}
    if eastern.weekday() >= 5:
        return out

    pre_variance, post_variance = extended_variance(symbol)
    pre_price, pre_change, pre_pct = _session(price, pre_variance)
    post_price, post_change, post_pct = _session(price, post_variance)
    today_pre_time = eastern.replace(hour=8, minute=30, second=0, microsecond=0)

    pre = {
        "pre_market_price": pre_price,
        "pre_market_change": pre_change,
        "pre_market_change_percent": pre_pct,
    }
    post = {
        "post_market_price": post_price,
        "post_market_change": post_change,
        "post_market_change_percent": post_pct,
    }
    if state == "PRE":
        out.update(pre, pre_market_time=now - timedelta(minutes=5))
    elif state == "REGULAR":
        out.update(pre, pre_market_time=today_pre_time)
    elif state == "POST":
        out.update(pre, pre_market_time=today_pre_time)
        out.update(post, post_market_time=now - timedelta(minutes=3))
    else:
        out.update(pre, pre_market_time=today_pre_time)
        out.update(post, post_market_time=eastern.replace(hour=19, minute=55, second=0, microsecond=0))
    out["has_extended_data"] = True
    return out


class DemoQuoteProvider(BaseQuoteProvider):
    """Offline provider producing simulated quotes. Only enabled in demo mode."""

    name = PROVIDER_NAME
    default_priority = 99
    simulated = True

    def __init__(self, *, rng: Optional[random.Random] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rng = rng or random.Random()
        self._last_prices: dict[str, float] = {}

    def _next_price(self, symbol: str) -> float:
        base = base_price(symbol)
        last = self._last_prices.get(symbol, base)
        price = last * (1 + self._rng.uniform(-MAX_STEP, MAX_STEP))
        price = min(max(price, base * (1 - MAX_DRIFT)), base * (1 + MAX_DRIFT))
        self._last_prices[symbol] = price
        return price

    async def _fetch_quote(self, symbol: str) -> Quote | None:
        if not is_valid_symbol_format(symbol):
            return None

        now = self._now()
        base = base_price(symbol)
        price = self._next_price(symbol)
        change = price - base
        shares = 1e8 + abs(symbol_hash(symbol)) % 10_000_000_000
        return Quote(
            symbol=symbol,
            name=f"{symbol} (Demo)",
            price=round2(price),
            change=round2(change),
            change_percent=round2(change / base * 100),
            volume=self._rng.randint(1_000_000, 51_000_000),
            market_cap=format_market_cap(price * shares),
            previous_close=round2(base),
            day_high=round2(max(price, base) * 1.01),
            day_low=round2(min(price, base) * 0.99),
            year_high=round2(base * (1 + MAX_DRIFT) * 1.2),
            year_low=round2(base * (1 - MAX_DRIFT) * 0.8),
            last_update=now,
            provider=PROVIDER_NAME,
            simulated=True,
            **simulated_extended_hours(symbol, price, now),
        )

    async def _search(self, query: str) -> list[SymbolMatch]:
        symbol = query.strip().upper()
        if not is_valid_symbol_format(symbol):
            return []
        return [SymbolMatch(symbol=symbol, name=f"{symbol} (Demo)")]
