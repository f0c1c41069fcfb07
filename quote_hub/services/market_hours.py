from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo

from quote_hub.schemas.quote import MarketState

US_EASTERN = ZoneInfo("America/New_York")
PRE_MARKET_OPEN_TIME = time(4, 0)
MARKET_OPEN_TIME = time(9, 30)
MARKET_CLOSE_TIME = time(16, 0)
POST_MARKET_CLOSE_TIME = time(20, 0)


def _eastern(now: datetime | None) -> datetime:
    current = now or datetime.now(US_EASTERN)
    if current.tzinfo is None:
        return current.replace(tzinfo=US_EASTERN)
    return current.astimezone(US_EASTERN)


def market_state_at(now: datetime | None = None) -> MarketState:
    """US equity session for a given instant, by New York wall clock."""
    eastern_now = _eastern(now)
    if eastern_now.weekday() >= 5:
        return "CLOSED"

    current_time = eastern_now.time()
    if PRE_MARKET_OPEN_TIME <= current_time < MARKET_OPEN_TIME:
        return "PRE"
    if MARKET_OPEN_TIME <= current_time < MARKET_CLOSE_TIME:
        return "REGULAR"
    if MARKET_CLOSE_TIME <= current_time < POST_MARKET_CLOSE_TIME:
        return "POST"
    return "CLOSED"


def is_market_open(now: datetime | None = None) -> bool:
    return market_state_at(now) == "REGULAR"


def map_market_state(raw: str | None) -> MarketState | None:
    """Fold upstream session labels (PREPRE, POSTPOST, OPEN, ...) onto ours."""
    if not raw:
        return None
    label = raw.upper()
    if "PRE" in label:
        return "PRE"
    if "POST" in label:
        return "POST"
    if "REGULAR" in label or "OPEN" in label:
        return "REGULAR"
    return "CLOSED"
