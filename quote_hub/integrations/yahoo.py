from __future__ import annotations

import logging
import math
from datetime import datetime

from pydantic import ValidationError

from quote_hub.errors import UpstreamError
from quote_hub.integrations.base import (
    BaseQuoteProvider,
    epoch_to_datetime,
    first_valid_price,
    format_market_cap,
    path_segment,
    round2,
    utc_now,
)
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.schemas.upstream import (
    YahooBatchResponse,
    YahooChartBars,
    YahooChartResponse,
    YahooQuoteFields,
    YahooSearchResponse,
)
from quote_hub.services.market_hours import map_market_state, market_state_at
from quote_hub.services.rate_limit import RateLimiter
from quote_hub.services.symbols import normalize_symbol

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Yahoo Finance"

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


def _last(values: list[float | None]) -> float | None:
    for value in reversed(values):
        if value is not None:
            return value
    return None


def _extended(price, change, change_percent, reference: float):
    """(price, change, change_percent) for a pre/post session, or Nones."""
    price = first_valid_price(price)
    if price is None:
        return None, None, None
    if change is None or not math.isfinite(change):
        change = price - reference
    if change_percent is None or not math.isfinite(change_percent):
        change_percent = (change / reference) * 100 if reference else 0.0
    return round2(price), round2(change), round2(change_percent)


def quote_from_yahoo(
    fields: YahooQuoteFields,
    *,
    symbol: str | None = None,
    bars: YahooChartBars | None = None,
    now: datetime | None = None,
) -> Quote | None:
    """Map a chart ``meta`` block or a v7 quote row to a Quote.

    Returns None when there is no usable price or the result would not be a
    valid Quote.
    """
    now = now or utc_now()
    bars = bars or YahooChartBars()
    symbol = normalize_symbol(symbol or fields.symbol or "")
    if not symbol:
        return None

    price = first_valid_price(fields.regular_market_price, _last(bars.close))
    if price is None:
        return None

    previous_close = first_valid_price(
        fields.regular_market_previous_close,
        fields.previous_close,
        fields.chart_previous_close,
        price,
    )
    change = price - previous_close
    change_percent = (change / previous_close) * 100

    highs = [v for v in bars.high if v is not None]
    lows = [v for v in bars.low if v is not None]
    day_high = first_valid_price(fields.regular_market_day_high, max(highs) if highs else None, price)
    day_low = first_valid_price(fields.regular_market_day_low, min(lows) if lows else None, price)
    volume = fields.regular_market_volume or _last(bars.volume) or fields.average_volume or 0

    pre_price, pre_change, pre_pct = _extended(
        fields.pre_market_price, fields.pre_market_change, fields.pre_market_change_percent, price
    )
    post_price, post_change, post_pct = _extended(
        fields.post_market_price, fields.post_market_change, fields.post_market_change_percent, price
    )

    market_state = map_market_state(fields.market_state)
    if market_state is None:
        if post_price is not None:
            market_state = "POST"
        elif pre_price is not None:
            market_state = "PRE"
        else:
            market_state = market_state_at(now)

    try:
        return Quote(
            symbol=symbol,
            name=fields.long_name or fields.short_name or fields.symbol or symbol,
            price=round2(price),
            change=round2(change),
            change_percent=round2(change_percent),
            volume=int(volume),
            market_cap=format_market_cap(fields.market_cap),
            previous_close=round2(previous_close),
            day_high=round2(day_high),
            day_low=round2(day_low),
            year_high=round2(first_valid_price(fields.fifty_two_week_high, price)),
            year_low=round2(first_valid_price(fields.fifty_two_week_low, price)),
            last_update=now,
            pre_market_price=pre_price,
            pre_market_change=pre_change,
            pre_market_change_percent=pre_pct,
            pre_market_time=epoch_to_datetime(fields.pre_market_time) if pre_price else None,
            post_market_price=post_price,
            post_market_change=post_change,
            post_market_change_percent=post_pct,
            post_market_time=epoch_to_datetime(fields.post_market_time) if post_price else None,
            market_state=market_state,
            has_extended_data=pre_price is not None or post_price is not None,
            provider=PROVIDER_NAME,
        )
    except (ValidationError, ValueError, OverflowError, OSError):
        logger.info("[PROVIDER][invalid_quote] provider=%s symbol=%s", PROVIDER_NAME, symbol)
        return None


class YahooFinanceProvider(BaseQuoteProvider):
    """Keyless Yahoo Finance chart/quote/search endpoints."""

    name = PROVIDER_NAME
    default_priority = 1
    base_url = "https://query1.finance.yahoo.com"
    timeout_sec = 10.0
    supports_batch = True

    def build_rate_limiter(self) -> RateLimiter:
        return RateLimiter(min_interval_sec=0.5, max_interval_sec=5.0, backoff_factor=1.5)

    async def _fetch_quote(self, symbol: str) -> Quote | None:
        payload = await self._get_json(
            f"{self.base_url}/v8/finance/chart/{path_segment(symbol)}",
            params={"interval": "1d", "range": "1d"},
            headers=_HEADERS,
        )
        try:
            body = YahooChartResponse.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, "unexpected chart payload") from exc

        if not body.chart.result:
            return None
        result = body.chart.result[0]
        bars = result.indicators.quote[0] if result.indicators.quote else None
        return quote_from_yahoo(result.meta, symbol=symbol, bars=bars, now=self._now())

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, Quote]:
        payload = await self._get_json(
            f"{self.base_url}/v7/finance/quote",
            params={"symbols": ",".join(symbols)},
            headers=_HEADERS,
        )
        try:
            body = YahooBatchResponse.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, "unexpected batch payload") from exc

        now = self._now()
        out: dict[str, Quote] = {}
        for row in body.quote_response.result:
            quote = quote_from_yahoo(row, now=now)
            if quote is not None:
                out[quote.symbol] = quote
        return out

    async def _search(self, query: str) -> list[SymbolMatch]:
        payload = await self._get_json(
            f"{self.base_url}/v1/finance/search",
            params={"q": query, "quotesCount": 10, "newsCount": 0},
            headers=_HEADERS,
        )
        try:
            body = YahooSearchResponse.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, "unexpected search payload") from exc

        return [
            SymbolMatch(symbol=hit.symbol, name=hit.longname or hit.shortname or hit.symbol)
            for hit in body.quotes
            if hit.symbol
        ]
