from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError

from quote_hub.errors import RateLimitedError, UpstreamError
from quote_hub.integrations.base import BaseQuoteProvider, first_valid_price, round2, utc_now
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.schemas.upstream import (
    AlphaVantageDailyBar,
    AlphaVantageDailyResponse,
    AlphaVantageEnvelope,
    AlphaVantageGlobalQuote,
    AlphaVantageQuoteResponse,
    AlphaVantageSearchResponse,
)
from quote_hub.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Alpha Vantage"


def _display_name(symbol: str) -> str:
    # GLOBAL_QUOTE carries no company name
    return f"{symbol} Corporation"


def quote_from_global_quote(
    symbol: str, row: AlphaVantageGlobalQuote, *, now: datetime | None = None
) -> Quote | None:
    price = first_valid_price(row.price)
    if price is None:
        return None

    previous_close = first_valid_price(row.previous_close, price)
    change = row.change if row.change is not None else price - previous_close
    change_percent = (
        row.change_percent
        if row.change_percent is not None
        else (change / previous_close) * 100
    )
    high = first_valid_price(row.high, price)
    low = first_valid_price(row.low, price)

    try:
        return Quote(
            symbol=symbol,
            name=_display_name(symbol),
            price=round2(price),
            change=round2(change),
            change_percent=round2(change_percent),
            volume=int(row.volume or 0),
            previous_close=round2(previous_close),
            day_high=round2(high),
            day_low=round2(low),
            year_high=round2(high),
            year_low=round2(low),
            last_update=now or utc_now(),
            provider=PROVIDER_NAME,
        )
    except (ValidationError, ValueError, OverflowError):
        logger.info("[PROVIDER][invalid_quote] provider=%s symbol=%s", PROVIDER_NAME, symbol)
        return None


def quote_from_daily_series(
    symbol: str, series: dict[str, AlphaVantageDailyBar], *, now: datetime | None = None
) -> Quote | None:
    """Build a quote from the two most recent daily bars."""
    if not series:
        return None
    sessions = sorted(series, reverse=True)
    latest = series[sessions[0]]
    previous = series[sessions[1]] if len(sessions) > 1 else None

    price = first_valid_price(latest.close)
    if price is None:
        return None
    previous_close = first_valid_price(previous.close if previous else None, latest.open, price)
    change = price - previous_close

    highs = [bar.high for bar in series.values() if first_valid_price(bar.high)]
    lows = [bar.low for bar in series.values() if first_valid_price(bar.low)]

    try:
        return Quote(
            symbol=symbol,
            name=_display_name(symbol),
            price=round2(price),
            change=round2(change),
            change_percent=round2((change / previous_close) * 100),
            volume=int(latest.volume or 0),
            previous_close=round2(previous_close),
            day_high=round2(first_valid_price(latest.high, price)),
            day_low=round2(first_valid_price(latest.low, price)),
            year_high=round2(max(highs) if highs else price),
            year_low=round2(min(lows) if lows else price),
            last_update=now or utc_now(),
            provider=PROVIDER_NAME,
        )
    except (ValidationError, ValueError, OverflowError):
        logger.info("[PROVIDER][invalid_quote] provider=%s symbol=%s", PROVIDER_NAME, symbol)
        return None


class AlphaVantageProvider(BaseQuoteProvider):
    """Keyed Alpha Vantage client; 5 calls per rolling minute on the free tier."""

    name = PROVIDER_NAME
    default_priority = 2
    requires_api_key = True
    base_url = "https://www.alphavantage.co/query"
    timeout_sec = 10.0
    sequential_batch_limit = 3

    def build_rate_limiter(self) -> RateLimiter:
        return RateLimiter(min_interval_sec=12.0, max_requests=5, window_sec=60.0, max_interval_sec=60.0)

    def _check_envelope(self, body: AlphaVantageEnvelope) -> None:
        # throttling and key problems arrive as HTTP 200 with a message
        if body.note or body.information:
            raise RateLimitedError(self.name, body.note or body.information)

    async def _query(self, model, **params):
        payload = await self._get_json(self.base_url, params={**params, "apikey": self.api_key})
        try:
            body = model.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, f"unexpected {params.get('function')} payload") from exc
        self._check_envelope(body)
        return body

    async def _fetch_quote(self, symbol: str) -> Quote | None:
        body = await self._query(AlphaVantageQuoteResponse, function="GLOBAL_QUOTE", symbol=symbol)
        if body.error_message:
            return None
        if body.global_quote is not None and body.global_quote.price is not None:
            return quote_from_global_quote(symbol, body.global_quote, now=self._now())

        # empty GLOBAL_QUOTE: fall back to the daily series, under the same quota
        if not await self.rate_limiter.acquire():
            self._log_quota_skip(symbol)
            return None
        logger.info("[PROVIDER][daily_fallback] provider=%s symbol=%s", self.name, symbol)
        daily = await self._query(
            AlphaVantageDailyResponse, function="TIME_SERIES_DAILY", symbol=symbol, outputsize="compact"
        )
        if daily.error_message:
            return None
        return quote_from_daily_series(symbol, daily.time_series, now=self._now())

    async def _search(self, query: str) -> list[SymbolMatch]:
        body = await self._query(AlphaVantageSearchResponse, function="SYMBOL_SEARCH", keywords=query)
        return [
            SymbolMatch(symbol=match.symbol, name=match.name or match.symbol)
            for match in body.best_matches
            if match.symbol
        ]
