from __future__ import annotations

import logging
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from quote_hub.errors import UpstreamError
from quote_hub.integrations.base import (
    BaseQuoteProvider,
    first_valid_price,
    format_market_cap,
    path_segment,
    round2,
    utc_now,
)
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.schemas.upstream import FmpQuote, FmpSearchHit
from quote_hub.services.rate_limit import RateLimiter
from quote_hub.services.symbols import normalize_symbol

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Financial Modeling Prep"

_QUOTE_LIST = TypeAdapter(list[FmpQuote])
_SEARCH_LIST = TypeAdapter(list[FmpSearchHit])


def quote_from_fmp(row: FmpQuote, *, now: datetime | None = None) -> Quote | None:
    symbol = normalize_symbol(row.symbol or "")
    price = first_valid_price(row.price)
    if not symbol or price is None:
        return None

    previous_close = first_valid_price(row.previous_close, price)
    change = row.change if row.change is not None else price - previous_close
    change_percent = (
        row.changes_percentage
        if row.changes_percentage is not None
        else (change / previous_close) * 100
    )

    try:
        return Quote(
            symbol=symbol,
            name=row.name or f"{symbol} Corporation",
            price=round2(price),
            change=round2(change),
            change_percent=round2(change_percent),
            volume=int(row.volume or row.avg_volume or 0),
            market_cap=format_market_cap(row.market_cap),
            previous_close=round2(previous_close),
            day_high=round2(first_valid_price(row.day_high, price)),
            day_low=round2(first_valid_price(row.day_low, price)),
            year_high=round2(first_valid_price(row.year_high, price)),
            year_low=round2(first_valid_price(row.year_low, price)),
            last_update=now or utc_now(),
            provider=PROVIDER_NAME,
        )
    except (ValidationError, ValueError, OverflowError):
        logger.info("[PROVIDER][invalid_quote] provider=%s symbol=%s", PROVIDER_NAME, symbol)
        return None


class FinancialModelingPrepProvider(BaseQuoteProvider):
    """Keyed FMP client; free tier allows 250 calls per day."""

    name = PROVIDER_NAME
    default_priority = 3
    requires_api_key = True
    base_url = "https://financialmodelingprep.com/api/v3"
    timeout_sec = 8.0
    supports_batch = True
    sequential_batch_limit = 5

    def build_rate_limiter(self) -> RateLimiter:
        return RateLimiter(min_interval_sec=0.35, max_requests=250, window_sec=86400.0)

    async def _get_rows(self, path: str, *, params: dict | None = None, timeout: float | None = None):
        try:
            return await self._get_json(
                f"{self.base_url}{path}",
                params={**(params or {}), "apikey": self.api_key},
                timeout=timeout,
            )
        except UpstreamError as exc:
            if exc.status_code == 403:
                logger.warning(
                    "[PROVIDER][forbidden] provider=%s path=%s reason=invalid_key_or_quota",
                    self.name,
                    path,
                )
            raise

    def _parse_quotes(self, payload) -> list[FmpQuote]:
        try:
            return _QUOTE_LIST.validate_python(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, "unexpected quote payload") from exc

    async def _fetch_quote(self, symbol: str) -> Quote | None:
        rows = self._parse_quotes(await self._get_rows(f"/quote/{path_segment(symbol)}"))
        if not rows:
            return None
        return quote_from_fmp(rows[0], now=self._now())

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, Quote]:
        path = "/quote/" + ",".join(path_segment(symbol) for symbol in symbols)
        rows = self._parse_quotes(await self._get_rows(path, timeout=self.timeout_sec * 2))
        now = self._now()
        out: dict[str, Quote] = {}
        for row in rows:
            quote = quote_from_fmp(row, now=now)
            if quote is not None:
                out[quote.symbol] = quote
        return out

    async def _search(self, query: str) -> list[SymbolMatch]:
        payload = await self._get_rows("/search", params={"query": query, "limit": 10})
        try:
            hits = _SEARCH_LIST.validate_python(payload)
        except ValidationError as exc:
            raise UpstreamError(self.name, "unexpected search payload") from exc
        return [SymbolMatch(symbol=hit.symbol, name=hit.name or hit.symbol) for hit in hits if hit.symbol]
