from __future__ import annotations

import asyncio
import logging
import math
import urllib.parse
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import requests

from quote_hub.errors import (
    NotFoundError,
    ProviderConfigurationError,
    ProviderError,
    RateLimitedError,
    UpstreamError,
    UpstreamTimeoutError,
)
from quote_hub.schemas.provider import ProviderStatus
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.services.rate_limit import RateLimiter
from quote_hub.services.symbols import normalize_symbol, unique_symbols

logger = logging.getLogger(__name__)

HEALTH_CHECK_SYMBOL = "AAPL"
MAX_SEARCH_RESULTS = 10

# a provider goes unhealthy only once it has failed more than this many times
# and more than this share of its requests
UNHEALTHY_MIN_ERRORS = 5
UNHEALTHY_ERROR_RATIO = 0.5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round2(value: float) -> float:
    return round(float(value), 2)


def is_valid_price(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def first_valid_price(*values: Any) -> float | None:
    for value in values:
        if is_valid_price(value):
            return float(value)
    return None


def format_market_cap(value: float | None) -> str:
    if value is None or not math.isfinite(value) or value <= 0:
        return "N/A"
    if value >= 1e12:
        return f"${value / 1e12:.2f}T"
    if value >= 1e9:
        return f"${value / 1e9:.2f}B"
    if value >= 1e6:
        return f"${value / 1e6:.0f}M"
    return f"${value:.0f}"


def epoch_to_datetime(value: int | float | None) -> datetime | None:
    if value is None or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def path_segment(value: str) -> str:
    """Escape a symbol for use as one URL path segment."""
    return urllib.parse.quote(value, safe="")


def _status_code_from_error(exc: Exception) -> int | None:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


class BaseQuoteProvider(ABC):
    """Common behaviour for every upstream quote adapter.

    Subclasses implement ``_fetch_quote`` (and optionally ``_fetch_batch`` and
    ``_search``) by raising ``ProviderError`` subclasses on failure and
    returning ``None`` when the upstream answered but had no usable quote.
    This class turns both into ``None`` for callers, keeps the request, error
    and success counters, applies the rate limiter and decides health.
    """

    name: str = ""
    default_priority: int = 100
    requires_api_key: bool = False
    base_url: str = ""
    timeout_sec: float = 10.0
    supports_batch: bool = False
    sequential_batch_limit: int | None = None
    simulated: bool = False

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        priority: Optional[int] = None,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sequential_batch_limit: Optional[int] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if not self.name:
            raise ProviderConfigurationError(f"{type(self).__name__} has no provider name")
        if self.requires_api_key and not api_key:
            raise ProviderConfigurationError(f"{self.name} requires an API key")

        self.api_key = api_key
        self.priority = self.default_priority if priority is None else priority
        self.session = session or requests
        self.base_url = base_url or self.base_url
        self.timeout_sec = timeout_sec or self.timeout_sec
        self.rate_limiter = rate_limiter or self.build_rate_limiter()
        if sequential_batch_limit is not None:
            self.sequential_batch_limit = sequential_batch_limit
        self._now = now

        self.request_count = 0
        self.error_count = 0
        self.last_success: datetime | None = None
        self.last_error: str | None = None
        self.last_error_at: datetime | None = None
        self.is_healthy = True

    def build_rate_limiter(self) -> RateLimiter:
        return RateLimiter()

    # --- counters -------------------------------------------------------

    def track_request(self) -> None:
        self.request_count += 1

    def track_success(self) -> None:
        self.last_success = self._now()
        self.last_error = None
        self.is_healthy = True

    def track_error(self, exc: Exception) -> None:
        self.error_count += 1
        self.last_error = str(exc)
        self.last_error_at = self._now()

        if (
            self.is_healthy
            and self.request_count > 0
            and self.error_count > UNHEALTHY_MIN_ERRORS
            and self.error_count / self.request_count > UNHEALTHY_ERROR_RATIO
        ):
            self.is_healthy = False
            logger.warning(
                "[HEALTH][unhealthy] provider=%s errors=%d requests=%d",
                self.name,
                self.error_count,
                self.request_count,
            )

    def reset_error_tracking(self) -> None:
        self.error_count = 0
        self.last_error = None
        self.last_error_at = None
        if self.last_success is not None:
            self.is_healthy = True
        logger.info("[HEALTH][reset] provider=%s healthy=%s", self.name, self.is_healthy)

    def set_priority(self, priority: int) -> None:
        self.priority = priority

    # --- upstream I/O ---------------------------------------------------

    async def _get_json(
        self,
        url: str,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        timeout = timeout or self.timeout_sec
        try:
            response = await asyncio.to_thread(
                self.session.get, url, params=params, headers=headers, timeout=timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.Timeout as exc:
            raise UpstreamTimeoutError(self.name, f"timed out after {timeout}s") from exc
        except requests.HTTPError as exc:
            code = _status_code_from_error(exc)
            if code == 404:
                raise NotFoundError(self.name, "not found (HTTP 404)", status_code=code) from exc
            if code == 429:
                raise RateLimitedError(self.name, "rate limited (HTTP 429)", status_code=code) from exc
            raise UpstreamError(self.name, f"HTTP {code}", status_code=code) from exc
        except requests.RequestException as exc:
            raise UpstreamError(self.name, f"request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(self.name, "response body is not valid JSON") from exc

    def _on_rate_limited(self) -> None:
        self.rate_limiter.penalize()
        if self.rate_limiter.max_requests is not None:
            self.rate_limiter.exhaust()

    def _log_quota_skip(self, target: str) -> None:
        logger.warning(
            "[RATE_LIMIT][quota_exhausted] provider=%s target=%s reset_in_sec=%.1f",
            self.name,
            target,
            self.rate_limiter.seconds_until_reset() or 0.0,
        )

    def _handle_failure(self, exc: ProviderError, target: str) -> None:
        self.track_error(exc)
        if isinstance(exc, RateLimitedError):
            self._on_rate_limited()
            logger.warning(
                "[RATE_LIMIT][upstream_429] provider=%s target=%s min_interval_sec=%.2f",
                self.name,
                target,
                self.rate_limiter.min_interval_sec,
            )
            return
        logger.warning(
            "[PROVIDER][fetch_failed] provider=%s target=%s kind=%s status=%s error=%s",
            self.name,
            target,
            type(exc).__name__,
            exc.status_code,
            exc.message,
        )

    # --- provider contract ---------------------------------------------

    @abstractmethod
    async def _fetch_quote(self, symbol: str) -> Quote | None:
        raise NotImplementedError

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, Quote]:
        raise NotImplementedError

    async def _search(self, query: str) -> list[SymbolMatch]:
        return []

    async def fetch_quote(self, symbol: str) -> Quote | None:
        symbol = normalize_symbol(symbol)
        self.track_request()
        if not await self.rate_limiter.acquire():
            self._log_quota_skip(symbol)
            return None

        try:
            quote = await self._fetch_quote(symbol)
        except ProviderError as exc:
            self._handle_failure(exc, symbol)
            return None

        if quote is None:
            logger.info("[PROVIDER][no_data] provider=%s symbol=%s", self.name, symbol)
            return None

        self.track_success()
        logger.debug("[PROVIDER][fetched] provider=%s symbol=%s price=%s", self.name, symbol, quote.price)
        return quote

    async def validate_symbol(self, symbol: str) -> bool:
        return await self.fetch_quote(symbol) is not None

    async def search_symbols(self, query: str) -> list[SymbolMatch]:
        query = str(query).strip()
        if not query:
            return []
        self.track_request()
        if not await self.rate_limiter.acquire():
            self._log_quota_skip(f"search:{query}")
            return []
        try:
            matches = await self._search(query)
        except ProviderError as exc:
            self._handle_failure(exc, f"search:{query}")
            return []
        self.track_success()
        return matches[:MAX_SEARCH_RESULTS]

    async def _fetch_sequential(self, symbols: list[str]) -> dict[str, Quote]:
        limit = self.sequential_batch_limit
        targets = symbols if limit is None else symbols[:limit]
        if len(targets) < len(symbols):
            logger.info(
                "[PROVIDER][batch_capped] provider=%s requested=%d capped=%d",
                self.name,
                len(symbols),
                len(targets),
            )

        out: dict[str, Quote] = {}
        for symbol in targets:
            quote = await self.fetch_quote(symbol)
            if quote is not None:
                out[symbol] = quote
        return out

    async def fetch_multiple_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        wanted = unique_symbols(symbols)
        if not wanted:
            return {}
        if not self.supports_batch:
            return await self._fetch_sequential(wanted)

        target = ",".join(wanted)
        self.track_request()
        if not await self.rate_limiter.acquire():
            self._log_quota_skip(target)
            return {}

        try:
            quotes = await self._fetch_batch(wanted)
        except ProviderError as exc:
            self._handle_failure(exc, target)
            if isinstance(exc, RateLimitedError):
                return {}
            logger.info("[PROVIDER][batch_fallback] provider=%s count=%d", self.name, len(wanted))
            return await self._fetch_sequential(wanted)

        wanted_set = set(wanted)
        resolved = {symbol: quote for symbol, quote in quotes.items() if symbol in wanted_set}
        if resolved:
            self.track_success()
        logger.info(
            "[PROVIDER][batch] provider=%s requested=%d resolved=%d",
            self.name,
            len(wanted),
            len(resolved),
        )
        return resolved

    async def health_check(self) -> bool:
        try:
            quote = await self.fetch_quote(HEALTH_CHECK_SYMBOL)
        except Exception:
            logger.exception("[HEALTH][probe_error] provider=%s", self.name)
            quote = None
        self.is_healthy = quote is not None
        logger.info("[HEALTH][probe] provider=%s healthy=%s", self.name, self.is_healthy)
        return self.is_healthy

    def get_status(self) -> ProviderStatus:
        reset_in = self.rate_limiter.seconds_until_reset()
        next_reset_time = None
        if reset_in:
            next_reset_time = self._now() + timedelta(seconds=reset_in)
        return ProviderStatus(
            name=self.name,
            priority=self.priority,
            has_api_key=bool(self.api_key),
            is_available=self.is_healthy,
            request_count=self.request_count,
            error_count=self.error_count,
            last_success=self.last_success,
            last_error=self.last_error,
            last_error_at=self.last_error_at,
            rate_limit_remaining=self.rate_limiter.remaining(),
            next_reset_time=next_reset_time,
            min_interval_sec=self.rate_limiter.min_interval_sec,
        )
