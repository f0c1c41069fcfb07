from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

from quote_hub.config.settings import Settings
from quote_hub.errors import NoProviderAvailableError, ProviderConfigurationError
from quote_hub.integrations.base import BaseQuoteProvider
from quote_hub.integrations.registry import build_providers
from quote_hub.schemas.provider import ManagerConfig, ProviderStatus
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.services.price_recorder import JsonlPriceRecorder, PriceRecorder
from quote_hub.services.quote_cache import QuoteCache
from quote_hub.services.scheduler import PeriodicTask
from quote_hub.services.symbols import normalize_symbol, unique_symbols

logger = logging.getLogger(__name__)


class QuoteProviderManager:
    """Cache-first, priority-ordered failover across quote providers.

    Owns the provider set, the result cache, the periodic health probe and
    the fire-and-forget hand-off of fresh quotes to a ``PriceRecorder``.
    Per-symbol failures never raise: a symbol no provider can serve comes
    back as ``None`` (single) or is absent from the result (batch).
    """

    def __init__(
        self,
        providers: list[BaseQuoteProvider],
        *,
        config: ManagerConfig | None = None,
        recorder: PriceRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not providers:
            raise ProviderConfigurationError("at least one quote provider must be configured")
        names = [provider.name for provider in providers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ProviderConfigurationError(f"duplicate provider names: {', '.join(duplicates)}")

        self._providers = list(providers)
        self.config = config or ManagerConfig()
        self.cache = QuoteCache(ttl_sec=self.config.cache_ttl_sec, clock=clock)
        self.recorder = recorder
        self._recorder_tasks: set[asyncio.Task] = set()
        self._health_task: PeriodicTask | None = None

        self.quote_requests = 0
        self.cache_served = 0
        self.provider_attempts = 0
        self.failovers = 0
        self.not_found = 0
        self.batch_requests = 0
        self.batch_provider_resolved = 0
        self.batch_individual_resolved = 0
        self.recorded = 0
        self.record_failures = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        recorder: PriceRecorder | None = None,
        session: Optional[Any] = None,
    ) -> "QuoteProviderManager":
        config = ManagerConfig(
            fallback_enabled=settings.FALLBACK_ENABLED,
            cache_enabled=settings.CACHE_ENABLED,
            cache_ttl_sec=settings.CACHE_TTL_SEC,
            health_check_interval_min=settings.HEALTH_CHECK_INTERVAL_MIN,
            max_concurrency=settings.MAX_CONCURRENCY,
        )
        if recorder is None and settings.PRICE_LOG_PATH:
            recorder = JsonlPriceRecorder(settings.PRICE_LOG_PATH)
        return cls(build_providers(settings, session=session), config=config, recorder=recorder)

    # --- provider selection ------------------------------------------------

    @property
    def providers(self) -> list[BaseQuoteProvider]:
        """All providers in priority order (registration order breaks ties)."""
        return sorted(self._providers, key=lambda provider: provider.priority)

    def _available_providers(self) -> list[BaseQuoteProvider]:
        return [provider for provider in self.providers if provider.is_healthy]

    def get_provider(self, name: str | None) -> BaseQuoteProvider | None:
        if not name:
            return None
        wanted = name.strip().lower()
        for provider in self._providers:
            if provider.name.lower() == wanted:
                return provider
        return None

    def _preferred(self, name: str | None, available: list[BaseQuoteProvider]) -> BaseQuoteProvider | None:
        provider = self.get_provider(name)
        if provider is None:
            if name:
                logger.info("[QUOTE][preferred_unknown] provider=%s", name)
            return None
        if provider not in available:
            logger.info("[QUOTE][preferred_unavailable] provider=%s", provider.name)
            return None
        return provider

    def _fallback_permitted(self, preferred_provider: str | None, allow_fallback: bool) -> bool:
        return (allow_fallback and self.config.fallback_enabled) or not preferred_provider

    def _attempt_order(
        self, preferred_provider: str | None, allow_fallback: bool
    ) -> list[BaseQuoteProvider]:
        available = self._available_providers()
        preferred = self._preferred(preferred_provider, available)
        order = [preferred] if preferred is not None else []
        if self._fallback_permitted(preferred_provider, allow_fallback):
            order.extend(provider for provider in available if provider is not preferred)
        return order

    # --- results -----------------------------------------------------------

    def _accept(self, quote: Quote, symbol: str) -> Quote:
        if self.config.cache_enabled:
            self.cache.put(quote, symbol)
        self._record(quote)
        return quote

    def _record(self, quote: Quote) -> None:
        if self.recorder is None or quote.simulated:
            return
        task = asyncio.get_running_loop().create_task(self._record_price(quote))
        self._recorder_tasks.add(task)
        task.add_done_callback(self._recorder_tasks.discard)

    async def _record_price(self, quote: Quote) -> None:
        record = self.recorder.record_price
        try:
            if inspect.iscoroutinefunction(record):
                await record(quote)
            else:
                result = await asyncio.to_thread(record, quote)
                if inspect.isawaitable(result):
                    await result
            self.recorded += 1
        except Exception:
            self.record_failures += 1
            logger.exception("[QUOTE][record_failed] symbol=%s provider=%s", quote.symbol, quote.provider)

    async def _attempt(self, provider: BaseQuoteProvider, symbol: str) -> Quote | None:
        self.provider_attempts += 1
        try:
            return await provider.fetch_quote(symbol)
        except Exception:
            logger.exception("[QUOTE][provider_error] provider=%s symbol=%s", provider.name, symbol)
            return None

    async def _attempt_batch(self, provider: BaseQuoteProvider, symbols: list[str]) -> dict[str, Quote]:
        self.provider_attempts += 1
        try:
            return await provider.fetch_multiple_quotes(symbols)
        except Exception:
            logger.exception(
                "[QUOTE][provider_batch_error] provider=%s count=%d", provider.name, len(symbols)
            )
            return {}

    # --- quotes ------------------------------------------------------------

    async def fetch_quote(
        self,
        symbol: str,
        preferred_provider: str | None = None,
        allow_fallback: bool = True,
    ) -> Quote | None:
        symbol = normalize_symbol(symbol)
        if not symbol:
            return None
        self.quote_requests += 1

        if self.config.cache_enabled:
            cached = self.cache.get(symbol)
            if cached is not None:
                self.cache_served += 1
                logger.debug("[CACHE][hit] symbol=%s provider=%s", symbol, cached.provider)
                return cached

        return await self._fetch_uncached(symbol, preferred_provider, allow_fallback)

    async def _fetch_uncached(
        self, symbol: str, preferred_provider: str | None, allow_fallback: bool
    ) -> Quote | None:
        attempted: list[str] = []
        for provider in self._attempt_order(preferred_provider, allow_fallback):
            if attempted:
                self.failovers += 1
                logger.info(
                    "[QUOTE][failover] symbol=%s from=%s to=%s", symbol, attempted[-1], provider.name
                )
            attempted.append(provider.name)
            quote = await self._attempt(provider, symbol)
            if quote is not None:
                return self._accept(quote, symbol)

        self.not_found += 1
        logger.warning("[QUOTE][not_found] %s", NoProviderAvailableError(symbol, attempted))
        return None

    async def fetch_multiple_quotes(
        self,
        symbols: list[str],
        preferred_provider: str | None = None,
        allow_fallback: bool = True,
        max_concurrency: int | None = None,
    ) -> dict[str, Quote]:
        wanted = unique_symbols(symbols)
        if not wanted:
            return {}
        self.batch_requests += 1

        results: dict[str, Quote] = {}
        misses: list[str] = []
        for symbol in wanted:
            cached = self.cache.get(symbol) if self.config.cache_enabled else None
            if cached is not None:
                results[symbol] = cached
            else:
                misses.append(symbol)
        cache_count = len(results)

        for provider in self._attempt_order(preferred_provider, allow_fallback):
            if not misses:
                break
            resolved = await self._attempt_batch(provider, misses)
            for symbol in misses:
                quote = resolved.get(symbol)
                if quote is not None:
                    results[symbol] = self._accept(quote, symbol)
            misses = [symbol for symbol in misses if symbol not in results]
        provider_count = len(results) - cache_count

        individual_count = 0
        if misses:
            semaphore = asyncio.Semaphore(max_concurrency or self.config.max_concurrency)

            async def fetch_one(symbol: str) -> tuple[str, Quote | None]:
                async with semaphore:
                    return symbol, await self._fetch_uncached(symbol, preferred_provider, allow_fallback)

            for symbol, quote in await asyncio.gather(*(fetch_one(symbol) for symbol in misses)):
                if quote is not None:
                    results[symbol] = quote
                    individual_count += 1

        self.batch_provider_resolved += provider_count
        self.batch_individual_resolved += individual_count
        logger.info(
            "[QUOTE][batch_resolve] target_count=%d cache_count=%d provider_count=%d "
            "individual_count=%d final_count=%d",
            len(wanted),
            cache_count,
            provider_count,
            individual_count,
            len(results),
        )
        return {symbol: results[symbol] for symbol in wanted if symbol in results}

    async def validate_symbol(self, symbol: str, preferred_provider: str | None = None) -> bool:
        return await self.fetch_quote(symbol, preferred_provider) is not None

    async def search_symbols(self, query: str, preferred_provider: str | None = None) -> list[SymbolMatch]:
        query = str(query).strip()
        if not query:
            return []
        for provider in self._attempt_order(preferred_provider, allow_fallback=True):
            try:
                matches = await provider.search_symbols(query)
            except Exception:
                logger.exception("[QUOTE][search_error] provider=%s query=%s", provider.name, query)
                continue
            if matches:
                return matches
        return []

    # --- administration ----------------------------------------------------

    def get_provider_status(self) -> dict[str, ProviderStatus]:
        return {provider.name: provider.get_status() for provider in self.providers}

    def get_provider_names(self) -> list[str]:
        return [provider.name for provider in self.providers]

    def set_default_provider(self, name: str) -> bool:
        target = self.get_provider(name)
        if target is None:
            logger.warning("[PROVIDER][default_unknown] provider=%s", name)
            return False
        for provider in self._providers:
            if provider is target:
                provider.set_priority(1)
            else:
                provider.set_priority(provider.priority + self.config.default_priority_offset)
        logger.info("[PROVIDER][default] provider=%s order=%s", target.name, ",".join(self.get_provider_names()))
        return True

    def reset_error_tracking(self, name: str | None = None) -> bool:
        if name is None:
            for provider in self._providers:
                provider.reset_error_tracking()
            return True
        provider = self.get_provider(name)
        if provider is None:
            return False
        provider.reset_error_tracking()
        return True

    async def run_health_checks(self) -> dict[str, bool]:
        providers = list(self._providers)
        outcomes = await asyncio.gather(
            *(provider.health_check() for provider in providers), return_exceptions=True
        )
        results: dict[str, bool] = {}
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("[HEALTH][probe_error] provider=%s error=%s", provider.name, outcome)
                provider.is_healthy = False
                outcome = False
            results[provider.name] = bool(outcome)
        logger.info(
            "[HEALTH][summary] healthy=%d total=%d", sum(results.values()), len(results)
        )
        return results

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("[CACHE][cleared]")

    def cache_stats(self) -> dict[str, float | int]:
        return self.cache.stats()

    def get_config(self) -> ManagerConfig:
        return self.config.model_copy()

    async def update_config(self, **changes: Any) -> ManagerConfig:
        unknown = sorted(set(changes) - set(ManagerConfig.model_fields))
        if unknown:
            raise ValueError(f"unknown config fields: {', '.join(unknown)}")
        previous = self.config
        self.config = ManagerConfig.model_validate({**previous.model_dump(), **changes})
        self.cache.ttl_sec = self.config.cache_ttl_sec
        if not self.config.cache_enabled:
            self.cache.clear()

        interval_changed = previous.health_check_interval_min != self.config.health_check_interval_min
        if interval_changed and self._health_task is not None:
            await self._stop_health_task()
            self._start_health_task()
        logger.info("[QUOTE][config_updated] changes=%s", ",".join(sorted(changes)) or "-")
        return self.get_config()

    def metrics(self) -> dict[str, Any]:
        return {
            "quote_requests": self.quote_requests,
            "cache_served": self.cache_served,
            "provider_attempts": self.provider_attempts,
            "failovers": self.failovers,
            "not_found": self.not_found,
            "batch_requests": self.batch_requests,
            "batch_provider_resolved": self.batch_provider_resolved,
            "batch_individual_resolved": self.batch_individual_resolved,
            "recorded": self.recorded,
            "record_failures": self.record_failures,
            "pending_records": len(self._recorder_tasks),
            "healthy_providers": len(self._available_providers()),
            "total_providers": len(self._providers),
            "health_task_running": self._health_task is not None and self._health_task.running,
            "cache": self.cache_stats(),
        }

    # --- lifecycle ---------------------------------------------------------

    def _start_health_task(self) -> None:
        self._health_task = PeriodicTask(
            "provider-health-check",
            self.run_health_checks,
            interval_sec=self.config.health_check_interval_min * 60,
            initial_delay_sec=self.config.initial_health_check_delay_sec,
        )
        self._health_task.start()

    async def _stop_health_task(self) -> None:
        task, self._health_task = self._health_task, None
        if task is not None:
            await task.stop()

    async def init(self) -> None:
        if self._health_task is not None:
            return
        self._start_health_task()
        logger.info("[QUOTE][init] providers=%s", ",".join(self.get_provider_names()))

    async def shutdown(self) -> None:
        await self._stop_health_task()
        pending = list(self._recorder_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._recorder_tasks.clear()
        self.cache.clear()
        logger.info("[QUOTE][shutdown] cancelled_records=%d", len(pending))

    async def __aenter__(self) -> "QuoteProviderManager":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()
