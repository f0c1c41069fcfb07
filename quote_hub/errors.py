from __future__ import annotations


class QuoteHubError(Exception):
    """Base class for quote-hub errors."""


class ProviderConfigurationError(QuoteHubError):
    """Raised once at startup when a provider or the manager is misconfigured."""


class ProviderError(QuoteHubError):
    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


class NotFoundError(ProviderError):
    """Unknown symbol, 404, or a payload that cannot be mapped to a quote."""


class RateLimitedError(ProviderError):
    """Upstream answered 429 or the provider's own quota is exhausted."""


class UpstreamTimeoutError(ProviderError):
    pass


class UpstreamError(ProviderError):
    """Non-2xx answer, connection failure or undecodable body."""


class NoProviderAvailableError(QuoteHubError):
    def __init__(self, symbol: str, attempted: list[str]) -> None:
        tried = ",".join(attempted) if attempted else "-"
        super().__init__(f"no provider returned a quote for {symbol} (attempted={tried})")
        self.symbol = symbol
        self.attempted = attempted
