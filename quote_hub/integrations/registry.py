"""Builds the configured provider set from settings.

To add an upstream, implement a ``BaseQuoteProvider`` subclass and add it to
``build_providers`` behind its own enable flag.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from quote_hub.config.settings import Settings
from quote_hub.integrations.alpha_vantage import AlphaVantageProvider
from quote_hub.integrations.base import BaseQuoteProvider
from quote_hub.integrations.demo import DemoQuoteProvider
from quote_hub.integrations.fmp import FinancialModelingPrepProvider
from quote_hub.integrations.yahoo import YahooFinanceProvider

logger = logging.getLogger(__name__)


def build_providers(settings: Settings, *, session: Optional[Any] = None) -> list[BaseQuoteProvider]:
    providers: list[BaseQuoteProvider] = []

    if settings.YAHOO_ENABLED:
        providers.append(YahooFinanceProvider(session=session))

    if settings.ALPHA_VANTAGE_ENABLED:
        if settings.ALPHA_VANTAGE_API_KEY:
            providers.append(AlphaVantageProvider(api_key=settings.ALPHA_VANTAGE_API_KEY, session=session))
        else:
            logger.warning("[PROVIDER][skipped] provider=%s reason=missing_api_key", AlphaVantageProvider.name)

    if settings.FMP_ENABLED:
        if settings.FMP_API_KEY:
            providers.append(FinancialModelingPrepProvider(api_key=settings.FMP_API_KEY, session=session))
        else:
            logger.warning(
                "[PROVIDER][skipped] provider=%s reason=missing_api_key", FinancialModelingPrepProvider.name
            )

    if settings.DEMO_MODE:
        providers.append(DemoQuoteProvider())

    logger.info(
        "[PROVIDER][configured] providers=%s",
        ",".join(f"{p.name}:{p.priority}" for p in providers) or "-",
    )
    return providers
