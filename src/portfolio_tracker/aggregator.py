from __future__ import annotations

import asyncio
import logging

from .holdings import Holding, PriceMap, Quote
from . import settings
from .providers.protocols import QuoteProvider

logger = logging.getLogger(__name__)


class PriceAggregator:
    """Fan out to every provider concurrently and merge the results.

    Providers are given in priority order: baseline indexes first, specialised
    feeds next, the language model fallback last. On a ticker collision the
    later provider wins.
    """

    def __init__(self, *, providers: list[QuoteProvider], timeout_seconds: float | None = None) -> None:
        self._providers = list(providers)
        self._timeout_seconds = timeout_seconds

    @property
    def provider_ids(self) -> list[str]:
        return [p.provider_id for p in self._providers]

    async def refresh(self, holdings: list[Holding]) -> PriceMap:
        results = await asyncio.gather(*(self._run(p, holdings) for p in self._providers))

        merged: PriceMap = {}
        for provider, result in zip(self._providers, results):
            for ticker, quote in result.items():
                if ticker in merged and merged[ticker] != quote:
                    logger.debug("%s overrides price for %s", provider.provider_id, ticker)
                merged[ticker] = quote

        logger.info(
            "Price refresh merged %d quotes from %s",
            len(merged),
            ", ".join(f"{p.provider_id}={len(r)}" for p, r in zip(self._providers, results)),
        )
        return merged

    async def _run(self, provider: QuoteProvider, holdings: list[Holding]) -> PriceMap:
        # A provider may declare its own budget (slow batch lookups).
        timeout = (
            getattr(provider, "timeout_seconds", None)
            or self._timeout_seconds
            or settings.get_provider_timeout_seconds()
        )
        try:
            result = await asyncio.wait_for(provider.fetch(holdings), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs", provider.provider_id, timeout)
            return {}
        except Exception as exc:
            logger.warning("Provider %s failed: %s", provider.provider_id, exc)
            return {}

        if not isinstance(result, dict):
            return {}
        # Providers already drop non-positive prices; keep the guarantee at the seam too.
        return {t: q for t, q in result.items() if isinstance(q, Quote) and q.price > 0}
