from __future__ import annotations

import asyncio
import logging

from fastapi.concurrency import run_in_threadpool

from ..coinbase_client import CoinbaseClient
from ..holdings import Category, Holding, PriceMap, Quote, make_quote
from .. import settings
from .protocols import QuoteProvider, relevant_holdings, unique_by_ticker

logger = logging.getLogger(__name__)


class CoinbaseQuoteProvider(QuoteProvider):
    """Spot-crypto index backed by Coinbase public product data."""

    provider_id = "coinbase"
    categories = frozenset({Category.CRYPTO})

    def __init__(self, *, client: CoinbaseClient, quote_currency: str | None = None) -> None:
        self._client = client
        self._quote_currency = quote_currency

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        crypto = unique_by_ticker(relevant_holdings(holdings, self.categories))
        if not crypto:
            return {}

        qc = (self._quote_currency or settings.get_quote_currency()).upper()

        # Several tickers can share a product (e.g. ETH2 -> ETH); fetch each once
        # while keeping the original ticker keys for reconciliation.
        product_by_ticker: dict[str, str] = {}
        for h in crypto:
            product_by_ticker[h.ticker] = self._client.product_id_for_asset(h.ticker, quote_currency=qc)

        products = sorted(set(product_by_ticker.values()))
        quotes = await asyncio.gather(*(self._fetch_product(p, qc) for p in products))
        by_product = {p: q for p, q in zip(products, quotes) if q is not None}

        out: PriceMap = {}
        for ticker, product_id in product_by_ticker.items():
            quote = by_product.get(product_id)
            if quote is not None:
                out[ticker] = quote
        return out

    async def _fetch_product(self, product_id: str, quote_currency: str) -> Quote | None:
        try:
            price, change = await run_in_threadpool(
                self._client.get_product_quote,
                asset=product_id,
                quote_currency=quote_currency,
            )
        except Exception as exc:
            logger.warning("Coinbase lookup failed for %s: %s", product_id, exc)
            return None
        quote = make_quote(price, change)
        if quote is None:
            logger.warning("Coinbase returned no usable price for %s", product_id)
        return quote
