from __future__ import annotations

import asyncio
import logging

import httpx

from ..holdings import Category, Holding, PriceMap, Quote, make_quote, parse_decimal
from .. import settings
from .protocols import QuoteProvider, relevant_holdings, unique_by_ticker

logger = logging.getLogger(__name__)

# Tickers with a structured feed entry, mapped to the exchange-qualified symbol.
EQUITY_SYMBOLS: dict[str, str] = {
    "AAPL": "AAPL",
    "NVDA": "NVDA",
    "ASML": "ASML.AS",
    "MSFT": "MSFT",
    "TSLA": "TSLA",
    "GOOGL": "GOOGL",
    "VWCE": "VWCE.DE",
    "CSPX": "CSPX.L",
}


def has_feed_entry(ticker: str) -> bool:
    return (ticker or "").strip().upper() in EQUITY_SYMBOLS


class FinnhubQuoteProvider(QuoteProvider):
    """Equities quote service (finnhub.io).

    Quotes come back in USD. For any other quote currency they are converted
    with the flat settings.USD_TO_QUOTE_FACTOR rather than a live exchange rate.
    """

    provider_id = "finnhub"
    categories = frozenset({Category.EQUITY})

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        quote_currency: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or settings.get_finnhub_base_url()).rstrip("/")
        self._quote_currency = quote_currency
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @staticmethod
    def symbol_for_ticker(ticker: str) -> str:
        t = (ticker or "").strip()
        return EQUITY_SYMBOLS.get(t.upper(), t)

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        stocks = unique_by_ticker(relevant_holdings(holdings, self.categories))
        if not stocks:
            return {}

        token = self._api_key or settings.get_finnhub_api_key() or ""
        timeout = httpx.Timeout(self._timeout_seconds or settings.get_http_timeout_seconds())
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            results = await asyncio.gather(*(self._fetch_one(client, h.ticker, token) for h in stocks))

        return {h.ticker: q for h, q in zip(stocks, results) if q is not None}

    async def _fetch_one(self, client: httpx.AsyncClient, ticker: str, token: str) -> Quote | None:
        symbol = self.symbol_for_ticker(ticker)
        try:
            response = await client.get(f"{self._base_url}/quote", params={"symbol": symbol, "token": token})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Finnhub lookup failed for %s: %s", symbol, exc)
            return None

        if not isinstance(data, dict):
            return None
        price = parse_decimal(data.get("c"))
        if price is None or price <= 0:
            return None
        currency = (self._quote_currency or settings.get_quote_currency()).upper()
        if currency != "USD":
            price = price * settings.USD_TO_QUOTE_FACTOR
        return make_quote(price, data.get("dp"))
