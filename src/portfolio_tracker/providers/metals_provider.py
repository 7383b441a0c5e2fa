from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any

import httpx

from ..holdings import Category, Holding, PriceMap, Quote, make_quote, parse_decimal
from .. import settings
from .protocols import QuoteProvider, relevant_holdings, unique_by_ticker

logger = logging.getLogger(__name__)

METAL_SYMBOLS: dict[str, str] = {
    "gold": "XAU",
    "silver": "XAG",
    "platinum": "XPT",
    "palladium": "XPD",
}

PRIMARY_METAL = "XAU"


def _derived_from_gold(symbol: str, gold: Quote) -> Quote | None:
    if symbol == "XAG":
        return Quote(price=gold.price / settings.GOLD_SILVER_RATIO, change_24h=gold.change_24h)
    if symbol == "XPT":
        return Quote(price=gold.price * settings.GOLD_PLATINUM_FACTOR, change_24h=gold.change_24h)
    return None


def per_gram_quote(payload: Any) -> Quote | None:
    """Price per gram from a GoldAPI payload.

    Prefers the provider's own per-gram figure, else converts the troy-ounce price.
    """

    if not isinstance(payload, dict):
        return None
    change = payload.get("chp")
    per_gram = parse_decimal(payload.get("price_gram_24k"))
    if per_gram is not None and per_gram > 0:
        return make_quote(per_gram, change)
    per_ounce = parse_decimal(payload.get("price"))
    if per_ounce is None or per_ounce <= 0:
        return None
    return make_quote(per_ounce / settings.TROY_OUNCE_GRAMS, change)


class GoldApiQuoteProvider(QuoteProvider):
    """Precious-metals index (goldapi.io), quoted per gram."""

    provider_id = "goldapi"
    categories = frozenset({Category.METAL})

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
        self._base_url = (base_url or settings.get_goldapi_base_url()).rstrip("/")
        self._quote_currency = quote_currency
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @staticmethod
    def symbol_for_ticker(ticker: str) -> str:
        t = (ticker or "").strip()
        return METAL_SYMBOLS.get(t.lower(), t.upper())

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        metals = unique_by_ticker(relevant_holdings(holdings, self.categories))
        if not metals:
            return {}

        symbol_by_ticker = {h.ticker: self.symbol_for_ticker(h.ticker) for h in metals}
        wanted = set(symbol_by_ticker.values())
        wanted.add(PRIMARY_METAL)  # needed to derive secondary metals

        currency = (self._quote_currency or settings.get_quote_currency()).upper()
        symbols = sorted(wanted)
        headers = {
            "x-access-token": self._api_key or settings.get_goldapi_key() or "",
            "Content-Type": "application/json",
        }
        timeout = httpx.Timeout(self._timeout_seconds or settings.get_http_timeout_seconds())
        async with httpx.AsyncClient(timeout=timeout, headers=headers, transport=self._transport) as client:
            results = await asyncio.gather(*(self._fetch_symbol(client, s, currency) for s in symbols))

        by_symbol: dict[str, Quote] = {s: q for s, q in zip(symbols, results) if q is not None}

        gold = by_symbol.get(PRIMARY_METAL)
        if gold is not None:
            for symbol in wanted:
                if symbol in by_symbol:
                    continue
                derived = _derived_from_gold(symbol, gold)
                if derived is not None:
                    by_symbol[symbol] = derived

        out: PriceMap = {}
        for ticker, symbol in symbol_by_ticker.items():
            quote = by_symbol.get(symbol)
            if quote is not None and quote.price > Decimal("0"):
                out[ticker] = quote
        return out

    async def _fetch_symbol(self, client: httpx.AsyncClient, symbol: str, currency: str) -> Quote | None:
        url = f"{self._base_url}/{symbol}/{currency}"
        try:
            response = await client.get(url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GoldAPI lookup failed for %s/%s: %s", symbol, currency, exc)
            return None
        return per_gram_quote(payload)
