from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..holdings import Category, Holding, PriceMap, Quote, make_quote
from .. import settings
from .protocols import QuoteProvider, relevant_holdings, unique_by_ticker

logger = logging.getLogger(__name__)


def cardmarket_price(card: Any) -> Any:
    """30-day average Cardmarket price, else the lowest near-mint listing."""

    if not isinstance(card, dict):
        return None
    prices = card.get("prices")
    if not isinstance(prices, dict):
        return None
    cardmarket = prices.get("cardmarket")
    if not isinstance(cardmarket, dict):
        return None
    return cardmarket.get("30d_average") or cardmarket.get("lowest_near_mint")


class CardMarketQuoteProvider(QuoteProvider):
    """Collectible-card marketplace index (TCG API on RapidAPI).

    Cards are looked up by the holding's display name; the most relevant hit wins.
    """

    provider_id = "cardmarket"
    categories = frozenset({Category.COLLECTIBLE})

    def __init__(
        self,
        *,
        api_key: str | None = None,
        host: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._host = host or settings.get_cardmarket_host()
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        cards = unique_by_ticker(relevant_holdings(holdings, self.categories))
        if not cards:
            return {}

        headers = {
            "x-rapidapi-host": self._host,
            "x-rapidapi-key": self._api_key or settings.get_rapidapi_key() or "",
        }
        timeout = httpx.Timeout(self._timeout_seconds or settings.get_http_timeout_seconds())
        async with httpx.AsyncClient(
            base_url=f"https://{self._host}",
            headers=headers,
            timeout=timeout,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(*(self._fetch_one(client, h) for h in cards))

        return {h.ticker: q for h, q in zip(cards, results) if q is not None}

    async def _fetch_one(self, client: httpx.AsyncClient, holding: Holding) -> Quote | None:
        params = {"search": holding.name or holding.ticker, "per_page": 5, "page": 1, "sort": "relevance"}
        try:
            response = await client.get("/cards", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Card lookup failed for %s: %s", holding.name, exc)
            return None

        cards = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(cards, list) or not cards:
            return None
        return make_quote(cardmarket_price(cards[0]))
