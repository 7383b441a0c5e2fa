from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import AsyncOpenAI

from ..holdings import Category, Holding, PriceMap, make_quote
from .. import settings
from .equities_provider import has_feed_entry
from .protocols import QuoteProvider, relevant_holdings, unique_by_ticker

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_price_list(text: str) -> PriceMap | None:
    """Parse a model answer that should be a JSON array of {identifier, price}.

    Code fences and any prose around the array are stripped first. Anything that
    is not a well-formed array of such objects is rejected as a whole (None).
    Entries with a non-positive price are dropped.
    """

    cleaned = _FENCE_RE.sub("", text or "").strip()
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end < start:
        return None

    try:
        items = json.loads(cleaned[start : end + 1])
    except ValueError:
        return None
    if not isinstance(items, list):
        return None

    out: PriceMap = {}
    for item in items:
        if not isinstance(item, dict):
            return None
        identifier = item.get("identifier")
        price = item.get("price")
        if not isinstance(identifier, str) or not identifier.strip():
            return None
        if isinstance(price, bool) or not isinstance(price, (int, float, str)):
            return None
        quote = make_quote(price)
        if quote is not None:
            out[identifier.strip()] = quote
    return out


def build_prompt(holdings: list[Holding], currency: str) -> str:
    lines = "\n".join(f"- {h.name} (identifier: {h.ticker}), category: {h.category.value}" for h in holdings)
    return (
        "Look up current market prices for these assets. Reply with ONLY a JSON array, "
        "no markdown and no explanation.\n"
        'Format: [{"identifier": "AAPL", "price": 228.50}, ...]\n\n'
        f"Equities: price per share in {currency}.\n"
        f"Collectible cards: estimated market value per card in {currency}.\n\n"
        f"{lines}"
    )


class LanguageModelQuoteProvider(QuoteProvider):
    """Batch price lookup through a language model with web search.

    Covers what has no structured feed: equities without a feed entry and all
    collectibles. Runs last in the merge order.
    """

    provider_id = "language_model"
    categories = frozenset({Category.EQUITY, Category.COLLECTIBLE})

    def __init__(
        self,
        *,
        client: Any | None = None,
        model: str | None = None,
        quote_currency: str | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._quote_currency = quote_currency

    @property
    def timeout_seconds(self) -> float:
        return settings.get_language_model_timeout_seconds()

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.get_openai_api_key(),
                timeout=settings.get_language_model_timeout_seconds(),
                max_retries=0,
            )
        return self._client

    @staticmethod
    def needs_lookup(holding: Holding) -> bool:
        if holding.category is Category.COLLECTIBLE:
            return True
        return holding.category is Category.EQUITY and not has_feed_entry(holding.ticker)

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        wanted = [
            h for h in unique_by_ticker(relevant_holdings(holdings, self.categories)) if self.needs_lookup(h)
        ]
        if not wanted:
            return {}

        if self._client is None and not settings.get_openai_api_key():
            logger.info("OPENAI_API_KEY not set; skipping language model lookup")
            return {}

        currency = (self._quote_currency or settings.get_quote_currency()).upper()
        try:
            response = await self._get_client().responses.create(
                model=self._model or settings.get_openai_model(),
                tools=[{"type": "web_search_preview"}],
                input=[{"role": "user", "content": build_prompt(wanted, currency)}],
            )
            text = response.output_text
        except Exception as exc:
            logger.warning("Language model price lookup failed: %s", exc)
            return {}

        parsed = parse_price_list(text)
        if parsed is None:
            logger.warning("Language model returned no parseable price list")
            return {}

        tickers = {h.ticker for h in wanted}
        return {t: q for t, q in parsed.items() if t in tickers}
