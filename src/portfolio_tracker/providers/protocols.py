from __future__ import annotations

from typing import Protocol

from ..holdings import Category, Holding, PriceMap


class QuoteProvider(Protocol):
    """One external price source, normalized to a PriceMap keyed by holding ticker.

    Implementations only look at holdings in their own categories, return {}
    without touching the network when none are held, and never raise: failed
    lookups are logged and left out of the result.
    """

    provider_id: str
    categories: frozenset[Category]

    async def fetch(self, holdings: list[Holding]) -> PriceMap:
        ...


def relevant_holdings(holdings: list[Holding], categories: frozenset[Category]) -> list[Holding]:
    return [h for h in holdings if h.category in categories]


def unique_by_ticker(holdings: list[Holding]) -> list[Holding]:
    """First holding per ticker, in input order."""

    seen: set[str] = set()
    out: list[Holding] = []
    for h in holdings:
        if not h.ticker or h.ticker in seen:
            continue
        seen.add(h.ticker)
        out.append(h)
    return out
