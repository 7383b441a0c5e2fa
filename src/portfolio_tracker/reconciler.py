from __future__ import annotations

from dataclasses import replace

from .holdings import Holding, PriceMap


def reconcile(holdings: list[Holding], prices: PriceMap) -> list[Holding]:
    """Apply a refreshed price map onto holdings.

    Every holding comes back exactly once, in input order. A holding whose ticker
    has no valid quote keeps its current price, so a provider outage never wipes
    out a known value.
    """

    out: list[Holding] = []
    for h in holdings:
        quote = prices.get(h.ticker)
        if quote is not None and quote.price > 0:
            out.append(replace(h, current_price=quote.price))
        else:
            out.append(h)
    return out


def warm_from_cache(holdings: list[Holding], prices: PriceMap) -> list[Holding]:
    """Fill in current prices from a cached map, only where none is known yet."""

    out: list[Holding] = []
    for h in holdings:
        quote = prices.get(h.ticker)
        if h.current_price is None and quote is not None and quote.price > 0:
            out.append(replace(h, current_price=quote.price))
        else:
            out.append(h)
    return out
