from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from . import settings


class Category(str, Enum):
    CRYPTO = "crypto"
    EQUITY = "equity"
    METAL = "metal"
    COLLECTIBLE = "collectible"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Parse a category name, accepting the names used by older saved data."""

        raw = str(value or "").strip().lower()
        aliases = {
            "stocks": cls.EQUITY,
            "stock": cls.EQUITY,
            "equities": cls.EQUITY,
            "metals": cls.METAL,
            "pokemon": cls.COLLECTIBLE,
            "collectibles": cls.COLLECTIBLE,
        }
        if raw in aliases:
            return aliases[raw]
        return cls(raw)


@dataclass(frozen=True)
class Holding:
    id: str
    name: str
    ticker: str
    category: Category
    quantity: Decimal
    unit: str
    buy_price: Decimal
    current_price: Decimal | None = None

    @property
    def unit_price(self) -> Decimal:
        """Current price, falling back to the acquisition price when unknown."""

        return self.current_price if self.current_price is not None else self.buy_price

    @property
    def market_value(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.buy_price


@dataclass(frozen=True)
class Quote:
    price: Decimal
    change_24h: Decimal = Decimal("0")

    @property
    def is_valid(self) -> bool:
        return self.price > 0


PriceMap = dict[str, Quote]


def new_holding_id() -> str:
    """Short, time-ordered id: base36 milliseconds plus four random chars."""

    millis = int(time.time() * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while millis:
        millis, rem = divmod(millis, 36)
        out = digits[rem] + out
    suffix = "".join(secrets.choice(digits) for _ in range(4))
    return (out or "0") + suffix


def ticker_from_name(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def normalize_identity(raw: str | None) -> str:
    """Reduce an identity key to lowercase alphanumerics, or the default identity."""

    cleaned = re.sub(r"[^a-z0-9]", "", (raw or "").strip().lower())
    return cleaned or settings.DEFAULT_IDENTITY


def parse_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not dec.is_finite():
        return None
    return dec


def make_quote(price: Any, change_24h: Any = None) -> Quote | None:
    """Build a quote from raw provider values; None unless the price is positive."""

    p = parse_decimal(price)
    if p is None or p <= 0:
        return None
    change = parse_decimal(change_24h)
    return Quote(price=p, change_24h=change if change is not None else Decimal("0"))


def holding_to_dict(h: Holding) -> dict[str, Any]:
    # Decimals are stored as strings so values round-trip exactly.
    return {
        "id": h.id,
        "name": h.name,
        "ticker": h.ticker,
        "category": h.category.value,
        "quantity": str(h.quantity),
        "unit": h.unit,
        "buy_price": str(h.buy_price),
        "current_price": None if h.current_price is None else str(h.current_price),
    }


def holding_from_dict(raw: dict[str, Any]) -> Holding | None:
    """Parse a stored holding. Returns None for entries that cannot be used.

    Accepts the camelCase keys (amount, buyPrice, currentPrice) of older exports.
    """

    hid = raw.get("id")
    if not isinstance(hid, str) or not hid:
        return None

    try:
        category = Category.parse(raw.get("category"))
    except ValueError:
        return None

    quantity = parse_decimal(raw.get("quantity", raw.get("amount")))
    buy_price = parse_decimal(raw.get("buy_price", raw.get("buyPrice")))
    if quantity is None or quantity < 0:
        return None
    if buy_price is None or buy_price < 0:
        buy_price = Decimal("0")

    current = parse_decimal(raw.get("current_price", raw.get("currentPrice")))
    if current is not None and current <= 0:
        current = None

    name = str(raw.get("name") or "")
    ticker = str(raw.get("ticker") or "") or ticker_from_name(name)

    return Holding(
        id=hid,
        name=name,
        ticker=ticker,
        category=category,
        quantity=quantity,
        unit=str(raw.get("unit") or "pcs"),
        buy_price=buy_price,
        current_price=current,
    )


def holdings_from_list(raw: Any) -> list[Holding]:
    if not isinstance(raw, list):
        return []
    out: list[Holding] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        h = holding_from_dict(item)
        if h is not None:
            out.append(h)
    return out


def quote_to_dict(q: Quote) -> dict[str, str]:
    return {"price": str(q.price), "change_24h": str(q.change_24h)}


def price_map_from_dict(raw: Any) -> PriceMap:
    if not isinstance(raw, dict):
        return {}
    out: PriceMap = {}
    for ticker, item in raw.items():
        if not isinstance(ticker, str) or not isinstance(item, dict):
            continue
        quote = make_quote(item.get("price"), item.get("change_24h"))
        if quote is not None:
            out[ticker] = quote
    return out


def sample_holdings() -> list[Holding]:
    """A starter portfolio covering every category."""

    def h(hid, name, ticker, category, qty, unit, buy, current=None) -> Holding:
        return Holding(
            id=hid,
            name=name,
            ticker=ticker,
            category=category,
            quantity=Decimal(qty),
            unit=unit,
            buy_price=Decimal(buy),
            current_price=None if current is None else Decimal(current),
        )

    return [
        h("s1", "Bitcoin", "bitcoin", Category.CRYPTO, "0.45", "BTC", "38000"),
        h("s2", "Ethereum", "ethereum", Category.CRYPTO, "3.2", "ETH", "2200"),
        h("s3", "Solana", "solana", Category.CRYPTO, "28", "SOL", "85"),
        h("s4", "Apple", "AAPL", Category.EQUITY, "15", "shares", "168", "228"),
        h("s5", "NVIDIA", "NVDA", Category.EQUITY, "8", "shares", "450", "138"),
        h("s6", "ASML", "ASML", Category.EQUITY, "5", "shares", "620", "710"),
        h("s7", "Gold", "XAU", Category.METAL, "50", "gram", "58"),
        h("s8", "Silver", "XAG", Category.METAL, "500", "gram", "0.72"),
        h("s9", "Charizard 1st Ed.", "CZD-1ST", Category.COLLECTIBLE, "1", "card", "850", "1850"),
        h("s10", "Pikachu Illustrator", "PIK-ILL", Category.COLLECTIBLE, "1", "card", "600", "1200"),
    ]
