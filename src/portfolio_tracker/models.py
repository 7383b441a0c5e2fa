from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

CategoryName = Literal["crypto", "equity", "metal", "collectible"]


class HoldingIn(BaseModel):
    """A new holding as submitted by a client. Decimals as strings."""

    name: str
    ticker: Optional[str] = None
    category: str = Field(default="crypto")
    quantity: str
    unit: Optional[str] = None
    buy_price: Optional[str] = None
    current_price: Optional[str] = None


class HoldingUpdate(BaseModel):
    quantity: Optional[str] = None
    buy_price: Optional[str] = None
    current_price: Optional[str] = None


class HoldingLine(BaseModel):
    id: str
    name: str
    ticker: str
    category: CategoryName
    quantity: str
    unit: str
    buy_price: str
    current_price: Optional[str] = None
    market_value: str
    pnl: str
    pnl_pct: str


class CategoryValuation(BaseModel):
    category: CategoryName
    count: int
    value: str
    cost: str
    pnl: str
    pnl_pct: str
    allocation_pct: str


class PortfolioValuation(BaseModel):
    identity: str
    as_of: datetime

    currency: str = Field(default="EUR")
    total_value: str
    total_cost: str
    pnl: str
    pnl_pct: str

    by_category: list[CategoryValuation] = Field(default_factory=list)
    holdings: list[HoldingLine] = Field(default_factory=list)
    # Tickers valued at their acquisition price because no market price is known.
    unpriced: list[str] = Field(default_factory=list)


class QuoteOut(BaseModel):
    price: str
    change_24h: str = Field(default="0")


class RefreshResponse(BaseModel):
    identity: str
    as_of: datetime

    prices: dict[str, QuoteOut] = Field(default_factory=dict)
    valuation: PortfolioValuation
    warnings: list[str] = Field(default_factory=list)


class PriceCacheView(BaseModel):
    captured_at: datetime
    prices: dict[str, QuoteOut] = Field(default_factory=dict)


class SetupRequest(BaseModel):
    use_samples: bool = Field(default=False)
