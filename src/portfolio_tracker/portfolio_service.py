from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from fastapi.concurrency import run_in_threadpool

from . import settings
from .aggregator import PriceAggregator
from .holdings import (
    Category,
    Holding,
    PriceMap,
    new_holding_id,
    normalize_identity,
    parse_decimal,
    sample_holdings,
    ticker_from_name,
)
from .models import CategoryValuation, HoldingLine, PortfolioValuation
from .price_cache import Clock, PriceCache, utc_now
from .reconciler import reconcile, warm_from_cache
from .store import HoldingsStore, StoreUnavailableError

logger = logging.getLogger(__name__)

_PCT = Decimal("0.01")


@dataclass(frozen=True)
class RefreshResult:
    identity: str
    as_of: datetime
    prices: PriceMap
    holdings: list[Holding]
    warnings: list[str]


def _pct(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return Decimal("0.00")
    return (part / whole * 100).quantize(_PCT)


def holding_line(h: Holding) -> HoldingLine:
    return HoldingLine(
        id=h.id,
        name=h.name,
        ticker=h.ticker,
        category=h.category.value,
        quantity=str(h.quantity),
        unit=h.unit,
        buy_price=str(h.buy_price),
        current_price=None if h.current_price is None else str(h.current_price),
        market_value=str(h.market_value),
        pnl=str(h.market_value - h.cost),
        pnl_pct=str(_pct(h.market_value - h.cost, h.cost)),
    )


def _lookup_key(holdings: list[Holding]) -> frozenset[tuple[str, str, str]]:
    return frozenset((h.category.value, h.ticker, h.name) for h in holdings)


class PortfolioService:
    def __init__(
        self,
        *,
        aggregator: PriceAggregator,
        cache: PriceCache,
        store: HoldingsStore,
        clock: Clock = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._cache = cache
        self._store = store
        self._clock = clock
        self._inflight: dict[frozenset[tuple[str, str, str]], asyncio.Future[PriceMap]] = {}
        self._locks: dict[str, tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}

    def _lock(self, identity: str) -> asyncio.Lock:
        # Serializes load -> save sequences per identity. A lock only works on the
        # loop it was first used on, so a new loop gets a new lock.
        loop = asyncio.get_running_loop()
        entry = self._locks.get(identity)
        if entry is None or entry[0] is not loop:
            entry = self._locks[identity] = (loop, asyncio.Lock())
        return entry[1]

    @property
    def provider_ids(self) -> list[str]:
        return self._aggregator.provider_ids

    @property
    def cache(self) -> PriceCache:
        return self._cache

    async def refresh_all(self, holdings: list[Holding]) -> PriceMap:
        """Fetch and merge prices for the given holdings, then cache them.

        A refresh requested while an identical one (same lookups) is running
        joins the running one instead of starting another.
        """

        key = _lookup_key(holdings)
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(self._refresh_and_cache(list(holdings)))
            self._inflight[key] = task

            def _forget(t: asyncio.Future[PriceMap], key=key) -> None:
                if self._inflight.get(key) is t:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        else:
            logger.info("Joining in-flight price refresh")

        return dict(await asyncio.shield(task))

    async def _refresh_and_cache(self, holdings: list[Holding]) -> PriceMap:
        prices = await self._aggregator.refresh(holdings)
        # An empty cycle (every provider down) must not replace a good snapshot.
        if prices:
            self._cache.store(prices)
        return prices

    @staticmethod
    def reconcile(holdings: list[Holding], prices: PriceMap) -> list[Holding]:
        return reconcile(holdings, prices)

    async def _load(self, identity: str) -> list[Holding]:
        holdings = await run_in_threadpool(self._store.load, identity)
        return holdings or []

    async def _save(self, identity: str, holdings: list[Holding]) -> None:
        await run_in_threadpool(self._store.save, identity, holdings)

    async def load_session(self, identity: str) -> list[Holding]:
        """Stored holdings, with missing current prices warmed from a fresh cache."""

        identity = normalize_identity(identity)
        holdings = await self._load(identity)
        if not holdings:
            return holdings
        cached = self._cache.load()
        if cached:
            holdings = warm_from_cache(holdings, cached)
        return holdings

    async def refresh(self, identity: str) -> RefreshResult:
        identity = normalize_identity(identity)
        prices = await self.refresh_all(await self._load(identity))

        warnings: list[str] = []
        async with self._lock(identity):
            # Prices land on the latest stored state, not the one the lookups started from.
            holdings = await self._load(identity)
            updated = self.reconcile(holdings, prices)
            if holdings and not prices:
                warnings.append("No prices could be fetched; showing last known values.")
            try:
                await self._save(identity, updated)
            except StoreUnavailableError as exc:
                logger.warning("Refreshed prices for %s not saved: %s", identity, exc)
                warnings.append(f"Prices were refreshed but could not be saved: {exc}")

        return RefreshResult(
            identity=identity,
            as_of=self._clock(),
            prices=prices,
            holdings=updated,
            warnings=warnings,
        )

    def compute_valuation(
        self,
        identity: str,
        holdings: list[Holding],
        *,
        as_of: datetime | None = None,
    ) -> PortfolioValuation:
        total_value = sum((h.market_value for h in holdings), start=Decimal("0"))
        total_cost = sum((h.cost for h in holdings), start=Decimal("0"))
        pnl = total_value - total_cost

        by_category: list[CategoryValuation] = []
        for cat in Category:
            items = [h for h in holdings if h.category is cat]
            if not items:
                continue
            value = sum((h.market_value for h in items), start=Decimal("0"))
            cost = sum((h.cost for h in items), start=Decimal("0"))
            by_category.append(
                CategoryValuation(
                    category=cat.value,
                    count=len(items),
                    value=str(value),
                    cost=str(cost),
                    pnl=str(value - cost),
                    pnl_pct=str(_pct(value - cost, cost)),
                    allocation_pct=str(_pct(value, total_value)),
                )
            )

        lines = [holding_line(h) for h in sorted(holdings, key=lambda h: h.market_value, reverse=True)]

        return PortfolioValuation(
            identity=identity,
            as_of=as_of or self._clock(),
            currency=settings.get_quote_currency(),
            total_value=str(total_value),
            total_cost=str(total_cost),
            pnl=str(pnl),
            pnl_pct=str(_pct(pnl, total_cost)),
            by_category=by_category,
            holdings=lines,
            unpriced=sorted({h.ticker for h in holdings if h.current_price is None}),
        )

    async def value(self, identity: str) -> PortfolioValuation:
        identity = normalize_identity(identity)
        holdings = await self.load_session(identity)
        return self.compute_valuation(identity, holdings)

    async def list_holdings(self, identity: str) -> list[Holding]:
        return await self.load_session(identity)

    async def add_holding(
        self,
        identity: str,
        *,
        name: str,
        category: str,
        quantity: str,
        ticker: str | None = None,
        unit: str | None = None,
        buy_price: str | None = None,
        current_price: str | None = None,
    ) -> Holding:
        identity = normalize_identity(identity)
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")

        cat = Category.parse(category)
        qty = parse_decimal(quantity)
        if qty is None or qty < 0:
            raise ValueError("quantity must be a non-negative number")

        buy = parse_decimal(buy_price) if buy_price not in (None, "") else Decimal("0")
        if buy is None or buy < 0:
            raise ValueError("buy_price must be a non-negative number")

        current: Decimal | None = None
        if current_price not in (None, ""):
            current = parse_decimal(current_price)
            if current is None or current <= 0:
                raise ValueError("current_price must be a positive number")

        holding = Holding(
            id=new_holding_id(),
            name=name,
            ticker=(ticker or "").strip() or ticker_from_name(name),
            category=cat,
            quantity=qty,
            unit=(unit or "").strip() or "pcs",
            buy_price=buy,
            current_price=current,
        )

        async with self._lock(identity):
            holdings = await self._load(identity)
            await self._save(identity, [*holdings, holding])
        return holding

    async def update_holding(
        self,
        identity: str,
        holding_id: str,
        *,
        quantity: str | None = None,
        buy_price: str | None = None,
        current_price: str | None = None,
    ) -> Holding:
        identity = normalize_identity(identity)
        changes: dict[str, Decimal] = {}
        if quantity is not None:
            qty = parse_decimal(quantity)
            if qty is None or qty < 0:
                raise ValueError("quantity must be a non-negative number")
            changes["quantity"] = qty
        if buy_price is not None:
            buy = parse_decimal(buy_price)
            if buy is None or buy < 0:
                raise ValueError("buy_price must be a non-negative number")
            changes["buy_price"] = buy
        if current_price is not None:
            price = parse_decimal(current_price)
            if price is None or price <= 0:
                raise ValueError("current_price must be a positive number")
            changes["current_price"] = price

        async with self._lock(identity):
            holdings = await self._load(identity)
            current = next((h for h in holdings if h.id == holding_id), None)
            if current is None:
                raise KeyError(holding_id)
            updated = replace(current, **changes)
            await self._save(identity, [updated if h.id == holding_id else h for h in holdings])
        return updated

    async def remove_holding(self, identity: str, holding_id: str) -> bool:
        identity = normalize_identity(identity)
        async with self._lock(identity):
            holdings = await self._load(identity)
            remaining = [h for h in holdings if h.id != holding_id]
            if len(remaining) == len(holdings):
                return False
            await self._save(identity, remaining)
        return True

    async def setup(self, identity: str, *, use_samples: bool = False) -> list[Holding]:
        identity = normalize_identity(identity)
        holdings = sample_holdings() if use_samples else []
        async with self._lock(identity):
            await self._save(identity, holdings)
        return holdings
