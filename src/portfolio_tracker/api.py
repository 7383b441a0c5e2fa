from __future__ import annotations

from fastapi import FastAPI, HTTPException, Response

from .aggregator import PriceAggregator
from .coinbase_client import CoinbaseClient
from .holdings import PriceMap
from .models import (
    HoldingIn,
    HoldingLine,
    HoldingUpdate,
    PortfolioValuation,
    PriceCacheView,
    QuoteOut,
    RefreshResponse,
    SetupRequest,
)
from .portfolio_service import PortfolioService, holding_line
from .price_cache import JsonFileCacheStorage, PriceCache
from .providers.collectibles_provider import CardMarketQuoteProvider
from .providers.crypto_provider import CoinbaseQuoteProvider
from .providers.equities_provider import FinnhubQuoteProvider
from .providers.language_model_provider import LanguageModelQuoteProvider
from .providers.metals_provider import GoldApiQuoteProvider
from .store import StoreUnavailableError, build_store

app = FastAPI(title="Portfolio Tracker API")


def _build_portfolio_service() -> PortfolioService:
    # Merge priority: later providers win collisions.
    providers = [
        CoinbaseQuoteProvider(client=CoinbaseClient()),
        GoldApiQuoteProvider(),
        FinnhubQuoteProvider(),
        CardMarketQuoteProvider(),
        LanguageModelQuoteProvider(),
    ]
    return PortfolioService(
        aggregator=PriceAggregator(providers=providers),
        cache=PriceCache(storage=JsonFileCacheStorage()),
        store=build_store(),
    )


service = _build_portfolio_service()


def _quotes_out(prices: PriceMap) -> dict[str, QuoteOut]:
    return {t: QuoteOut(price=str(q.price), change_24h=str(q.change_24h)) for t, q in sorted(prices.items())}


def _store_error(exc: StoreUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Holdings storage unavailable, change not saved: {exc}")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "providers": service.provider_ids}


@app.get("/portfolios/{identity}/holdings", response_model=list[HoldingLine])
async def list_holdings(identity: str) -> list[HoldingLine]:
    try:
        holdings = await service.list_holdings(identity)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=f"Holdings storage unavailable: {exc}")
    return [holding_line(h) for h in holdings]


@app.post("/portfolios/{identity}/holdings", response_model=HoldingLine, status_code=201)
async def add_holding(identity: str, body: HoldingIn) -> HoldingLine:
    try:
        holding = await service.add_holding(
            identity,
            name=body.name,
            category=body.category,
            quantity=body.quantity,
            ticker=body.ticker,
            unit=body.unit,
            buy_price=body.buy_price,
            current_price=body.current_price,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except StoreUnavailableError as exc:
        raise _store_error(exc)
    return holding_line(holding)


@app.patch("/portfolios/{identity}/holdings/{holding_id}", response_model=HoldingLine)
async def update_holding(identity: str, holding_id: str, body: HoldingUpdate) -> HoldingLine:
    try:
        holding = await service.update_holding(
            identity,
            holding_id,
            quantity=body.quantity,
            buy_price=body.buy_price,
            current_price=body.current_price,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail="holding not found")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except StoreUnavailableError as exc:
        raise _store_error(exc)
    return holding_line(holding)


@app.delete("/portfolios/{identity}/holdings/{holding_id}", status_code=204)
async def remove_holding(identity: str, holding_id: str) -> Response:
    try:
        removed = await service.remove_holding(identity, holding_id)
    except StoreUnavailableError as exc:
        raise _store_error(exc)
    if not removed:
        raise HTTPException(status_code=404, detail="holding not found")
    return Response(status_code=204)


@app.post("/portfolios/{identity}/setup", response_model=list[HoldingLine])
async def setup_portfolio(identity: str, body: SetupRequest) -> list[HoldingLine]:
    try:
        holdings = await service.setup(identity, use_samples=body.use_samples)
    except StoreUnavailableError as exc:
        raise _store_error(exc)
    return [holding_line(h) for h in holdings]


@app.post("/portfolios/{identity}/refresh", response_model=RefreshResponse)
async def refresh_prices(identity: str) -> RefreshResponse:
    try:
        result = await service.refresh(identity)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=f"Holdings storage unavailable: {exc}")

    return RefreshResponse(
        identity=result.identity,
        as_of=result.as_of,
        prices=_quotes_out(result.prices),
        valuation=service.compute_valuation(result.identity, result.holdings, as_of=result.as_of),
        warnings=result.warnings,
    )


@app.get("/portfolios/{identity}/valuation", response_model=PortfolioValuation)
async def get_valuation(identity: str) -> PortfolioValuation:
    try:
        return await service.value(identity)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=f"Holdings storage unavailable: {exc}")


@app.get("/prices/cache", response_model=PriceCacheView)
async def get_price_cache() -> PriceCacheView:
    snap = service.cache.snapshot()
    if snap is None:
        raise HTTPException(status_code=404, detail="no fresh price snapshot")
    return PriceCacheView(captured_at=snap.captured_at, prices=_quotes_out(snap.prices))
