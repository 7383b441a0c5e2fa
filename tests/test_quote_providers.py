import asyncio
from decimal import Decimal

import httpx

from portfolio_tracker import settings
from portfolio_tracker.aggregator import PriceAggregator
from portfolio_tracker.holdings import Category, Holding
from portfolio_tracker.providers.collectibles_provider import CardMarketQuoteProvider
from portfolio_tracker.providers.equities_provider import FinnhubQuoteProvider
from portfolio_tracker.providers.language_model_provider import LanguageModelQuoteProvider
from portfolio_tracker.providers.metals_provider import GoldApiQuoteProvider


def _h(hid: str, ticker: str, category: Category, name: str | None = None) -> Holding:
    return Holding(
        id=hid,
        name=name or ticker,
        ticker=ticker,
        category=category,
        quantity=Decimal("1"),
        unit="unit",
        buy_price=Decimal("1"),
    )


class Recorder:
    """MockTransport handler that records requests and answers from a routing function."""

    def __init__(self, route):
        self.requests: list[httpx.Request] = []
        self._route = route

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._route(request)


def test_metals_quotes_per_gram_and_derives_missing_silver_from_gold():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/XAU/EUR"):
            return httpx.Response(200, json={"price": 2750.0, "price_gram_24k": 88.4, "chp": 0.3})
        return httpx.Response(500, json={"error": "quota"})

    recorder = Recorder(route)
    provider = GoldApiQuoteProvider(api_key="k", quote_currency="EUR", transport=httpx.MockTransport(recorder))
    holdings = [_h("g", "XAU", Category.METAL), _h("s", "silver", Category.METAL)]

    prices = asyncio.run(provider.fetch(holdings))

    assert prices["XAU"].price == Decimal("88.4")
    assert prices["XAU"].change_24h == Decimal("0.3")
    assert prices["silver"].price == Decimal("88.4") / settings.GOLD_SILVER_RATIO
    assert all(r.headers["x-access-token"] == "k" for r in recorder.requests)


def test_metals_converts_troy_ounce_price_and_returns_only_held_metals():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/XAU/EUR"):
            return httpx.Response(200, json={"price": 3110.35})
        if request.url.path.endswith("/XPT/EUR"):
            return httpx.Response(200, json={"price": 933.105, "chp": -0.2})
        return httpx.Response(404)

    provider = GoldApiQuoteProvider(api_key="k", quote_currency="EUR", transport=httpx.MockTransport(Recorder(route)))

    prices = asyncio.run(provider.fetch([_h("p", "XPT", Category.METAL)]))

    assert set(prices) == {"XPT"}
    assert prices["XPT"].price == Decimal("933.105") / Decimal("31.1035")
    assert prices["XPT"].change_24h == Decimal("-0.2")


def test_metals_with_no_gold_quote_yields_nothing_for_derived_metals():
    def route(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    provider = GoldApiQuoteProvider(api_key="k", transport=httpx.MockTransport(Recorder(route)))

    assert asyncio.run(provider.fetch([_h("s", "XAG", Category.METAL)])) == {}


def test_equities_applies_symbol_map_and_flat_currency_factor():
    def route(request: httpx.Request) -> httpx.Response:
        symbol = request.url.params["symbol"]
        if symbol == "AAPL":
            return httpx.Response(200, json={"c": 200, "dp": 1.5})
        if symbol == "ASML.AS":
            return httpx.Response(200, json={"c": 0, "dp": 0})
        return httpx.Response(200, content=b"<html>rate limited</html>")

    recorder = Recorder(route)
    provider = FinnhubQuoteProvider(api_key="tok", quote_currency="EUR", transport=httpx.MockTransport(recorder))
    holdings = [
        _h("a", "AAPL", Category.EQUITY),
        _h("b", "ASML", Category.EQUITY),
        _h("c", "XYZ", Category.EQUITY),
        _h("d", "bitcoin", Category.CRYPTO),
    ]

    prices = asyncio.run(provider.fetch(holdings))

    assert set(prices) == {"AAPL"}
    assert prices["AAPL"].price == Decimal("200") * Decimal("0.92")
    assert prices["AAPL"].change_24h == Decimal("1.5")
    assert sorted(r.url.params["symbol"] for r in recorder.requests) == ["AAPL", "ASML.AS", "XYZ"]
    assert all(r.url.params["token"] == "tok" for r in recorder.requests)


def test_equities_in_usd_are_not_converted(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_QUOTE_CURRENCY", "USD")
    recorder = Recorder(lambda request: httpx.Response(200, json={"c": 100, "dp": -0.4}))
    provider = FinnhubQuoteProvider(api_key="tok", transport=httpx.MockTransport(recorder))

    prices = asyncio.run(provider.fetch([_h("a", "AAPL", Category.EQUITY)]))

    assert prices["AAPL"].price == Decimal("100")
    assert prices["AAPL"].change_24h == Decimal("-0.4")


def test_collectibles_use_average_then_lowest_listing_and_skip_failures():
    def route(request: httpx.Request) -> httpx.Response:
        search = request.url.params["search"]
        if search == "Charizard":
            return httpx.Response(200, json={"data": [{"prices": {"cardmarket": {"30d_average": 1850.5}}}]})
        if search == "Pikachu":
            return httpx.Response(
                200,
                json={"data": [{"prices": {"cardmarket": {"30d_average": None, "lowest_near_mint": 1200}}}]},
            )
        if search == "Mew":
            return httpx.Response(200, json={"data": []})
        raise httpx.ReadTimeout("slow", request=request)

    recorder = Recorder(route)
    provider = CardMarketQuoteProvider(api_key="rk", host="cards.test", transport=httpx.MockTransport(recorder))
    holdings = [
        _h("1", "CZD", Category.COLLECTIBLE, "Charizard"),
        _h("2", "PIK", Category.COLLECTIBLE, "Pikachu"),
        _h("3", "MEW", Category.COLLECTIBLE, "Mew"),
        _h("4", "LUG", Category.COLLECTIBLE, "Lugia"),
    ]

    prices = asyncio.run(provider.fetch(holdings))

    assert prices["CZD"].price == Decimal("1850.5")
    assert prices["PIK"].price == Decimal("1200")
    assert set(prices) == {"CZD", "PIK"}
    assert recorder.requests[0].headers["x-rapidapi-key"] == "rk"
    assert recorder.requests[0].url.host == "cards.test"


def test_empty_holdings_refresh_never_reaches_any_provider_network():
    def route(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    recorders = [Recorder(route) for _ in range(3)]

    class ExplodingModel:
        class responses:
            @staticmethod
            async def create(**kwargs):
                raise AssertionError("language model must not be called")

    providers = [
        GoldApiQuoteProvider(api_key="k", transport=httpx.MockTransport(recorders[0])),
        FinnhubQuoteProvider(api_key="k", transport=httpx.MockTransport(recorders[1])),
        CardMarketQuoteProvider(api_key="k", transport=httpx.MockTransport(recorders[2])),
        LanguageModelQuoteProvider(client=ExplodingModel()),
    ]

    merged = asyncio.run(PriceAggregator(providers=providers).refresh([]))

    assert merged == {}
    assert all(not r.requests for r in recorders)
