import asyncio
from decimal import Decimal

import pytest

from portfolio_tracker.holdings import Category, Holding


def _h(hid: str, ticker: str, category: Category = Category.CRYPTO) -> Holding:
    return Holding(
        id=hid,
        name=ticker,
        ticker=ticker,
        category=category,
        quantity=Decimal("1"),
        unit="unit",
        buy_price=Decimal("1"),
    )


def _patch_rest(monkeypatch: pytest.MonkeyPatch, products: dict):
    from portfolio_tracker import coinbase_client

    class DummyREST:
        def __init__(self, api_key=None, api_secret=None, timeout=None, **kwargs):
            self.requested: list[str] = []

        def get_public_product(self, *, product_id: str, **kwargs):
            self.requested.append(product_id)
            result = products.get(product_id)
            if isinstance(result, Exception):
                raise result
            if result is None:
                raise RuntimeError(f"404 product {product_id} not found")
            return result

    monkeypatch.setattr(coinbase_client, "RESTClient", DummyREST)
    return coinbase_client


def test_coinbase_product_quote_maps_index_ids_to_products(monkeypatch: pytest.MonkeyPatch):
    coinbase_client = _patch_rest(
        monkeypatch,
        {"BTC-EUR": {"price": "51234.5", "price_percentage_change_24h": "-1.25"}},
    )

    client = coinbase_client.CoinbaseClient()
    price, change = client.get_product_quote(asset="bitcoin", quote_currency="EUR")

    assert price == "51234.5"
    assert change == "-1.25"
    assert client._client.requested == ["BTC-EUR"]


def test_coinbase_unknown_assets_are_used_verbatim_and_eth2_maps_to_eth(monkeypatch: pytest.MonkeyPatch):
    coinbase_client = _patch_rest(monkeypatch, {})
    client = coinbase_client.CoinbaseClient()

    assert client.product_id_for_asset("pepe", quote_currency="eur") == "PEPE-EUR"
    assert client.product_id_for_asset("ETH2", quote_currency="USD") == "ETH-USD"
    assert client.product_id_for_asset("BTC-USDC") == "BTC-USDC"


def test_coinbase_provider_skips_failed_and_non_positive_lookups(monkeypatch: pytest.MonkeyPatch):
    coinbase_client = _patch_rest(
        monkeypatch,
        {
            "BTC-EUR": {"price": "40000", "price_percentage_change_24h": "2.5"},
            "ETH-EUR": RuntimeError("connection reset"),
            "SOL-EUR": {"price": "0"},
        },
    )
    from portfolio_tracker.providers.crypto_provider import CoinbaseQuoteProvider

    provider = CoinbaseQuoteProvider(client=coinbase_client.CoinbaseClient(), quote_currency="EUR")
    holdings = [
        _h("a", "bitcoin"),
        _h("b", "ethereum"),
        _h("c", "solana"),
        _h("d", "AAPL", Category.EQUITY),
    ]

    prices = asyncio.run(provider.fetch(holdings))

    assert set(prices) == {"bitcoin"}
    assert prices["bitcoin"].price == Decimal("40000")
    assert prices["bitcoin"].change_24h == Decimal("2.5")
    assert "AAPL-EUR" not in provider._client._client.requested


def test_coinbase_provider_fetches_shared_products_once(monkeypatch: pytest.MonkeyPatch):
    coinbase_client = _patch_rest(monkeypatch, {"ETH-EUR": {"price": "2500"}})
    from portfolio_tracker.providers.crypto_provider import CoinbaseQuoteProvider

    provider = CoinbaseQuoteProvider(client=coinbase_client.CoinbaseClient(), quote_currency="EUR")
    prices = asyncio.run(provider.fetch([_h("a", "ethereum"), _h("b", "ETH2")]))

    assert prices["ethereum"].price == Decimal("2500")
    assert prices["ETH2"].price == Decimal("2500")
    assert prices["ETH2"].change_24h == Decimal("0")
    assert provider._client._client.requested == ["ETH-EUR"]


def test_coinbase_provider_without_crypto_holdings_makes_no_calls(monkeypatch: pytest.MonkeyPatch):
    coinbase_client = _patch_rest(monkeypatch, {})
    from portfolio_tracker.providers.crypto_provider import CoinbaseQuoteProvider

    provider = CoinbaseQuoteProvider(client=coinbase_client.CoinbaseClient())

    assert asyncio.run(provider.fetch([_h("x", "XAU", Category.METAL)])) == {}
    assert provider._client._client.requested == []
