from decimal import Decimal

from portfolio_tracker.holdings import Category, Holding, Quote
from portfolio_tracker.reconciler import reconcile, warm_from_cache


def _h(hid: str, ticker: str, current: str | None = None) -> Holding:
    return Holding(
        id=hid,
        name=ticker.title(),
        ticker=ticker,
        category=Category.CRYPTO,
        quantity=Decimal("2"),
        unit="coin",
        buy_price=Decimal("100"),
        current_price=None if current is None else Decimal(current),
    )


def test_reconcile_sets_current_price_to_quoted_price():
    holdings = [_h("a", "bitcoin", "30000.10")]

    out = reconcile(holdings, {"bitcoin": Quote(price=Decimal("40123.456789"))})

    assert out[0].current_price == Decimal("40123.456789")
    # Input is left untouched.
    assert holdings[0].current_price == Decimal("30000.10")


def test_reconcile_keeps_known_price_when_ticker_missing_or_invalid():
    holdings = [_h("a", "bitcoin", "30000"), _h("b", "ethereum", "2000"), _h("c", "solana")]
    prices = {"ethereum": Quote(price=Decimal("0")), "cardano": Quote(price=Decimal("1"))}

    out = reconcile(holdings, prices)

    assert [h.current_price for h in out] == [Decimal("30000"), Decimal("2000"), None]


def test_reconcile_is_total_and_preserves_ids_for_any_price_map():
    holdings = [_h(str(i), f"coin{i}") for i in range(5)]

    for prices in ({}, {"coin1": Quote(price=Decimal("5"))}, {f"coin{i}": Quote(price=Decimal(i + 1)) for i in range(5)}):
        out = reconcile(holdings, prices)
        assert len(out) == len(holdings)
        assert [h.id for h in out] == [h.id for h in holdings]


def test_reconcile_applies_one_quote_to_every_holding_with_that_ticker():
    holdings = [_h("a", "bitcoin"), _h("b", "bitcoin", "1")]

    out = reconcile(holdings, {"bitcoin": Quote(price=Decimal("42000"))})

    assert {h.current_price for h in out} == {Decimal("42000")}


def test_warm_from_cache_only_fills_missing_prices():
    holdings = [_h("a", "bitcoin", "30000"), _h("b", "ethereum")]
    cached = {"bitcoin": Quote(price=Decimal("1")), "ethereum": Quote(price=Decimal("2500"))}

    out = warm_from_cache(holdings, cached)

    assert out[0].current_price == Decimal("30000")
    assert out[1].current_price == Decimal("2500")


def test_valuation_falls_back_to_buy_price():
    h = _h("a", "bitcoin")
    assert h.market_value == Decimal("200")
    assert reconcile([h], {"bitcoin": Quote(price=Decimal("150"))})[0].market_value == Decimal("300")
