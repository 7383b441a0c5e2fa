from typing import Any, Dict, Optional, Tuple
from coinbase.rest import RESTClient

from . import settings


# Index ids (as users type them) -> Coinbase base currency.
ASSET_SYMBOLS: Dict[str, str] = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "solana": "SOL",
    "cardano": "ADA",
    "ripple": "XRP",
    "dogecoin": "DOGE",
    "polkadot": "DOT",
    "chainlink": "LINK",
    "litecoin": "LTC",
    "avalanche-2": "AVAX",
    # Staked ETH is valued like ETH in Coinbase UI.
    "eth2": "ETH",
}


class CoinbaseClient:
    def __init__(self, *, timeout: Optional[float] = None) -> None:
        # Product data is public; keys are only passed through when configured.
        self._client = RESTClient(
            api_key=settings.get_coinbase_api_key(),
            api_secret=settings.get_coinbase_api_secret(),
            timeout=timeout if timeout is not None else settings.get_http_timeout_seconds(),
        )

    @staticmethod
    def _normalize_product_id(symbol_or_product_id: str, quote_currency: str = "EUR") -> str:
        s = (symbol_or_product_id or "").strip().upper()
        q = (quote_currency or "EUR").strip().upper()
        if "-" in s:
            return s
        return f"{s}-{q}"

    @staticmethod
    def _price_symbol_for_asset(asset: str) -> str:
        """Return the Coinbase symbol to price an asset with.

        Unknown assets are used verbatim (upper-cased), so tickers already given
        as symbols ("BTC") work as well as index ids ("bitcoin").
        """

        a = (asset or "").strip()
        return ASSET_SYMBOLS.get(a.lower(), a.upper())

    @staticmethod
    def _to_dict(resp: Any) -> Dict[str, Any]:
        if resp is None:
            return {}
        if isinstance(resp, dict):
            return resp
        if hasattr(resp, "to_dict"):
            try:
                return resp.to_dict()  # type: ignore[no-any-return]
            except Exception:
                pass
        # Best-effort fallback.
        try:
            return dict(resp)
        except Exception:
            return {"repr": repr(resp)}

    def product_id_for_asset(self, asset: str, quote_currency: str = "EUR") -> str:
        return self._normalize_product_id(self._price_symbol_for_asset(asset), quote_currency=quote_currency)

    def get_product_quote(
        self,
        *,
        asset: str,
        quote_currency: str = "EUR",
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (price, 24h change percentage) for an asset as raw strings.

        Backed by the public GET /api/v3/brokerage/market/products/{product_id}.
        Raises whatever the SDK raises; callers decide how to isolate failures.
        """
        product_id = self.product_id_for_asset(asset, quote_currency=quote_currency)
        product = self._to_dict(self._client.get_public_product(product_id=product_id))
        return product.get("price"), product.get("price_percentage_change_24h")
