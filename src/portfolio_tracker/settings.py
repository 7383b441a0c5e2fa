from __future__ import annotations

import os
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = PROJECT_ROOT / ".env"

# Load .env once, at import time, so all modules share the same behavior.
load_dotenv(dotenv_path=ENV_PATH)


# Grams per troy ounce; metal quotes are per ounce, holdings are per gram.
TROY_OUNCE_GRAMS = Decimal("31.1035")

# Flat USD -> EUR approximation for USD-denominated equity quotes. This is not a
# live FX rate and drifts with the market.
USD_TO_QUOTE_FACTOR = Decimal("0.92")

# Secondary metals derived from the gold price when they have no direct quote.
GOLD_SILVER_RATIO = Decimal("87")
GOLD_PLATINUM_FACTOR = Decimal("0.35")

PRICE_CACHE_TTL = timedelta(minutes=5)

DEFAULT_IDENTITY = "default"


def _env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def get_quote_currency() -> str:
    """Currency every price is expressed in. Defaults to EUR."""

    return (_env("PORTFOLIO_QUOTE_CURRENCY") or "EUR").upper()


def get_data_dir() -> Path:
    raw = _env("PORTFOLIO_DATA_DIR")
    if raw:
        return Path(raw).expanduser()
    return PROJECT_ROOT / ".portfolio"


def get_holdings_path() -> Path:
    """JSON document holding every identity's holdings."""

    raw = _env("PORTFOLIO_HOLDINGS_PATH")
    if raw:
        return Path(raw).expanduser()
    return get_data_dir() / "holdings.json"


def get_price_cache_path() -> Path:
    raw = _env("PORTFOLIO_PRICE_CACHE_PATH")
    if raw:
        return Path(raw).expanduser()
    return get_data_dir() / "price_cache.json"


def get_jsonbin_index_path() -> Path:
    """Local index of identity -> remote bin id."""

    raw = _env("PORTFOLIO_JSONBIN_INDEX_PATH")
    if raw:
        return Path(raw).expanduser()
    return get_data_dir() / "jsonbin_index.json"


def get_jsonbin_master_key() -> str | None:
    """Enables the remote mirror when set."""

    return _env("JSONBIN_MASTER_KEY")


def get_jsonbin_base_url() -> str:
    return (_env("JSONBIN_BASE_URL") or "https://api.jsonbin.io/v3").rstrip("/")


def get_http_timeout_seconds() -> float:
    """Timeout for a single provider network call."""

    return _env_float("PORTFOLIO_HTTP_TIMEOUT_SECONDS", 5.0)


def get_provider_timeout_seconds() -> float:
    """Upper bound for one whole adapter within a refresh cycle."""

    return _env_float("PORTFOLIO_PROVIDER_TIMEOUT_SECONDS", 8.0)


def get_language_model_timeout_seconds() -> float:
    # Batch lookups with web search take noticeably longer than a quote call.
    return _env_float("PORTFOLIO_LANGUAGE_MODEL_TIMEOUT_SECONDS", 30.0)


def get_finnhub_api_key() -> str | None:
    return _env("FINNHUB_API_KEY")


def get_finnhub_base_url() -> str:
    return (_env("FINNHUB_BASE_URL") or "https://finnhub.io/api/v1").rstrip("/")


def get_goldapi_key() -> str | None:
    return _env("GOLDAPI_KEY")


def get_goldapi_base_url() -> str:
    return (_env("GOLDAPI_BASE_URL") or "https://www.goldapi.io/api").rstrip("/")


def get_rapidapi_key() -> str | None:
    return _env("RAPIDAPI_KEY")


def get_cardmarket_host() -> str:
    return _env("CARDMARKET_HOST") or "pokemon-tcg-api.p.rapidapi.com"


def get_openai_api_key() -> str | None:
    return _env("OPENAI_API_KEY")


def get_openai_model() -> str:
    return _env("OPENAI_MODEL") or "gpt-4o-mini"


def get_coinbase_api_key() -> str | None:
    return _env("COINBASE_API_KEY")


def get_coinbase_api_secret() -> str | None:
    api_secret = os.getenv("COINBASE_API_SECRET")  # keep exact formatting
    if not api_secret:
        return None
    # Turn the literal backslash-n sequences into real newlines for PEM parsing.
    return api_secret.replace("\\n", "\n")


def get_log_level() -> str:
    return (_env("PORTFOLIO_LOG_LEVEL") or "INFO").upper()


def get_host() -> str:
    return _env("PORTFOLIO_HOST") or "127.0.0.1"


def get_port() -> int:
    raw = _env("PORTFOLIO_PORT") or "8000"
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 8000


def get_reload() -> bool:
    raw = _env("PORTFOLIO_RELOAD") or "false"
    return raw.strip().lower() in {"1", "true", "yes"}
