from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from .holdings import PriceMap, price_map_from_dict, quote_to_dict
from . import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PriceCacheSnapshot:
    prices: PriceMap
    captured_at: datetime


class CacheStorage(Protocol):
    """Single-slot storage for the serialized snapshot."""

    def read(self) -> dict[str, Any] | None:
        ...

    def write(self, document: dict[str, Any]) -> None:
        ...


class InMemoryCacheStorage:
    def __init__(self) -> None:
        self._document: dict[str, Any] | None = None

    def read(self) -> dict[str, Any] | None:
        return self._document

    def write(self, document: dict[str, Any]) -> None:
        self._document = document


class JsonFileCacheStorage:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or settings.get_price_cache_path()

    def read(self) -> dict[str, Any] | None:
        p = self.path
        if not p.exists():
            return None
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable price cache %s: %s", p, exc)
            return None
        return raw if isinstance(raw, dict) else None

    def write(self, document: dict[str, Any]) -> None:
        p = self.path
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")


class PriceCache:
    """The last merged price map, valid for a short TTL.

    One process-wide slot shared by every identity: prices do not depend on who
    holds the asset.
    """

    def __init__(
        self,
        *,
        storage: CacheStorage,
        clock: Clock = utc_now,
        ttl: timedelta = settings.PRICE_CACHE_TTL,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._ttl = ttl

    def store(self, prices: PriceMap) -> None:
        document = {
            "captured_at": self._clock().isoformat(),
            "prices": {ticker: quote_to_dict(q) for ticker, q in prices.items()},
        }
        try:
            self._storage.write(document)
        except OSError as exc:
            logger.warning("Could not write price cache: %s", exc)

    def snapshot(self) -> PriceCacheSnapshot | None:
        """The stored snapshot, or None when absent, unreadable or expired."""

        document = self._storage.read()
        if not document:
            return None

        raw_ts = document.get("captured_at")
        try:
            captured_at = datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else None
        except ValueError:
            captured_at = None
        if captured_at is None:
            return None
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)

        if self._clock() - captured_at >= self._ttl:
            return None

        return PriceCacheSnapshot(prices=price_map_from_dict(document.get("prices")), captured_at=captured_at)

    def load(self) -> PriceMap | None:
        snap = self.snapshot()
        return None if snap is None else snap.prices
