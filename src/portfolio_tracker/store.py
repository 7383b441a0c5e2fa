from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Protocol

import httpx

from .holdings import Holding, holding_to_dict, holdings_from_list
from . import settings

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """Raised when holdings cannot be read from or written to durable storage."""


class HoldingsStore(Protocol):
    """Durable holdings per identity."""

    def load(self, identity: str) -> list[Holding] | None:
        ...

    def save(self, identity: str, holdings: list[Holding]) -> None:
        ...


class InMemoryHoldingsStore:
    def __init__(self, initial: dict[str, list[Holding]] | None = None) -> None:
        self._data: dict[str, list[Holding]] = {k: list(v) for k, v in (initial or {}).items()}

    def load(self, identity: str) -> list[Holding] | None:
        holdings = self._data.get(identity)
        return None if holdings is None else list(holdings)

    def save(self, identity: str, holdings: list[Holding]) -> None:
        self._data[identity] = list(holdings)


def _read_json_object(p: Path) -> dict[str, Any]:
    if not p.exists():
        return {}
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise StoreUnavailableError(f"Cannot read {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise StoreUnavailableError(f"Unexpected content in {p}")
    return raw


def _write_json_object(p: Path, data: dict[str, Any]) -> None:
    tmp = p.with_suffix(p.suffix + ".tmp")
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, p)
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot write {p}: {exc}") from exc


class JsonFileHoldingsStore:
    """All identities in one local JSON document.

    Expected format:

    {
      "kevin": {
        "updated_at": 1718000000000,
        "holdings": [{"id": "s1", "ticker": "bitcoin", "quantity": "0.45", ...}]
      }
    }
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or settings.get_holdings_path()

    def load(self, identity: str) -> list[Holding] | None:
        entry = _read_json_object(self.path).get(identity)
        if not isinstance(entry, dict):
            return None
        return holdings_from_list(entry.get("holdings"))

    def save(self, identity: str, holdings: list[Holding]) -> None:
        p = self.path
        # Never fall back to an empty document here: that would drop other identities.
        data = _read_json_object(p)
        data[identity] = {
            "updated_at": int(time.time() * 1000),
            "holdings": [holding_to_dict(h) for h in holdings],
        }
        _write_json_object(p, data)


def load_bin_ids(path: Path | None = None) -> dict[str, str]:
    """Remote bin ids keyed by identity."""

    p = path or settings.get_jsonbin_index_path()
    if not p.exists():
        return {}
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if not isinstance(raw, dict):
        return {}
    return {k: v for k, v in raw.items() if isinstance(k, str) and isinstance(v, str) and v}


def save_bin_id(*, identity: str, bin_id: str, path: Path | None = None) -> None:
    p = path or settings.get_jsonbin_index_path()
    data = load_bin_ids(p)
    data[identity] = bin_id
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


class JsonBinHoldingsStore:
    """Remote document store (JSONBin v3), one bin per identity."""

    def __init__(
        self,
        *,
        master_key: str,
        base_url: str | None = None,
        index_path: Path | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._master_key = master_key
        self._base_url = (base_url or settings.get_jsonbin_base_url()).rstrip("/")
        self._index_path = index_path
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @staticmethod
    def bin_name(identity: str) -> str:
        return f"portfolio_{identity}"

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            headers={"X-Master-Key": self._master_key},
            timeout=self._timeout_seconds or settings.get_http_timeout_seconds(),
            transport=self._transport,
        )

    def _find_bin_id(self, client: httpx.Client, identity: str) -> str | None:
        known = load_bin_ids(self._index_path).get(identity)
        if known:
            return known

        response = client.get("/c/uncategorized/bins")
        response.raise_for_status()
        bins = response.json()
        if not isinstance(bins, list):
            return None
        name = self.bin_name(identity)
        for b in bins:
            if not isinstance(b, dict):
                continue
            meta = b.get("snippetMeta")
            if isinstance(meta, dict) and meta.get("name") == name and isinstance(b.get("id"), str):
                save_bin_id(identity=identity, bin_id=b["id"], path=self._index_path)
                return b["id"]
        return None

    def load(self, identity: str) -> list[Holding] | None:
        try:
            with self._client() as client:
                bin_id = self._find_bin_id(client, identity)
                if not bin_id:
                    return None
                response = client.get(f"/b/{bin_id}/latest")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError, OSError) as exc:
            raise StoreUnavailableError(f"Remote load failed for {identity}: {exc}") from exc

        record = data.get("record") if isinstance(data, dict) else None
        if not isinstance(record, dict) or "holdings" not in record:
            return None
        return holdings_from_list(record.get("holdings"))

    def save(self, identity: str, holdings: list[Holding]) -> None:
        body = {
            "identity": identity,
            "holdings": [holding_to_dict(h) for h in holdings],
            "t": int(time.time() * 1000),
        }
        try:
            with self._client() as client:
                bin_id = load_bin_ids(self._index_path).get(identity)
                if bin_id:
                    client.put(f"/b/{bin_id}", json=body).raise_for_status()
                    return

                response = client.post("/b", json=body, headers={"X-Bin-Name": self.bin_name(identity)})
                response.raise_for_status()
                created = response.json()
        except (httpx.HTTPError, ValueError, OSError) as exc:
            raise StoreUnavailableError(f"Remote save failed for {identity}: {exc}") from exc

        metadata = created.get("metadata") if isinstance(created, dict) else None
        new_id = metadata.get("id") if isinstance(metadata, dict) else None
        if isinstance(new_id, str) and new_id:
            save_bin_id(identity=identity, bin_id=new_id, path=self._index_path)


class MirroredHoldingsStore:
    """Local store first, remote copy best-effort.

    Saves only fail when the local write fails. Loads consult the remote copy
    when nothing exists locally.
    """

    def __init__(self, *, local: HoldingsStore, remote: HoldingsStore) -> None:
        self._local = local
        self._remote = remote

    def load(self, identity: str) -> list[Holding] | None:
        holdings = self._local.load(identity)
        if holdings is not None:
            return holdings
        try:
            return self._remote.load(identity)
        except StoreUnavailableError as exc:
            logger.warning("Remote holdings unavailable: %s", exc)
            return None

    def save(self, identity: str, holdings: list[Holding]) -> None:
        self._local.save(identity, holdings)
        try:
            self._remote.save(identity, holdings)
        except StoreUnavailableError as exc:
            logger.warning("Remote mirror not updated: %s", exc)


def build_store() -> HoldingsStore:
    local = JsonFileHoldingsStore()
    master_key = settings.get_jsonbin_master_key()
    if not master_key:
        return local
    return MirroredHoldingsStore(local=local, remote=JsonBinHoldingsStore(master_key=master_key))
