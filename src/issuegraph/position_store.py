"""Per-graph persistence of the raw item cache and saved node positions.

Three interchangeable backends implement :class:`PositionStore`:

* :class:`HTTPPositionStore` talks to the cache server
  (``GET /cache/{id}``, ``PUT/DELETE /cache/{id}/items``,
  ``PUT /cache/{id}/node-positions``, ``POST /cache/flush``);
* :class:`FilePositionStore` keeps one JSON document per graph id;
* :class:`MemoryPositionStore` keeps everything in-process.

Backends raise :class:`PositionStoreError`. Everything else in the package
goes through :class:`PositionCache`, which never lets a store failure escape.
"""
from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeVar, cast
from urllib.parse import quote

import requests

from .errors import PositionStoreError
from .logging import StructuredLogger, get_logger
from .models import Position, positions_from_dict, positions_to_dict
from .schemas import validate_document

HTTP_ERROR_STATUS = 400
DEFAULT_TIMEOUT = 10.0

T = TypeVar("T")


@dataclass
class CacheData:
    """``items is None`` means cache miss; ``[]`` is a cached empty project."""

    items: list[dict[str, Any]] | None = None
    node_positions: dict[str, Position] = field(default_factory=dict)


class PositionStore(Protocol):
    def get(self, graph_id: str) -> CacheData: ...

    def put_items(self, graph_id: str, items: list[dict[str, Any]]) -> None: ...

    def put_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None: ...

    def delete_items(self, graph_id: str) -> None: ...

    def flush(self) -> None: ...


def _cache_from_payload(payload: Mapping[str, Any]) -> CacheData:
    items = payload.get("items")
    return CacheData(
        items=[dict(i) for i in items] if isinstance(items, list) else None,
        node_positions=positions_from_dict(payload.get("nodePositions")),
    )


@dataclass
class HTTPPositionStore:
    """Client for the cache server's ``/cache`` endpoints."""

    base_url: str
    timeout: float = DEFAULT_TIMEOUT
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

    def _url(self, graph_id: str | None, suffix: str = "") -> str:
        base = f"{self.base_url.rstrip('/')}/cache"
        if graph_id is None:
            return f"{base}/{suffix}"
        path = f"{base}/{quote(graph_id, safe='')}"
        return f"{path}/{suffix}" if suffix else path

    def _request(self, method: str, url: str, *, json_body: Any | None = None) -> Any:
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                headers=self._session.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PositionStoreError(f"cache {method} {url} failed: {exc}") from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise PositionStoreError(
                f"cache {method} {url} failed with {response.status_code}",
                status=response.status_code,
            )
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PositionStoreError(f"cache {method} {url} returned invalid JSON") from exc

    def get(self, graph_id: str) -> CacheData:
        payload = self._request("GET", self._url(graph_id))
        if payload is None:
            return CacheData()
        errors = validate_document("cache", payload)
        if errors:
            raise PositionStoreError(f"invalid cache document for {graph_id}: {errors[0]}")
        return _cache_from_payload(cast(dict[str, Any], payload))

    def put_items(self, graph_id: str, items: list[dict[str, Any]]) -> None:
        self._request("PUT", self._url(graph_id, "items"), json_body=list(items))

    def put_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None:
        self._request(
            "PUT",
            self._url(graph_id, "node-positions"),
            json_body=positions_to_dict(positions),
        )

    def delete_items(self, graph_id: str) -> None:
        self._request("DELETE", self._url(graph_id, "items"))

    def flush(self) -> None:
        self._request("POST", self._url(None, "flush"))


class FilePositionStore:
    """One ``{"items": ..., "nodePositions": ...}`` JSON file per graph id."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.logger = get_logger()

    def path_for(self, graph_id: str) -> Path:
        return self.directory / f"{quote(graph_id, safe='')}.json"

    def _load(self, graph_id: str) -> dict[str, Any]:
        path = self.path_for(graph_id)
        if not path.exists():
            return {}
        try:
            raw: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self.logger.debug(
                f"Failed to read cache document {path}: {exc}", graph_id=graph_id
            )
            return {}
        if not isinstance(raw, dict) or validate_document("cache", {"items": None, "nodePositions": None, **raw}):
            self.logger.debug(f"Ignoring malformed cache document {path}", graph_id=graph_id)
            return {}
        return cast(dict[str, Any], raw)

    def _write(self, graph_id: str, document: dict[str, Any]) -> None:
        path = self.path_for(graph_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise PositionStoreError(f"failed to write cache document {path}: {exc}") from exc

    def get(self, graph_id: str) -> CacheData:
        return _cache_from_payload(self._load(graph_id))

    def put_items(self, graph_id: str, items: list[dict[str, Any]]) -> None:
        document = self._load(graph_id)
        document["items"] = list(items)
        self._write(graph_id, document)

    def put_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None:
        document = self._load(graph_id)
        document["nodePositions"] = positions_to_dict(positions)
        self._write(graph_id, document)

    def delete_items(self, graph_id: str) -> None:
        document = self._load(graph_id)
        if document.pop("items", None) is None:
            return
        self._write(graph_id, document)

    def flush(self) -> None:
        # writes land on disk immediately
        return None


class MemoryPositionStore:
    def __init__(self) -> None:
        self._entries: dict[str, CacheData] = {}

    def get(self, graph_id: str) -> CacheData:
        entry = self._entries.get(graph_id)
        if entry is None:
            return CacheData()
        return CacheData(
            items=copy.deepcopy(entry.items),
            node_positions=dict(entry.node_positions),
        )

    def put_items(self, graph_id: str, items: list[dict[str, Any]]) -> None:
        entry = self._entries.setdefault(graph_id, CacheData())
        entry.items = copy.deepcopy(list(items))

    def put_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None:
        entry = self._entries.setdefault(graph_id, CacheData())
        entry.node_positions = dict(positions)

    def delete_items(self, graph_id: str) -> None:
        entry = self._entries.get(graph_id)
        if entry is not None:
            entry.items = None

    def flush(self) -> None:
        return None


_FAILED: Any = object()


class PositionCache:
    """Best-effort async facade over a :class:`PositionStore`.

    Store calls run in the default executor. Any failure is logged at debug
    level and degrades to "no cache"; nothing raised by the store reaches
    the caller. ``store=None`` disables caching entirely.
    """

    def __init__(self, store: PositionStore | None, logger: StructuredLogger | None = None) -> None:
        self.store = store
        self.logger = logger or get_logger()

    async def _call(self, operation: str, graph_id: str | None, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except Exception as exc:
            self.logger.debug(
                f"cache {operation} failed; continuing without cache",
                operation=f"cache_{operation}",
                graph_id=graph_id,
                error=str(exc),
            )
            return cast(T, _FAILED)

    async def _get(self, graph_id: str) -> CacheData | None:
        if self.store is None:
            return None
        data = await self._call("get", graph_id, self.store.get, graph_id)
        return None if data is _FAILED else data

    async def get_cached_items(self, graph_id: str) -> list[dict[str, Any]] | None:
        data = await self._get(graph_id)
        return None if data is None else data.items

    async def set_cached_items(self, graph_id: str, items: list[dict[str, Any]]) -> None:
        if self.store is not None:
            await self._call("put_items", graph_id, self.store.put_items, graph_id, items)

    async def invalidate(self, graph_id: str) -> None:
        if self.store is not None:
            await self._call("delete_items", graph_id, self.store.delete_items, graph_id)

    async def get_node_positions(self, graph_id: str) -> dict[str, Position] | None:
        data = await self._get(graph_id)
        if data is None or not data.node_positions:
            return None
        return dict(data.node_positions)

    async def set_node_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None:
        if self.store is not None:
            await self._call(
                "put_positions", graph_id, self.store.put_positions, graph_id, dict(positions)
            )

    async def merge_node_positions(self, graph_id: str, positions: Mapping[str, Position]) -> None:
        """Read the saved map, overlay ``positions`` and write the whole map back."""
        saved = await self.get_node_positions(graph_id) or {}
        await self.set_node_positions(graph_id, {**saved, **positions})

    async def flush(self) -> None:
        if self.store is not None:
            await self._call("flush", None, self.store.flush)


__all__ = [
    "CacheData",
    "FilePositionStore",
    "HTTPPositionStore",
    "MemoryPositionStore",
    "PositionCache",
    "PositionStore",
]
