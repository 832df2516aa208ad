"""Multi-tier memoization for fetched and derived geography data."""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import logging
import time
import weakref
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Hashable, Iterator, TypeVar

from .config import CacheConfig

_LOGGER = logging.getLogger("mapframe.cache")

V = TypeVar("V")
_MISSING = object()


class LRUCache(Generic[V]):
    """Bounded mapping that evicts the least recently accessed entry."""

    def __init__(self, max_size: int, *, name: str = "lru") -> None:
        if max_size < 1:
            raise ValueError("LRUCache max_size must be >= 1")
        self.max_size = max_size
        self.name = name
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._data: OrderedDict[Hashable, V] = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> V | Any:
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            self.misses += 1
            return default
        self._data.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: Hashable, value: V) -> None:
        if key in self._data:
            self._data[key] = value
            self._data.move_to_end(key)
            return
        self._data[key] = value
        while len(self._data) > self.max_size:
            evicted, _ = self._data.popitem(last=False)
            self.evictions += 1
            _LOGGER.debug("[%s] evicted %s", self.name, evicted)

    def pop(self, key: Hashable, default: Any = None) -> V | Any:
        return self._data.pop(key, default)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[Hashable]:
        """Keys from least to most recently used."""
        return list(self._data.keys())

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total) * 100.0 if total else 0.0

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._data.keys()))


@dataclass(slots=True)
class _ScopedEntry:
    target: Callable[[], Any]
    created_at: float
    values: dict[str, Any] = field(default_factory=dict)


class ObjectScopedCache:
    """Cache entries bound to the identity of one live source object.

    Objects that support weak references are tracked weakly and their entries
    vanish when they are collected. Plain dicts and lists are not
    weak-referenceable, so those are held by a strong guard reference and the
    entry is bounded by a TTL and an LRU size limit instead.
    """

    def __init__(
        self,
        *,
        ttl_s: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[int, _ScopedEntry] = OrderedDict()

    def get(self, obj: Any, slot: str) -> Any | None:
        entry = self._live_entry(obj)
        if entry is None:
            return None
        self._entries.move_to_end(id(obj))
        return entry.values.get(slot)

    def set(self, obj: Any, slot: str, value: Any) -> None:
        entry = self._live_entry(obj)
        if entry is None:
            entry = _ScopedEntry(target=self._reference(obj), created_at=self._clock())
            self._entries[id(obj)] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        else:
            self._entries.move_to_end(id(obj))
        entry.values[slot] = value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _live_entry(self, obj: Any) -> _ScopedEntry | None:
        key = id(obj)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.target() is not obj or self._clock() - entry.created_at >= self.ttl_s:
            del self._entries[key]
            return None
        return entry

    def _reference(self, obj: Any) -> Callable[[], Any]:
        key = id(obj)
        try:
            return weakref.ref(obj, lambda _ref: self._entries.pop(key, None))
        except TypeError:
            return lambda: obj


def fingerprint(data: Any) -> str:
    """Content key for a geography source; URLs key by themselves."""
    if isinstance(data, str):
        return f"url:{data}"
    # Key order is significant: the first topology object is the one extracted.
    encoded = json.dumps(data, sort_keys=False, separators=(",", ":"), default=str)
    return "sha256:" + hashlib.sha256(encoded.encode("utf-8")).hexdigest()


_FUNCTION_TOKENS: weakref.WeakKeyDictionary[Any, int] = weakref.WeakKeyDictionary()
# Callables without weak reference support are held for the process lifetime,
# so their id() can never be handed to another object.
_PINNED_FUNCTIONS: dict[int, tuple[Any, int]] = {}
_TOKEN_COUNTER = itertools.count(1)


def _function_token(fn: Any) -> int:
    try:
        token = _FUNCTION_TOKENS.get(fn)
        if token is None:
            token = next(_TOKEN_COUNTER)
            _FUNCTION_TOKENS[fn] = token
        return token
    except TypeError:
        pinned = _PINNED_FUNCTIONS.get(id(fn))
        if pinned is None or pinned[0] is not fn:
            pinned = (fn, next(_TOKEN_COUNTER))
            _PINNED_FUNCTIONS[id(fn)] = pinned
        return pinned[1]


def function_identity(fn: Callable[..., Any] | None) -> str:
    """Token for a filter or path function, unique for the life of the process.

    Tokens come from a counter, never from `id()`, so a new closure created
    after an old one is collected does not inherit the old one's cache entries.
    """
    if fn is None:
        return "default"
    explicit = getattr(fn, "cache_identity", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    module = getattr(fn, "__module__", None) or type(fn).__module__
    qualname = getattr(fn, "__qualname__", None) or type(fn).__qualname__
    return f"{module}.{qualname}#{_function_token(fn)}"


class CacheManager:
    """Request, derived-result, and object-scoped caches for one pipeline."""

    def __init__(
        self,
        cfg: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cfg = cfg or CacheConfig()
        self._requests: dict[str, asyncio.Future[Any]] = {}
        self.features: LRUCache[Any] = LRUCache(self.cfg.features_size, name="features")
        self.prepared: LRUCache[Any] = LRUCache(self.cfg.prepared_size, name="prepared")
        self.mesh: LRUCache[Any] = LRUCache(self.cfg.mesh_size, name="mesh")
        self.objects = ObjectScopedCache(
            ttl_s=self.cfg.object_ttl_s,
            max_entries=self.cfg.object_max_entries,
            clock=clock,
        )

    def request(self, url: str) -> asyncio.Future[Any] | None:
        return self._requests.get(url)

    def single_flight(
        self,
        url: str,
        factory: Callable[[], Awaitable[Any]],
    ) -> asyncio.Future[Any]:
        """Return the shared task for `url`, starting it if none is cached.

        Completed outcomes, failures included, stay cached until
        `invalidate_request` is called.
        """
        existing = self._requests.get(url)
        if existing is not None and not existing.cancelled():
            return existing
        task = asyncio.ensure_future(factory())
        task.add_done_callback(lambda done: self._observe(url, done))
        self._requests[url] = task
        _LOGGER.debug("Started request for %s", url)
        return task

    def invalidate_request(self, url: str) -> bool:
        return self._requests.pop(url, None) is not None

    def clear(self) -> None:
        self._requests.clear()
        self.features.clear()
        self.prepared.clear()
        self.mesh.clear()
        self.objects.clear()

    def stats(self) -> dict[str, int]:
        return {
            "requests": len(self._requests),
            "features": len(self.features),
            "prepared": len(self.prepared),
            "mesh": len(self.mesh),
            "objects": len(self.objects),
        }

    def metrics(self) -> dict[str, dict[str, float]]:
        return {
            cache.name: {
                "hits": cache.hits,
                "misses": cache.misses,
                "hit_rate": cache.hit_rate,
            }
            for cache in (self.features, self.prepared, self.mesh)
        }

    @staticmethod
    def _observe(url: str, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.debug("Request for %s failed and stays cached until retry: %s", url, exc)
