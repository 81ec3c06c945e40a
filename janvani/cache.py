"""Short-TTL response cache with in-flight request coalescing.

One ``CacheStore`` is owned by the composition root (see ``Coordinator``).
GETs go through :meth:`CacheStore.fetch`; mutations never touch cached
payloads directly and only call :meth:`CacheStore.invalidate` once they
succeed.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from . import config

logger = logging.getLogger(__name__)

_MISSING = object()


def make_signature(path: str, params: Optional[Mapping[str, Any]] = None, body: Any = None) -> str:
    """Cache/dedup key: path, then sorted query, then serialized body."""
    signature = path
    if params:
        query = sorted((k, str(v)) for k, v in params.items() if v is not None)
        if query:
            signature += "?" + urlencode(query)
    if body is not None:
        signature += "#" + json.dumps(body, sort_keys=True, separators=(",", ":"))
    return signature


def signature_path(signature: str) -> str:
    return signature.split("#", 1)[0].split("?", 1)[0]


@dataclass
class CacheEntry:
    payload: Any
    written_at: float


class CacheStore:
    def __init__(self, ttl: float = config.CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, signature: str, default: Any = None) -> Any:
        entry = self._entries.get(signature)
        if entry is None:
            return default
        if self._clock() - entry.written_at > self.ttl:
            del self._entries[signature]
            return default
        return entry.payload

    def put(self, signature: str, payload: Any) -> None:
        self._entries[signature] = CacheEntry(payload, self._clock())

    def is_in_flight(self, signature: str) -> bool:
        return signature in self._in_flight

    async def fetch(self, signature: str, call: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(signature, _MISSING)
        if cached is not _MISSING:
            return cached
        task = self._in_flight.get(signature)
        if task is None:
            task = asyncio.ensure_future(self._run(signature, call))
            task.add_done_callback(_retrieve_exception)
            self._in_flight[signature] = task
        else:
            logger.debug("Joining in-flight request %s", signature)
        return await asyncio.shield(task)

    async def _run(self, signature: str, call: Callable[[], Awaitable[Any]]) -> Any:
        me = asyncio.current_task()
        owned = False
        try:
            payload = await call()
        finally:
            # invalidate()/clear() detach the task; a detached result must not be cached
            owned = self._in_flight.get(signature) is me
            if owned:
                del self._in_flight[signature]
        if owned:
            self.put(signature, payload)
        return payload

    def invalidate(self, *paths: str) -> None:
        """Drop entries (and detach in-flight GETs) whose path is one of *paths*."""
        targets = set(paths)
        for signature in [s for s in self._entries if signature_path(s) in targets]:
            del self._entries[signature]
        for signature in [s for s in self._in_flight if signature_path(s) in targets]:
            del self._in_flight[signature]
        logger.debug("Invalidated %s", ", ".join(sorted(targets)))

    def clear(self) -> None:
        self._entries.clear()
        self._in_flight.clear()


def _retrieve_exception(task: asyncio.Task) -> None:
    # Every awaiter sees the exception; this only keeps asyncio from warning when none is left
    if not task.cancelled():
        task.exception()
