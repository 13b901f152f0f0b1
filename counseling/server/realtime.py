"""
Live query subscriptions over the document store.

A subscription is an async iterator of full snapshots for one
(collection, owner) pair. The first snapshot is delivered immediately, and
every committed write to the same pair schedules another one. Pending change
markers are coalesced, so a burst of writes yields a single fresh snapshot.
Loaders run in a worker thread, off the event loop.
Consumers replace their cached slice on every event and must close the
subscription on teardown.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set, Tuple, Union

logger = logging.getLogger(__name__)

_CHANGED = object()
_CLOSED = object()

Loader = Callable[[], List[Dict[str, Any]]]


@dataclass(frozen=True)
class SnapshotError:
    collection: str
    message: str


SnapshotEvent = Union[List[Dict[str, Any]], SnapshotError]


class Subscription:
    def __init__(self, hub: "SubscriptionHub", key: Tuple[str, str], loader: Loader, loop: asyncio.AbstractEventLoop) -> None:
        self._hub = hub
        self._key = key
        self._loader = loader
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._queue.put_nowait(_CHANGED)

    @property
    def collection(self) -> str:
        return self._key[0]

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, marker: object) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(marker)
            return
        if self._loop.is_closed():
            logger.warning("[realtime] dropping notification for closed loop key=%s", self._key)
            self._closed = True
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, marker)

    def notify(self) -> None:
        if not self._closed:
            self._put(_CHANGED)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._remove(self)
        self._put(_CLOSED)

    def _load(self) -> SnapshotEvent:
        try:
            return self._loader()
        except Exception as exc:
            logger.warning("[realtime] snapshot load failed key=%s err=%s", self._key, exc)
            return SnapshotError(collection=self._key[0], message=str(exc))

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SnapshotEvent:
        if self._closed:
            raise StopAsyncIteration
        marker = await self._queue.get()
        if marker is _CLOSED or self._closed:
            raise StopAsyncIteration
        while not self._queue.empty():
            if self._queue.get_nowait() is _CLOSED:
                raise StopAsyncIteration
        return await asyncio.to_thread(self._load)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class SubscriptionHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: Dict[Tuple[str, str], Set[Subscription]] = {}

    def watch(self, collection: str, owner_id: str, loader: Loader) -> Subscription:
        """Must be called from a running event loop; snapshots are delivered on that loop."""
        loop = asyncio.get_running_loop()
        key = (collection, owner_id)
        sub = Subscription(self, key, loader, loop)
        with self._lock:
            self._subs.setdefault(key, set()).add(sub)
        return sub

    def publish(self, collection: str, owner_id: str | None) -> int:
        if not owner_id:
            return 0
        with self._lock:
            subs = list(self._subs.get((collection, owner_id), ()))
        for sub in subs:
            sub.notify()
        return len(subs)

    def subscriber_count(self, collection: str, owner_id: str) -> int:
        with self._lock:
            return len(self._subs.get((collection, owner_id), ()))

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub._key)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subs[sub._key]


HUB = SubscriptionHub()
