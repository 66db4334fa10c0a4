"""Process-wide keyed cache of query results.

Keys are tuples whose first element is an entity namespace, e.g.
``("transactions",)``, ``("transactions", "<id>")`` or
``("transactions", "<from>", "<to>")``. ``read``/``write``/``remove`` address a
single key; ``invalidate`` and ``cancel_in_flight`` apply to every key that
starts with the given prefix, so invalidating ``("transactions",)`` also marks
every date-range query stale.

Mutations run inside :meth:`QueryCache.mutating`. A read that has to go to
the backend while a mutation on its namespace is open waits for it to settle
and then fetches, so it never observes a half-applied write.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

QueryKey = tuple
Updater = Callable[[Any], Any]


def matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix


@dataclass
class CacheEntry:
    data: Any = None
    has_data: bool = False
    is_stale: bool = False
    updated_at: float = 0.0
    last_used_at: float = field(default_factory=time.monotonic)
    fetch_task: Optional[asyncio.Task] = None


class QueryCache:
    def __init__(self, gc_time_secs: float = 300.0) -> None:
        self.gc_time_secs = gc_time_secs
        self._entries: dict[QueryKey, CacheEntry] = {}
        # Open mutations: namespace prefix and the event set when it settles.
        self._mutations: list[tuple[QueryKey, asyncio.Event]] = []

    def __contains__(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.has_data

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is None or not entry.has_data or entry.is_stale

    def read(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return None
        entry.last_used_at = time.monotonic()
        return entry.data

    def write(self, key: QueryKey, value: Union[Updater, Any]) -> Any:
        """Store ``value`` under ``key``.

        A callable is treated as an updater and receives the current data
        (``None`` when nothing is cached). The entry's stale flag is left as
        is, so an optimistic write does not hide a pending invalidation.
        """
        entry = self._entries.setdefault(key, CacheEntry())
        data = value(entry.data if entry.has_data else None) if callable(value) else value
        entry.data = data
        entry.has_data = True
        entry.updated_at = entry.last_used_at = time.monotonic()
        return data

    def remove(self, key: QueryKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None and entry.fetch_task is not None:
            entry.fetch_task.cancel()

    def invalidate(self, prefix: QueryKey) -> int:
        count = 0
        for key, entry in self._entries.items():
            if matches(key, prefix):
                entry.is_stale = True
                count += 1
        logger.debug(f"cache_invalidate: prefix={prefix} entries={count}")
        return count

    async def cancel_in_flight(self, prefix: QueryKey) -> int:
        tasks = [
            entry.fetch_task
            for key, entry in self._entries.items()
            if matches(key, prefix)
            and entry.fetch_task is not None
            and not entry.fetch_task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"cache_cancel: prefix={prefix} tasks={len(tasks)}")
        return len(tasks)

    @asynccontextmanager
    async def mutating(self, prefix: QueryKey) -> AsyncIterator[None]:
        """Scope of one mutation on ``prefix``.

        On entry in-flight reads under ``prefix`` are cancelled; on exit,
        whatever the outcome, the prefix is invalidated and reads that were
        waiting for the mutation go on to fetch.
        """
        mutation = (prefix, asyncio.Event())
        self._mutations.append(mutation)
        try:
            await self.cancel_in_flight(prefix)
            yield
        finally:
            self._mutations.remove(mutation)
            self.invalidate(prefix)
            mutation[1].set()

    def _open_mutation(self, key: QueryKey) -> Optional[asyncio.Event]:
        for prefix, settled in self._mutations:
            if matches(key, prefix):
                return settled
        return None

    async def fetch(self, key: QueryKey, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        """Return cached data for ``key``, calling ``fetcher`` when missing or stale.

        Concurrent callers share one in-flight fetch. Fresh cached data,
        optimistic writes included, is returned right away; anything else
        waits out open mutations on the key first. A fetch cancelled by a
        mutation is retried once that mutation has settled.
        """
        while True:
            entry = self._entries.setdefault(key, CacheEntry())
            entry.last_used_at = time.monotonic()
            if entry.has_data and not entry.is_stale:
                return entry.data

            settled = self._open_mutation(key)
            if settled is not None:
                await settled.wait()
                continue

            task = entry.fetch_task
            if task is None or task.done():
                task = asyncio.ensure_future(self._run_fetch(key, entry, fetcher))
                entry.fetch_task = task

            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
                logger.debug(f"cache_fetch_retry: key={key}")

    async def _run_fetch(
        self,
        key: QueryKey,
        entry: CacheEntry,
        fetcher: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            data = await fetcher()
        finally:
            entry.fetch_task = None
        if self._entries.get(key) is entry:
            entry.data = data
            entry.has_data = True
            entry.is_stale = False
            entry.updated_at = time.monotonic()
        return data

    def collect_garbage(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        expired = [
            key
            for key, entry in self._entries.items()
            if (entry.fetch_task is None or entry.fetch_task.done())
            and now - entry.last_used_at >= self.gc_time_secs
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"cache_gc: evicted={len(expired)}")
        return len(expired)

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.fetch_task is not None:
                entry.fetch_task.cancel()
        self._entries.clear()
