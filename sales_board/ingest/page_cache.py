"""In-process page cache with TTL, LRU eviction and single-flight fetches."""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from sales_board import metrics
from sales_board.config import settings
from sales_board.ingest.base import FetchResult, PageRecord, SaleItem

logger = logging.getLogger(__name__)

CacheKey = tuple[str, int]
PageFetcher = Callable[[str, int], Awaitable[FetchResult]]


class PageCache:
    """
    TTL-bounded LRU of search pages keyed by (region, page index).

    Recency is tracked by an OrderedDict: every hit and every set moves the
    key to the end, and eviction pops from the front, so the entry evicted
    under pressure is the least recently touched one rather than the oldest
    inserted.

    Concurrent misses for the same key share one in-flight task. The task is
    dropped from the in-flight map when it settles; failures are never cached.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        capacity: Optional[int] = None,
        extend_on_hit: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.sales_page_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.capacity = settings.sales_max_pages_cache if capacity is None else capacity
        self.extend_on_hit = settings.sales_extend_ttl_on_hit if extend_on_hit is None else extend_on_hit
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, PageRecord]" = OrderedDict()
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def _touch(self, key: CacheKey, record: PageRecord) -> None:
        self._entries[key] = record
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted page {evicted[0]}:{evicted[1]} (capacity {self.capacity})")
        metrics.page_cache_size.set(len(self._entries))

    def _fresh(self, key: CacheKey) -> Optional[PageRecord]:
        record = self._entries.get(key)
        if record is None:
            return None
        if self._clock() > record.expires_at:
            del self._entries[key]
            metrics.page_cache_size.set(len(self._entries))
            return None
        return record

    def get(self, region: str, page_index: int) -> Optional[PageRecord]:
        """
        Get a fresh page, touching its recency.

        Args:
            region: Region code
            page_index: Zero-based page index

        Returns:
            PageRecord on hit, None if absent or expired
        """
        key = (region, page_index)
        record = self._fresh(key)
        if record is None:
            self.misses += 1
            metrics.page_cache_misses_total.labels(region=region).inc()
            return None

        if self.extend_on_hit:
            record.expires_at = self._clock() + self.ttl_seconds
        self._touch(key, record)
        self.hits += 1
        metrics.page_cache_hits_total.labels(region=region).inc()
        return record

    def peek(self, region: str, page_index: int) -> Optional[PageRecord]:
        """Get a fresh page without touching recency, TTL or counters."""
        return self._fresh((region, page_index))

    def is_warm(self, region: str, page_index: int) -> bool:
        return self.peek(region, page_index) is not None

    def set(
        self,
        region: str,
        page_index: int,
        items: tuple[SaleItem, ...] | list[SaleItem],
        total_pages: int,
    ) -> PageRecord:
        """Store a page and make it the most recently touched entry."""
        now = self._clock()
        record = PageRecord(
            items=tuple(items),
            total_pages=max(1, int(total_pages)),
            expires_at=now + self.ttl_seconds,
            created_at=now,
        )
        self._touch((region, page_index), record)
        return record

    def is_fetching(self, region: str, page_index: int) -> bool:
        return (region, page_index) in self._inflight

    async def get_or_fetch(
        self,
        region: str,
        page_index: int,
        fetch: PageFetcher,
    ) -> PageRecord:
        """
        Return the cached page or fetch it, sharing one fetch per key.

        Args:
            region: Region code
            page_index: Zero-based page index
            fetch: Coroutine function producing a FetchResult for (region, page)

        Returns:
            PageRecord

        Raises:
            Whatever ``fetch`` raises; the failure is not cached
        """
        cached = self.get(region, page_index)
        if cached is not None:
            return cached

        key = (region, page_index)
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(self._fetch_and_store(region, page_index, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))

        # shield: a cancelled waiter must not cancel the fetch other callers share
        return await asyncio.shield(task)

    def _settle(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _fetch_and_store(self, region: str, page_index: int, fetch: PageFetcher) -> PageRecord:
        result = await fetch(region, page_index)
        return self.set(region, page_index, result.items, result.total_pages)

    def clear(self) -> None:
        self._entries.clear()
        metrics.page_cache_size.set(0)

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "inflight": len(self._inflight),
        }


# Global page cache instance
page_cache = PageCache()
