"""Background cache warming around viewed pages and across the whole listing."""

import asyncio
import logging
import random
from typing import Callable, Optional

from sales_board.config import settings
from sales_board.ingest.page_cache import PageCache
from sales_board.ingest.search_fetcher import SearchFetcher, search_fetcher

logger = logging.getLogger(__name__)


def jitter(seconds: float, spread: float = 0.3, rng: Callable[[], float] = random.random) -> float:
    """Scale ``seconds`` by a random factor in [1 - spread, 1 + spread]."""
    return max(0.0, seconds * (1 - spread + rng() * 2 * spread))


class Prewarmer:
    """
    Populates the page cache ahead of demand.

    Neighbour warming is spaced out with increasing, jittered delays so a
    page view never turns into a burst against the store. A warming set
    keeps the same page from being scheduled twice.
    """

    def __init__(
        self,
        fetcher: Optional[SearchFetcher] = None,
        forward_pages: Optional[int] = None,
        backward_pages: Optional[int] = None,
        spacing_seconds: Optional[float] = None,
        full_delay_seconds: Optional[float] = None,
        full_spacing_seconds: Optional[float] = None,
        rng: Callable[[], float] = random.random,
    ):
        self.fetcher = fetcher or search_fetcher
        self.forward_pages = settings.sales_precache_pages if forward_pages is None else forward_pages
        self.backward_pages = settings.sales_precache_prev_pages if backward_pages is None else backward_pages
        self.spacing_seconds = settings.sales_prewarm_spacing_seconds if spacing_seconds is None else spacing_seconds
        self.full_delay_seconds = (
            settings.sales_full_warmer_delay_seconds if full_delay_seconds is None else full_delay_seconds
        )
        self.full_spacing_seconds = (
            settings.sales_full_warmer_spacing_seconds if full_spacing_seconds is None else full_spacing_seconds
        )
        self._rng = rng
        self._warming: set[tuple[str, int]] = set()
        self._tasks: set[asyncio.Task] = set()
        self._full_task: Optional[asyncio.Task] = None

    @property
    def cache(self) -> PageCache:
        return self.fetcher.cache

    @property
    def warming_count(self) -> int:
        return len(self._warming)

    def is_warming(self, region: str, page_index: int) -> bool:
        return (region, page_index) in self._warming

    @property
    def full_warm_running(self) -> bool:
        return self._full_task is not None and not self._full_task.done()

    def neighbour_plan(self, page_index: int, total_pages: int) -> list[int]:
        """
        Page indices to warm around ``page_index``, nearest first.

        Forward pages come before backward pages at the same distance.
        """
        upcoming: list[tuple[int, int]] = []
        for distance in range(1, self.forward_pages + 1):
            idx = page_index + distance
            if idx >= total_pages:
                break
            upcoming.append((distance, idx))
        for distance in range(1, self.backward_pages + 1):
            idx = page_index - distance
            if idx < 0:
                break
            upcoming.append((distance, idx))
        upcoming.sort(key=lambda pair: pair[0])
        return [idx for _, idx in upcoming]

    def schedule_warm(self, region: str, page_index: int, delay: float) -> bool:
        """
        Schedule one page to be fetched after ``delay`` seconds.

        Returns:
            False if the page is already cached, being fetched, or warming
        """
        key = (region, page_index)
        if key in self._warming or self.cache.is_warm(region, page_index) or self.cache.is_fetching(region, page_index):
            return False
        self._warming.add(key)
        task = asyncio.create_task(self._warm_later(region, page_index, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _warm_later(self, region: str, page_index: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.fetcher.get_page(region, page_index)
            logger.debug(f"Prewarm ok {region}:{page_index}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Prewarm fail {region}:{page_index}: {e}")
        finally:
            self._warming.discard((region, page_index))

    def prewarm_around(self, region: str, page_index: int, total_pages: int) -> list[int]:
        """
        Warm the forward and backward neighbours of a page.

        Args:
            region: Region code
            page_index: Page just shown
            total_pages: Known page count

        Returns:
            Page indices actually scheduled
        """
        scheduled = []
        for order, idx in enumerate(self.neighbour_plan(page_index, total_pages)):
            delay = jitter(self.spacing_seconds * (order + 1), rng=self._rng)
            if self.schedule_warm(region, idx, delay):
                scheduled.append(idx)
        return scheduled

    def start_full_warm(self, region: str) -> bool:
        """
        Start the one background walk over every page of a region.

        Returns:
            False if a walk is already running
        """
        if self.full_warm_running:
            return False
        self._full_task = asyncio.create_task(self._full_warm(region))
        return True

    async def _full_warm(self, region: str) -> None:
        await asyncio.sleep(self.full_delay_seconds)
        logger.info(f"Starting full warm for region {region}")
        try:
            first = await self.fetcher.get_page(region, 0)
        except Exception as e:
            logger.warning(f"Full warm bootstrap failed for {region}: {e}")
            return

        # Read once from the seed page; later pages may report a different count
        total_pages = first.total_pages
        warmed = 0
        for page in range(1, total_pages):
            if self.cache.is_warm(region, page):
                continue
            try:
                await self.fetcher.get_page(region, page)
                warmed += 1
                logger.debug(f"Warm ok {region}:{page}/{total_pages}")
            except Exception as e:
                logger.debug(f"Warm fail {region}:{page}: {e}")
            await asyncio.sleep(self.full_spacing_seconds)
        logger.info(f"Full warm complete for {region}: {warmed} pages fetched of {total_pages}")

    async def stop(self) -> None:
        """Cancel outstanding warm tasks (shutdown)."""
        tasks = list(self._tasks)
        if self._full_task is not None:
            tasks.append(self._full_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._full_task = None
        self._warming.clear()


# Global prewarmer instance
prewarmer = Prewarmer()
