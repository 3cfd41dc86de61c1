"""Discounted catalog search fetcher (JSON endpoint with HTML fallback)."""

import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from sales_board import metrics
from sales_board.config import settings
from sales_board.ingest.base import FetchResult, PageRecord, SaleItem
from sales_board.ingest.http_client import (
    SitePolicy,
    UpstreamAuthError,
    UpstreamFormatError,
    fetch_with_policy,
)
from sales_board.ingest.page_cache import PageCache, page_cache
from sales_board.ingest.parser import parse_items
from sales_board.ingest.store_session import StoreSession, store_session

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEARCH_RESULTS_PATH = "/search/results/"
SEARCH_PAGE_PATH = "/search/"
GAMES_CATEGORY = 998


def infer_total_pages(
    total_count: Any,
    page_index: int,
    item_count: int,
    page_size: int,
) -> int:
    """
    Work out how many pages the listing has.

    Uses the upstream total when it is a positive number; otherwise a full
    page means at least one more page exists and a short page is the last.
    """
    try:
        total = int(total_count)
    except (TypeError, ValueError):
        total = 0
    if total > 0:
        return max(1, math.ceil(total / page_size))
    return page_index + 2 if item_count >= page_size else page_index + 1


class SearchFetcher:
    """
    Fetches one page of discounted search results for a region.

    The primary path asks the infinite-scroll JSON endpoint for ``page_size``
    rows at ``page_index * page_size``. The endpoint occasionally ignores the
    offset and repeats the previous page; when the parsed ids equal the
    cached previous page, the regular HTML search page for the same page
    number is fetched instead.
    """

    def __init__(
        self,
        session: Optional[StoreSession] = None,
        cache: Optional[PageCache] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[str] = None,
    ):
        self.session = session or store_session
        self.cache = page_cache if cache is None else cache
        self.page_size = page_size or settings.sales_page_size
        self.sort_by = sort_by or settings.sales_sort_by
        self.policy = SitePolicy(name="steam_store", max_attempts=settings.http_max_attempts)

    def _referer(self, region: str) -> str:
        return (
            f"{self.session.base_url}{SEARCH_PAGE_PATH}"
            f"?specials=1&category1={GAMES_CATEGORY}&cc={region}&l=en"
        )

    async def _with_auth_retry(self, region: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call``; on access denied re-bootstrap once and retry once."""
        await self.session.ensure_session(region)
        try:
            return await call()
        except UpstreamAuthError as e:
            logger.warning(f"Access denied on store search ({region}): {e}; re-bootstrapping and retrying")
            await self.session.rebootstrap(region)
            return await call()

    async def fetch_search_json(self, region: str, start: int, count: int) -> dict:
        """
        Query the machine-readable search endpoint.

        Raises:
            UpstreamAuthError: Access still denied after one re-bootstrap
            UpstreamFormatError: Body is not the expected JSON object
        """
        params = {
            "query": "",
            "specials": 1,
            "category1": GAMES_CATEGORY,
            "cc": region,
            "l": "en",
            "start": start,
            "count": count,
            "infinite": 1,
            "force_infinite": 1,
            "dynamic_data": 1,
            "no_cache": 1,
            "sort_by": self.sort_by,
        }
        headers = {
            "X-Requested-With": "XMLHttpRequest",
            "Referer": self._referer(region),
        }

        async def do_get() -> dict:
            params["_"] = int(time.time() * 1000)
            resp = await fetch_with_policy(
                self.session.get_client(region), SEARCH_RESULTS_PATH, self.policy, params=params, headers=headers
            )
            try:
                data = resp.json()
            except ValueError as e:
                raise UpstreamFormatError(f"search endpoint returned non-JSON body for {region}@{start}") from e
            if not isinstance(data, dict) or data.get("success") != 1:
                raise UpstreamFormatError(f"unexpected search response for {region}@{start}")
            return data

        return await self._with_auth_retry(region, do_get)

    async def fetch_search_page_html(self, region: str, page_index: int) -> str:
        """Fetch the regular HTML search page (1-based ``page`` parameter)."""
        params = {
            "specials": 1,
            "category1": GAMES_CATEGORY,
            "cc": region,
            "l": "en",
            "page": page_index + 1,
            "sort_by": self.sort_by,
            "no_cache": 1,
        }
        headers = {
            "Referer": self._referer(region),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

        async def do_get() -> str:
            resp = await fetch_with_policy(
                self.session.get_client(region), SEARCH_PAGE_PATH, self.policy, params=params, headers=headers
            )
            return resp.text or ""

        return await self._with_auth_retry(region, do_get)

    async def _drift_fallback(
        self,
        region: str,
        page_index: int,
        items: list[SaleItem],
        total_pages: int,
    ) -> tuple[list[SaleItem], int]:
        try:
            html = await self.fetch_search_page_html(region, page_index)
        except (httpx.HTTPError, RuntimeError) as e:
            # Keep the primary result; the page is still usable, just possibly stale
            logger.debug(f"Fallback page fetch failed {region}:{page_index}: {e}")
            metrics.pagination_drift_total.labels(region=region, outcome="fallback_failed").inc()
            return items, total_pages

        alt = parse_items(html, self.session.base_url)
        if not alt:
            metrics.pagination_drift_total.labels(region=region, outcome="fallback_empty").inc()
            return items, total_pages

        if len(alt) < self.page_size:
            total_pages = page_index + 1
        metrics.pagination_drift_total.labels(region=region, outcome="recovered").inc()
        return alt[: self.page_size], total_pages

    async def fetch_page(self, region: str, page_index: int) -> FetchResult:
        """
        Fetch and parse one page of discounted results.

        Args:
            region: Region code
            page_index: Zero-based page index

        Returns:
            FetchResult with at most ``page_size`` items
        """
        started = time.perf_counter()
        try:
            data = await self.fetch_search_json(region, page_index * self.page_size, self.page_size)
            items = parse_items(data.get("results_html") or "", self.session.base_url)[: self.page_size]
            total_pages = infer_total_pages(data.get("total_count"), page_index, len(items), self.page_size)

            previous: Optional[PageRecord] = self.cache.peek(region, page_index - 1) if page_index > 0 else None
            if previous is not None and items and previous.ids == tuple(i.id for i in items):
                logger.debug(f"Pagination drift on {region}:{page_index}; using HTML fallback")
                items, total_pages = await self._drift_fallback(region, page_index, items, total_pages)
        except Exception:
            metrics.page_fetches_total.labels(region=region, status="error").inc()
            raise

        elapsed = time.perf_counter() - started
        metrics.page_fetches_total.labels(region=region, status="ok").inc()
        metrics.page_fetch_duration_seconds.labels(region=region).observe(elapsed)
        logger.debug(
            f"Fetched {region}:{page_index} in {elapsed * 1000:.0f} ms "
            f"({len(items)} items, {total_pages} pages) ids={','.join(str(i.id) for i in items)}"
        )
        return FetchResult(items=tuple(items), total_pages=total_pages)

    async def get_page(self, region: str, page_index: int) -> PageRecord:
        """Cache-or-network page lookup with single-flight dedup."""
        return await self.cache.get_or_fetch(region, page_index, self.fetch_page)


# Global search fetcher instance
search_fetcher = SearchFetcher()
