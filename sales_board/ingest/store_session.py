"""Synthetic store session (cookies, locale, age gate) per region."""

import asyncio
import logging
import secrets
from collections import defaultdict
from typing import Optional
from urllib.parse import quote, urlparse

import httpx

from sales_board import metrics
from sales_board.config import settings
from sales_board.ingest.http_client import build_store_client

logger = logging.getLogger(__name__)


class StoreSession:
    """
    Owns the store HTTP clients and their cookie state.

    Features:
    - One client (and cookie jar) per region, so locale cookies never mix
    - Single-flight initialization per region
    - Forced re-bootstrap after an access-denied response
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.store_base_url).rstrip("/")
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._ready: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def domain(self) -> str:
        return urlparse(self.base_url).hostname or "store.steampowered.com"

    def get_client(self, region: str) -> httpx.AsyncClient:
        """Get or create the store client for a region."""
        client = self._clients.get(region)
        if client is None:
            client = build_store_client(self.base_url, self._transport)
            self._clients[region] = client
        return client

    async def close(self):
        """Close all HTTP clients."""
        clients = list(self._clients.values())
        self._clients.clear()
        self._ready.clear()
        for client in clients:
            await client.aclose()

    def is_ready(self, region: str) -> bool:
        return region in self._ready

    def _install_cookies(self, region: str) -> None:
        jar = self.get_client(region).cookies
        domain = self.domain
        jar.set("sessionid", secrets.token_hex(16), domain=domain, path="/")
        jar.set("steamCountry", f"{quote(region)}%7C0%7C", domain=domain, path="/")
        jar.set("timezoneOffset", "0,0", domain=domain, path="/")
        jar.set("birthtime", "0", domain=domain, path="/")
        jar.set("lastagecheckage", "1-January-1970", domain=domain, path="/")
        jar.set("mature_content", "1", domain=domain, path="/")

    async def _bootstrap(self, region: str, reason: str) -> None:
        self._install_cookies(region)
        metrics.session_bootstraps_total.labels(region=region, reason=reason).inc()
        try:
            await self.get_client(region).get("/", params={"cc": region, "l": "en"})
        except httpx.HTTPError as e:
            # Cookies alone are usually enough; the landing page only refreshes them
            logger.debug(f"Store landing request failed during bootstrap ({region}): {e}")
        self._ready.add(region)
        logger.info(f"Store session bootstrapped for region {region} ({reason})")

    async def ensure_session(self, region: str) -> None:
        """
        Bootstrap the session for a region once.

        Concurrent first callers share one bootstrap.

        Args:
            region: Two-letter country code
        """
        if region in self._ready:
            return
        async with self._locks[region]:
            if region in self._ready:
                return
            await self._bootstrap(region, "initial")

    async def rebootstrap(self, region: str) -> None:
        """Force a fresh bootstrap after the store denied access."""
        async with self._locks[region]:
            self._ready.discard(region)
            await self._bootstrap(region, "access_denied")


# Global store session instance
store_session = StoreSession()
