"""Tests for the store session bootstrapper."""

import asyncio

import httpx
import pytest

from sales_board.ingest.store_session import StoreSession


class TestStoreSession:
    """Test session bootstrap."""

    def setup_method(self):
        self.landing_hits = 0

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/":
                self.landing_hits += 1
            return httpx.Response(200, text="<html></html>")

        self.session = StoreSession(
            base_url="https://store.example.test",
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_concurrent_ensure_bootstraps_once(self):
        await asyncio.gather(*(self.session.ensure_session("US") for _ in range(5)))

        assert self.landing_hits == 1
        assert self.session.is_ready("US")
        await self.session.close()

    @pytest.mark.asyncio
    async def test_regions_bootstrap_independently(self):
        await self.session.ensure_session("US")
        await self.session.ensure_session("DE")
        await self.session.ensure_session("US")

        assert self.landing_hits == 2
        await self.session.close()

    @pytest.mark.asyncio
    async def test_cookies_installed(self):
        await self.session.ensure_session("GB")
        jar = self.session.get_client("GB").cookies

        assert jar.get("steamCountry") == "GB%7C0%7C"
        assert jar.get("mature_content") == "1"
        assert len(jar.get("sessionid")) == 32
        await self.session.close()

    @pytest.mark.asyncio
    async def test_regions_keep_their_own_country_cookie(self):
        await self.session.ensure_session("US")
        await self.session.ensure_session("DE")

        assert self.session.get_client("US").cookies.get("steamCountry") == "US%7C0%7C"
        assert self.session.get_client("DE").cookies.get("steamCountry") == "DE%7C0%7C"
        assert self.session.get_client("US") is not self.session.get_client("DE")
        await self.session.close()

    @pytest.mark.asyncio
    async def test_rebootstrap_replaces_session_id(self):
        await self.session.ensure_session("US")
        first = self.session.get_client("US").cookies.get("sessionid")

        await self.session.rebootstrap("US")
        second = self.session.get_client("US").cookies.get("sessionid")

        assert first != second
        assert self.landing_hits == 2
        await self.session.close()

    @pytest.mark.asyncio
    async def test_landing_failure_is_tolerated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        session = StoreSession(base_url="https://store.example.test", transport=httpx.MockTransport(handler))
        await session.ensure_session("US")

        assert session.is_ready("US")
        await session.close()
