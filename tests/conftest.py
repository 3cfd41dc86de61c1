"""Shared fixtures and fakes for sales board tests."""

import asyncio
from typing import Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sales_board.db.session import init_db
from sales_board.ingest.base import FetchResult, PageRecord, SaleItem
from sales_board.ingest.page_cache import PageCache
from sales_board.notify.render import DisplayPayload


def make_item(app_id: int, pct: int = 50) -> SaleItem:
    return SaleItem(
        id=app_id,
        name=f"Game {app_id}",
        discount_percent=pct,
        final_price_text="$4.99",
        original_price_text="$9.99",
        url=f"https://store.steampowered.com/app/{app_id}/",
    )


def make_row(
    app_id: Optional[int],
    name: str = "Some Game",
    pct: Optional[str] = None,
    final: Optional[str] = None,
    original: Optional[str] = None,
    freeform: Optional[str] = None,
) -> str:
    """One search result row in the store's markup."""
    appid_attr = f' data-ds-appid="{app_id}"' if app_id is not None else ""
    href = f"https://store.steampowered.com/app/{app_id}/Some_Game/?snr=1_7_7" if app_id else "#"
    parts = [f'<a class="search_result_row"{appid_attr} href="{href}">']
    parts.append(f'<span class="title">{name}</span>')
    if pct is not None:
        parts.append(f'<div class="search_discount"><span class="discount_pct">{pct}</span></div>')
    if final is not None or original is not None:
        parts.append('<div class="discount_block">')
        if original is not None:
            parts.append(f'<div class="discount_original_price">{original}</div>')
        if final is not None:
            parts.append(f'<div class="discount_final_price">{final}</div>')
        parts.append("</div>")
    if freeform is not None:
        parts.append(f'<div class="search_price">{freeform}</div>')
    parts.append("</a>")
    return "".join(parts)


def make_rows(ids) -> str:
    return "".join(make_row(i, name=f"Game {i}", pct="-50%", final="$4.99", original="$9.99") for i in ids)


class FakeMessage:
    """In-memory MessageHandle."""

    def __init__(self, message_id: int, payload: DisplayPayload, channel: "FakeChannel"):
        self.id = message_id
        self.payload = payload
        self.channel = channel
        self.edits: list[DisplayPayload] = []
        self.deleted = False

    async def edit(self, payload: DisplayPayload) -> None:
        self.payload = payload
        self.edits.append(payload)

    async def delete(self) -> None:
        self.deleted = True
        self.channel.messages.pop(self.id, None)


class FakeChannel:
    """In-memory MessageChannel."""

    _next_id = 1000

    def __init__(self, channel_id: int):
        self.id = channel_id
        self.messages: dict[int, FakeMessage] = {}
        self.sent: list[FakeMessage] = []

    async def send(self, payload: DisplayPayload) -> FakeMessage:
        FakeChannel._next_id += 1
        message = FakeMessage(FakeChannel._next_id, payload, self)
        self.messages[message.id] = message
        self.sent.append(message)
        return message

    async def fetch_message(self, message_id: int) -> Optional[FakeMessage]:
        return self.messages.get(message_id)


class FakeResolver:
    """In-memory ChannelResolver."""

    def __init__(self, *channels: FakeChannel):
        self.channels = {c.id: c for c in channels}

    async def resolve(self, channel_id: int) -> Optional[FakeChannel]:
        return self.channels.get(channel_id)


class FakeInteraction:
    """In-memory NavInteraction recording everything the controller does."""

    def __init__(
        self,
        custom_id: str,
        message_id: Optional[int] = 555,
        user_id: Optional[int] = 1,
        current_payload: Optional[DisplayPayload] = None,
        deferrable: bool = True,
    ):
        self.custom_id = custom_id
        self.message_id = message_id
        self.user_id = user_id
        self.current_payload = current_payload or DisplayPayload(embed={"title": "old"})
        self.deferrable = deferrable
        self.deferred = False
        self.edits: list[DisplayPayload] = []
        self.ephemeral: list[str] = []
        self.follow_ups: list[str] = []

    async def defer_update(self) -> bool:
        # Acknowledging is a network round trip on a real platform
        await asyncio.sleep(0)
        self.deferred = self.deferrable
        return self.deferrable

    async def edit_original(self, payload: DisplayPayload) -> bool:
        self.edits.append(payload)
        return True

    async def reply_ephemeral(self, text: str) -> bool:
        self.ephemeral.append(text)
        return True

    async def follow_up_ephemeral(self, text: str) -> bool:
        self.follow_ups.append(text)
        return True


class FakeFetcher:
    """Stands in for SearchFetcher: canned pages behind a real PageCache."""

    def __init__(self, total_pages: int = 10, items_per_page: int = 10):
        self.total_pages = total_pages
        self.items_per_page = items_per_page
        self.cache = PageCache(ttl_seconds=600, capacity=100)
        self.calls: list[tuple[str, int]] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None

    async def fetch_page(self, region: str, page_index: int) -> FetchResult:
        self.calls.append((region, page_index))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        start = page_index * self.items_per_page
        items = tuple(make_item(i) for i in range(start + 1, start + self.items_per_page + 1))
        return FetchResult(items=items, total_pages=self.total_pages)

    async def get_page(self, region: str, page_index: int) -> PageRecord:
        return await self.cache.get_or_fetch(region, page_index, self.fetch_page)


@pytest_asyncio.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory sqlite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
