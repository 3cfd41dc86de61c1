"""Board lifecycle: pinning a board in a channel and the periodic refresh."""

import logging
from typing import Optional

from sales_board import metrics
from sales_board.config import settings
from sales_board.db.boards import BoardStore, board_store
from sales_board.db.models import PinnedBoard
from sales_board.ingest.search_fetcher import SearchFetcher, search_fetcher
from sales_board.notify.channel import ChannelResolver, MessageChannel
from sales_board.notify.navigation import NavStateRegistry, nav_states
from sales_board.notify.render import render_page
from sales_board.worker.prewarm import Prewarmer, prewarmer

logger = logging.getLogger(__name__)

FIRST_EPOCH = 1


class BoardService:
    """
    Creates, moves and refreshes the pinned sales board of each guild.

    Every render bumps the message's navigation epoch so buttons from the
    previous render stop being honoured.
    """

    def __init__(
        self,
        store: Optional[BoardStore] = None,
        fetcher: Optional[SearchFetcher] = None,
        warmer: Optional[Prewarmer] = None,
        registry: Optional[NavStateRegistry] = None,
        region: Optional[str] = None,
    ):
        self.store = store or board_store
        self.fetcher = fetcher or search_fetcher
        self.warmer = warmer or prewarmer
        self.registry = nav_states if registry is None else registry
        self.region = region or settings.sales_region_cc
        self.resolver: Optional[ChannelResolver] = None

    def set_resolver(self, resolver: ChannelResolver) -> None:
        """Set the platform channel lookup used by scheduled refreshes."""
        self.resolver = resolver

    async def _remove_old_board(self, board: PinnedBoard, resolver: Optional[ChannelResolver]) -> None:
        self.registry.forget(board.message_id)
        if resolver is None:
            return
        try:
            channel = await resolver.resolve(board.channel_id)
            message = await channel.fetch_message(board.message_id) if channel else None
            if message is not None:
                await message.delete()
        except Exception as e:
            logger.debug(f"Could not delete old board {board.message_id} in {board.channel_id}: {e}")

    async def ensure_board(
        self,
        guild_id: int,
        channel: MessageChannel,
        resolver: Optional[ChannelResolver] = None,
    ) -> PinnedBoard:
        """
        Make sure the guild's board lives in ``channel``.

        An existing board in the same channel is kept as is. A board in a
        different channel is deleted (best effort) and a fresh one posted.

        Args:
            guild_id: Guild id
            channel: Target channel
            resolver: Channel lookup for deleting a board in another channel

        Returns:
            The stored board location
        """
        existing = await self.store.get(guild_id)
        if existing is not None and existing.channel_id == channel.id:
            return existing

        if existing is not None:
            logger.info(
                f"Moving sales board for guild {guild_id} from channel "
                f"{existing.channel_id} to {channel.id}"
            )
            await self._remove_old_board(existing, resolver or self.resolver)

        record = await self.fetcher.get_page(self.region, 0)
        payload = render_page(self.region, 0, record.items, record.total_pages, FIRST_EPOCH)
        message = await channel.send(payload)
        self.registry.set_epoch(message.id, FIRST_EPOCH)
        self.warmer.prewarm_around(self.region, 0, record.total_pages)

        board = await self.store.upsert(guild_id, channel.id, message.id)
        metrics.board_refreshes_total.labels(status="created").inc()
        logger.info(f"Posted sales board for guild {guild_id} in channel {channel.id} (message {message.id})")
        return board

    async def refresh_board(self, board: PinnedBoard, resolver: ChannelResolver) -> str:
        """
        Re-render page 0 on one stored board.

        Returns:
            "edited", "reposted" or "missing_channel"
        """
        channel = await resolver.resolve(board.channel_id)
        if channel is None:
            logger.warning(f"Sales channel {board.channel_id} for guild {board.guild_id} is gone; skipping")
            return "missing_channel"

        record = await self.fetcher.get_page(self.region, 0)

        # Queue behind in-flight clicks so their epoch rollback cannot undo this render
        state = self.registry.get(board.message_id)
        async with state.lock:
            epoch = state.epoch + 1
            payload = render_page(self.region, 0, record.items, record.total_pages, epoch)

            message = await channel.fetch_message(board.message_id)
            edited = message is not None
            if edited:
                await message.edit(payload)
                state.epoch = epoch
            else:
                message = await channel.send(payload)
                self.registry.forget(board.message_id)
                self.registry.set_epoch(message.id, epoch)

        self.warmer.prewarm_around(self.region, 0, record.total_pages)
        if edited:
            await self.store.touch(board.guild_id)
            return "edited"

        await self.store.upsert(board.guild_id, channel.id, message.id)
        return "reposted"

    async def refresh_all_boards(self, resolver: Optional[ChannelResolver] = None) -> dict[str, int]:
        """
        Refresh every stored board. One guild's failure does not stop the rest.

        Returns:
            Count of boards per outcome
        """
        resolver = resolver or self.resolver
        if resolver is None:
            logger.warning("Board refresh skipped: no channel resolver configured yet")
            return {}

        boards = await self.store.list_all()
        logger.info(f"Refreshing {len(boards)} sales boards")
        counts: dict[str, int] = {}
        for board in boards:
            try:
                outcome = await self.refresh_board(board, resolver)
            except Exception as e:
                outcome = "error"
                logger.warning(f"Sales board refresh failed for guild {board.guild_id}: {e}")
            counts[outcome] = counts.get(outcome, 0) + 1
            metrics.board_refreshes_total.labels(status=outcome).inc()
        return counts


# Global board service instance
board_service = BoardService()
