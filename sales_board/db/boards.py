"""Persistence of pinned board locations per guild."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sales_board.db.models import PinnedBoard
from sales_board.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)


class BoardStore:
    """
    Guild -> (channel, message) mapping for pinned sales boards.

    Returned rows are detached snapshots; callers never hold a session.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def get(self, guild_id: int) -> Optional[PinnedBoard]:
        async with self.session_factory() as db:
            return await db.get(PinnedBoard, guild_id)

    async def upsert(self, guild_id: int, channel_id: int, message_id: int) -> PinnedBoard:
        """
        Insert or replace the board location for a guild.

        Args:
            guild_id: Guild id
            channel_id: Channel the board lives in
            message_id: Board message id

        Returns:
            The stored row
        """
        async with self.session_factory() as db:
            board = await db.get(PinnedBoard, guild_id)
            if board is None:
                board = PinnedBoard(guild_id=guild_id, channel_id=channel_id, message_id=message_id)
                db.add(board)
            else:
                board.channel_id = channel_id
                board.message_id = message_id
            board.updated_at = datetime.utcnow()
            await db.commit()
            logger.debug(f"Stored board for guild {guild_id}: channel={channel_id} message={message_id}")
            return board

    async def touch(self, guild_id: int) -> bool:
        """Bump ``updated_at``. Returns False if the guild has no board."""
        async with self.session_factory() as db:
            board = await db.get(PinnedBoard, guild_id)
            if board is None:
                return False
            board.updated_at = datetime.utcnow()
            await db.commit()
            return True

    async def list_all(self) -> list[PinnedBoard]:
        async with self.session_factory() as db:
            result = await db.execute(select(PinnedBoard).order_by(PinnedBoard.guild_id))
            return list(result.scalars().all())

    async def delete(self, guild_id: int) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(delete(PinnedBoard).where(PinnedBoard.guild_id == guild_id))
            await db.commit()
            return result.rowcount > 0


# Global board store instance
board_store = BoardStore()
