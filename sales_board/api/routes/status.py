"""Status API routes."""

from datetime import datetime
from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from sales_board.db.boards import board_store
from sales_board.ingest.page_cache import page_cache
from sales_board.notify.navigation import nav_states
from sales_board.worker.prewarm import prewarmer

router = APIRouter(tags=["status"])


class CacheStatsResponse(BaseModel):
    """Page cache and warming snapshot."""
    size: int
    capacity: int
    ttl_seconds: float
    hits: int
    misses: int
    evictions: int
    inflight: int
    warming: int
    full_warm_running: bool
    nav_states: int


class BoardResponse(BaseModel):
    """A pinned board location."""
    guild_id: int
    channel_id: int
    message_id: int
    epoch: int
    updated_at: datetime


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats():
    """Page cache statistics plus background warming state."""
    return CacheStatsResponse(
        **page_cache.stats(),
        warming=prewarmer.warming_count,
        full_warm_running=prewarmer.full_warm_running,
        nav_states=len(nav_states),
    )


@router.get("/boards", response_model=List[BoardResponse])
async def list_boards():
    """Pinned boards with their current navigation epoch."""
    boards = await board_store.list_all()
    return [
        BoardResponse(
            guild_id=b.guild_id,
            channel_id=b.channel_id,
            message_id=b.message_id,
            epoch=nav_states.current_epoch(b.message_id),
            updated_at=b.updated_at,
        )
        for b in boards
    ]
