"""Main application entry point."""

import asyncio
import logging
import sys

import uvicorn

from sales_board.api.app import app
from sales_board.config import settings
from sales_board.db.session import engine, init_db
from sales_board.ingest.store_session import store_session
from sales_board.logging_config import setup_logging
from sales_board.notify.discord_bot import SalesBoardBot
from sales_board.worker.prewarm import prewarmer

logger = logging.getLogger(__name__)


def build_status_server() -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host=settings.status_api_host,
        port=settings.status_api_port,
        log_level="warning",
        log_config=None,
    )
    return uvicorn.Server(config)


async def main() -> None:
    """Run the bot and, when enabled, the status API on one event loop."""
    logger.info("Starting sales board...")

    # Initialize database
    await init_db()

    bot = SalesBoardBot()
    server = build_status_server() if settings.status_api_enabled else None

    try:
        if server is not None:
            logger.info(f"Status API on http://{settings.status_api_host}:{settings.status_api_port}")
            await asyncio.gather(bot.start(settings.discord_token), server.serve())
        else:
            await bot.start(settings.discord_token)
    finally:
        # Shutdown
        logger.info("Shutting down...")
        if server is not None:
            server.should_exit = True
        if not bot.is_closed():
            await bot.close()
        await prewarmer.stop()
        await store_session.close()
        await engine.dispose()
        logger.info("Shutdown complete")


def run() -> None:
    setup_logging()
    if not settings.discord_token:
        logger.error("DISCORD_TOKEN is not set")
        sys.exit(1)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
