"""Status API served next to the bot."""

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from sales_board import __version__
from sales_board.api.routes import status


def create_app() -> FastAPI:
    app = FastAPI(
        title="Sales Board",
        description="Steam sales board status",
        version=__version__,
    )

    # Add Prometheus instrumentation
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/health"],
    )
    instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

    app.include_router(status.router)
    return app


app = create_app()
