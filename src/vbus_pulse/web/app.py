"""FastAPI application for the VBus Pulse HTTP interface."""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from .. import __version__
from ..log_handler import get_structured_logger

if TYPE_CHECKING:
    from ..context import AppContext

logger = get_structured_logger(__name__, component="web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan.

    The context is created and started by the CLI before the web app starts;
    this only reports on it.
    """
    logger.info("Web application starting...")
    context = app.state.context
    if not context.is_started:
        logger.warning("AppContext provided but not started")
    else:
        logger.info("Using AppContext", widgets=len(context.widgets))

    yield

    logger.info("Web application shutting down...")


def create_app(context: "AppContext") -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Application context owning the refresh engine

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="VBus Pulse",
        description="Solar and pool heating telemetry",
        version=__version__,
        lifespan=lifespan,
    )

    # Store context in app.state for access in request handlers
    app.state.context = context

    from .routes import router

    app.include_router(router)

    logger.info("FastAPI application created")
    return app
