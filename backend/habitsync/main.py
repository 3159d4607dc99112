"""FastAPI application exposing the sync core to the UI layer.

The app owns one :class:`SyncContainer` for its lifetime.  Background
services (the periodic sync timer) are skipped when ``TESTING`` is set so
the test-suite never leaves scheduler jobs running on the event loop.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from habitsync.config import Settings
from habitsync.config import get_settings
from habitsync.constants import API_PREFIX
from habitsync.container import SyncContainer
from habitsync.gateway.base import NotConnectedError
from habitsync.gateway.base import RemoteError
from habitsync.gateway.base import SessionNotFoundError
from habitsync.routers.entries import router as entries_router
from habitsync.routers.session import router as session_router
from habitsync.routers.sync import router as sync_router
from habitsync.services.mutation_coordinator import UnknownRecordError
from habitsync.utils.log import configure_logging

logger = logging.getLogger(__name__)


def create_app(container: Optional[SyncContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app; a pre-built *container* is used as-is (tests)."""

    if settings is None:
        settings = container.settings if container is not None else get_settings()

    configure_logging(settings.log_level, json=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = SyncContainer(settings)
        active: SyncContainer = app.state.container

        try:
            await active.start(run_scheduler=not settings.testing)
        except Exception as e:
            logger.error(f"Error during startup: {e}")
            raise

        yield

        await active.stop()

    app = FastAPI(title="habitsync", lifespan=lifespan, redirect_slashes=True)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(SessionNotFoundError)
    async def _session_not_found(request: Request, exc: SessionNotFoundError):  # noqa: D401 – handler
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(NotConnectedError)
    async def _not_connected(request: Request, exc: NotConnectedError):  # noqa: D401 – handler
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(UnknownRecordError)
    async def _unknown_record(request: Request, exc: UnknownRecordError):  # noqa: D401 – handler
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RemoteError)
    async def _remote_error(request: Request, exc: RemoteError):  # noqa: D401 – handler
        logger.warning(f"Remote error on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=502, content={"detail": exc.message, "table": exc.table})

    app.include_router(session_router, prefix=API_PREFIX)
    app.include_router(entries_router, prefix=API_PREFIX)
    app.include_router(sync_router, prefix=API_PREFIX)

    @app.get("/")
    async def read_root():
        """Return a simple message to indicate the API is working."""
        return {"message": "habitsync API is running"}

    return app


app = create_app()
