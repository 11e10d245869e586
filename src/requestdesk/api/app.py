"""FastAPI application factory.

Creates and configures the ASGI application: builds the
:class:`RequestDesk`, starts and stops it with the app lifespan, installs
the admin key middleware, and maps domain errors to HTTP responses.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from requestdesk import __version__
from requestdesk.api import routes
from requestdesk.api.auth import AdminKeyMiddleware
from requestdesk.core import errors
from requestdesk.core.config import RequestDeskConfig
from requestdesk.core.desk import RequestDesk
from requestdesk.observability.logging import configure_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from requestdesk.agents.base import PlayoutAgent
    from requestdesk.core.clock import Clock
    from requestdesk.storage.base import RequestRepository

logger = logging.getLogger(__name__)


def _error(status_code: int, content: dict[str, object]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, **content})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(errors.RequestValidationError)
    async def _validation(_: Request, exc: errors.RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, {"error": exc.code, "message": str(exc)})

    @app.exception_handler(errors.ClientBlockedError)
    async def _blocked(_: Request, exc: errors.ClientBlockedError) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, exc.to_payload())

    @app.exception_handler(errors.SubmissionRejected)
    async def _rejected(_: Request, exc: errors.SubmissionRejected) -> JSONResponse:
        return _error(status.HTTP_429_TOO_MANY_REQUESTS, exc.to_payload())

    @app.exception_handler(errors.RequestNotFoundError)
    async def _not_found(_: Request, exc: errors.RequestNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, {"message": str(exc)})

    @app.exception_handler(errors.InvalidTransitionError)
    async def _conflict(_: Request, exc: errors.InvalidTransitionError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, {"message": str(exc)})


def create_app(
    config: RequestDeskConfig | None = None,
    agent: PlayoutAgent | None = None,
    repository: RequestRepository | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Build the configured FastAPI instance."""
    config = config or RequestDeskConfig.from_env()
    desk = RequestDesk(config=config, agent=agent, repository=repository, clock=clock)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await desk.start()
        logger.info("RequestDesk %s started (storage=%s)", __version__, config.storage)
        try:
            yield
        finally:
            await desk.stop()

    app = FastAPI(
        title="RequestDesk",
        description=(
            "Listener song requests with announcer moderation and automatic "
            "placement into playout request slots."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.desk = desk

    app.add_middleware(AdminKeyMiddleware, admin_key=config.admin_key)
    _install_error_handlers(app)
    app.include_router(routes.router)
    return app


def main() -> None:
    """Entry-point for the ``requestdesk`` CLI."""
    config = RequestDeskConfig.from_env()
    configure_logging(log_level=config.log_level, json_format=config.log_json)
    uvicorn.run(
        "requestdesk.api.app:create_app",
        factory=True,
        host=os.environ.get("REQUESTDESK_HOST", "0.0.0.0"),
        port=int(os.environ.get("REQUESTDESK_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
