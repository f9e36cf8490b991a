"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from media_ingest.api.uploads import router as uploads_router
from media_ingest.app_logging import configure_logging
from media_ingest.containers import AppContainer
from media_ingest.domain.errors import IngestionError

_STATUS_BY_KIND = {
    "InvalidRequest": status.HTTP_400_BAD_REQUEST,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "NotReady": status.HTTP_409_CONFLICT,
    "ExternalFailure": status.HTTP_502_BAD_GATEWAY,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(uploads_router)

    @app.exception_handler(IngestionError)
    async def ingestion_error(_request: Request, exc: IngestionError) -> JSONResponse:
        if exc.kind == "ExternalFailure":
            logger.warning("External failure: %s", exc.message)
        return _failure(
            _STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            exc.kind,
            exc.message,
            exc.retryable,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _failure(
            status.HTTP_400_BAD_REQUEST,
            "InvalidRequest",
            _validation_message(exc),
            retryable=False,
        )

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Report whether the session store is reachable."""
        state_container: AppContainer = request.app.state.container
        if state_container.sessions.ping():
            return JSONResponse({"success": True, "sessionStore": "connected"})
        return JSONResponse(
            {"success": False, "sessionStore": "disconnected"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return app


def _failure(
    status_code: int, kind: str, message: str, retryable: bool
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "error": {"kind": kind, "message": message, "retryable": retryable},
        },
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "invalid value"))
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {message}" if location else message
