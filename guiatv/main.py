from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from guiatv.config import CustomSettings, settings as default_settings, setup_logging
from guiatv.dependencies import build_container
from guiatv.exceptions import FeedDecompressionError, MalformedFeedError, SourceUnavailableError
from guiatv.routers import SERVICE_NAME, SERVICE_VERSION, main_router
from guiatv.schemas import ErrorDetail, StandardErrorResponse


logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, exc: Exception) -> JSONResponse:
    payload = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code=code, message=str(exc), context={"type": type(exc).__name__}),
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def create_app(
    settings: CustomSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        settings: Settings to wire the services with (module settings by default)
        transport: Optional httpx transport for the feed client
    """
    app_settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        logger.info("Starting %s...", SERVICE_NAME)

        container = build_container(app_settings, transport=transport)
        try:
            await container.open()
        except Exception as e:
            logger.error("Failed to start %s: %s", SERVICE_NAME, e, exc_info=True)
            raise
        app.state.container = container
        logger.info("%s started successfully", SERVICE_NAME)

        yield

        logger.info("Shutting down %s...", SERVICE_NAME)
        try:
            await container.close()
        except Exception as e:
            logger.error("Error during document store shutdown: %s", e, exc_info=True)
        app.state.container = None
        logger.info("%s stopped", SERVICE_NAME)

    app = FastAPI(
        title=SERVICE_NAME,
        version=SERVICE_VERSION,
        lifespan=lifespan
    )

    app.include_router(main_router)

    @app.exception_handler(SourceUnavailableError)
    async def source_unavailable_handler(request: Request, exc: SourceUnavailableError):
        logger.error("Feed unavailable for %s %s: %s", request.method, request.url.path, exc)
        return _error_response(502, "SOURCE_UNAVAILABLE", exc)

    @app.exception_handler(FeedDecompressionError)
    async def decompression_handler(request: Request, exc: FeedDecompressionError):
        logger.error("Feed decompression failed for %s %s: %s", request.method, request.url.path, exc)
        return _error_response(502, "FEED_DECOMPRESSION_FAILED", exc)

    @app.exception_handler(MalformedFeedError)
    async def malformed_feed_handler(request: Request, exc: MalformedFeedError):
        logger.error("Malformed feed for %s %s: %s", request.method, request.url.path, exc)
        return _error_response(422, "MALFORMED_FEED", exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with details"""
        logger.error("Validation error for %s %s", request.method, request.url.path)
        logger.error("Validation details: %s", exc.errors())

        try:
            body = await request.body()
            logger.error("Request body: %s", body.decode('utf-8'))

        except (ValueError, UnicodeDecodeError, RuntimeError):
            logger.error("Could not read request body")

        # Create a properly serializable error response
        errors = []
        for error in exc.errors():
            error_dict = {
                "type": error.get("type"),
                "loc": error.get("loc"),
                "msg": error.get("msg"),
                "input": str(error.get("input", ""))[:100]
            }
            errors.append(error_dict)

        return JSONResponse(
            status_code=422,
            content={
                "detail": errors
            }
        )

    return app


setup_logging()
app = create_app()


def run() -> None:
    """Serve the application with uvicorn"""
    import uvicorn

    uvicorn.run(app, host=default_settings.host, port=default_settings.port)


if __name__ == "__main__":
    run()
