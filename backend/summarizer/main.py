"""
Summarization service - FastAPI application entry point
"""
import math
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from summarizer import __version__
from summarizer.core.config import settings
from summarizer.core.container import ServiceContainer
from summarizer.core.logging import setup_logging
from summarizer.api.v1 import models as models_router
from summarizer.api.v1 import summarize as summarize_router
from summarizer.api.v1 import usage as usage_router
from summarizer.utils.errors import ErrorKind, InputValidationError, SummarizationError
from summarizer.utils.time_utils import utc_now

setup_logging()
logger = structlog.get_logger()

STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.EXTERNAL_API: 502,
    ErrorKind.NETWORK: 503,
    ErrorKind.DATABASE: 503,
    ErrorKind.PROCESSING: 500,
    ErrorKind.UNKNOWN: 500,
}


def retry_after_seconds(error: SummarizationError) -> Optional[int]:
    """Seconds until a rate-limited caller may retry"""
    until = error.details.get("blocked_until") or error.details.get("reset_time")
    if not until:
        return None
    if isinstance(until, str):
        until = datetime.fromisoformat(until)
    return max(1, math.ceil((until - utc_now()).total_seconds()))


def error_response(error: SummarizationError) -> JSONResponse:
    headers = {}
    if error.kind == ErrorKind.RATE_LIMIT:
        retry_after = retry_after_seconds(error)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=STATUS_CODES.get(error.kind, 500),
        content=error.to_dict(),
        headers=headers,
    )


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application

    Args:
        services: prebuilt service container; built from settings on startup when omitted
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Summarization, paraphrasing and text rewriting API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if services is not None:
        app.state.services = services

    app.include_router(summarize_router.router, prefix="/api/v1")
    app.include_router(usage_router.router, prefix="/api/v1")
    app.include_router(models_router.router, prefix="/api/v1")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SummarizationError)
    async def summarization_error_handler(request: Request, exc: SummarizationError):
        if not exc.correlation_id:
            # raised outside the pipeline (header checks, config parsing)
            exc = await request.app.state.services.error_monitor.handle_error(
                exc, {"operation": request.url.path},
            )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field_name = ".".join(str(part) for part in errors[0].get("loc", ())[1:]) if errors else "body"
        error = InputValidationError(f"Invalid request: {errors}", details={"field": field_name or "body"})
        return error_response(error)

    @app.on_event("startup")
    async def startup_event():
        if getattr(app.state, "services", None) is None:
            app.state.services = ServiceContainer.build()
        await app.state.services.registry.refresh_cache()
        logger.info("Application started", version=__version__)

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.services.shutdown()
        logger.info("Application stopped")

    @app.get("/")
    async def root():
        return {
            "message": f"{settings.APP_NAME} API",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check"""
        services: ServiceContainer = app.state.services
        return {
            "status": "healthy",
            "models": await services.registry.get_model_health(),
            "errors": services.error_monitor.get_error_stats(),
            "cache": await services.cache.get_stats(),
        }

    return app


app = create_app()
