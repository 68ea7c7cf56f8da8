"""FastAPI application entry point.

This module creates and configures the FastAPI application instance with:
- Middleware (CORS, RequestID, Timing, ErrorLogging)
- Exception handlers (KBAssistantException, HTTPException, ValidationError, general)
- API routers (v1)
- Startup/shutdown lifecycle (database, embedding cache, job worker)
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kb_assistant import __version__
from kb_assistant.api.v1.router import router as v1_router
from kb_assistant.config import Settings, get_settings
from kb_assistant.database.connection import close_engine, create_engine, init_db
from kb_assistant.middleware import setup_middleware
from kb_assistant.services.container import Services, build_services
from kb_assistant.utils.errors import KBAssistantException, RateLimitError
from kb_assistant.utils.logging import get_logger, log_error, setup_logging

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Startup, in order: logging, database schema, service container,
    embedding cache warm-up, job handler registration, interrupted-job
    recovery and the worker loop. Shutdown stops the worker before the
    engine is disposed.
    """
    setup_logging(app.state.settings)
    settings: Settings = app.state.settings
    services: Optional[Services] = app.state.services
    owns_services = services is None

    logger.info("Starting kb-assistant service...")
    try:
        if owns_services:
            engine = create_engine(settings)
            await init_db(engine)
            services = build_services(settings, engine)
            app.state.services = services
            logger.info("Services initialized")

        if settings.cache.load_on_startup:
            await services.cache.bulk_load(batch_size=settings.retrieval.score_batch_size)

        services.register_job_handlers()

        if settings.jobs.worker_enabled:
            if settings.jobs.requeue_interrupted:
                await services.job_queue.recover_interrupted_jobs()
            services.job_queue.start()
        else:
            logger.info("Job worker disabled (JOB_WORKER_ENABLED=false)")

        logger.info("kb-assistant service started successfully")
        yield
    except Exception as e:
        logger.error(f"Failed to start kb-assistant service: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down kb-assistant service...")
        if services is not None:
            try:
                await services.job_queue.stop()
            except Exception as e:
                logger.error(f"Error stopping job worker: {e}", exc_info=True)
            if owns_services:
                await close_engine(services.engine)
                app.state.services = None
        logger.info("kb-assistant service shut down")


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(KBAssistantException)
    async def app_exception_handler(request: Request, exc: KBAssistantException) -> JSONResponse:
        """Handle application exceptions."""
        if exc.status_code >= 500:
            log_error(
                exc,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": exc.status_code,
                    "code": exc.code,
                },
            )
        else:
            logger.warning(f"{exc.status_code} {exc.code}: {request.method} {request.url.path} - {exc.message}")
        headers = None
        if isinstance(exc, RateLimitError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions (404, 401, etc.)."""
        if exc.status_code < 500:
            logger.warning(f"{exc.status_code}: {request.method} {request.url.path}")
        else:
            log_error(
                exc,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": exc.status_code,
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.detail,
                    "code": "HTTP_ERROR",
                    "status_code": exc.status_code,
                    "details": {},
                }
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        logger.warning(
            f"Validation error: {request.method} {request.url.path}",
            extra={"fields": {"validation_errors": errors}},
        )
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Validation failed",
                    "code": "VALIDATION_ERROR",
                    "status_code": 422,
                    "details": {"validation_errors": errors},
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle all other unhandled exceptions."""
        log_error(
            exc,
            context={"method": request.method, "path": request.url.path, "unhandled": True},
        )
        # Don't expose internal error details in production
        message = "An internal server error occurred" if settings.is_production else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "message": message,
                    "code": "INTERNAL_SERVER_ERROR",
                    "status_code": 500,
                    "details": {} if settings.is_production else {"exception_type": type(exc).__name__},
                }
            },
        )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; defaults to the global settings
        services: Pre-built service container; when given, the lifespan
            neither creates nor disposes the database engine
    """
    if settings is None:
        settings = services.settings if services is not None else get_settings()

    app = FastAPI(
        title="Knowledge-Base Assistant",
        description=(
            "Retrieval-augmented chat assistant: document ingestion, similarity search "
            "and streamed answers over server-sent events."
        ),
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "chat", "description": "Streamed chat over the knowledge base"},
            {"name": "knowledge", "description": "Knowledge-base document management and search"},
            {"name": "health", "description": "Liveness and readiness probes"},
        ],
    )
    app.state.settings = settings
    app.state.services = services
    app.state.started_at = time.time()

    setup_middleware(app, settings.cors)
    register_exception_handlers(app, settings)
    app.include_router(v1_router)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "kb_assistant.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload and settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
