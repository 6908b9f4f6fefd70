"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from draftsign import __version__
from draftsign.api.dependencies import build_controller, build_gateway
from draftsign.config import get_settings
from draftsign.exceptions import DraftSignError
from draftsign.logging_config import configure_logging
from draftsign.models.api import HealthResponse

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the persistence gateway on startup and close it on shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.environment == "production")
    logger.info(
        "application_starting",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )

    gateway = build_gateway(settings)
    await gateway.open()
    controller = build_controller(gateway)
    app.state.controller = controller

    yield

    logger.info("application_shutting_down")
    controller.sequencer.close()
    await gateway.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="DraftSign API",
        description="AI-assisted contract drafting and e-signature",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DraftSignError)
    async def draftsign_error_handler(request: Request, exc: DraftSignError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request_rejected",
            path=request.url.path,
            method=request.method,
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": "internal_error",
                "detail": str(exc) if settings.debug else None,
            },
        )

    from draftsign.api.routes import contracts, signing

    app.include_router(contracts.router, prefix="/api/v1/contracts", tags=["contracts"])
    app.include_router(signing.router, prefix="/api/v1/signing", tags=["signing"])

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Health check endpoint."""
        controller = getattr(request.app.state, "controller", None)
        if controller is None:
            return HealthResponse(status="starting")

        storage_ok = await controller.gateway.health_check()
        redis_ok = controller.sequencer.health_check()
        llm_status = controller.drafting.llm.health_check()

        return HealthResponse(
            status="healthy" if storage_ok and redis_ok else "degraded",
            services={
                "storage": storage_ok,
                "redis": redis_ok,
                "llm": llm_status,
            },
        )

    @app.get("/")
    async def root() -> dict:
        """Root endpoint."""
        return {
            "name": "DraftSign API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


# Create default app instance
app = create_app()
