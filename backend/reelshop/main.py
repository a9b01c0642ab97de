"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from reelshop.core.config import Settings, settings as default_settings
from reelshop.core.logging import setup_logging
from reelshop.core.metrics import get_content_type, get_metrics, set_app_info
from reelshop.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from reelshop.core.tracing import setup_tracing, shutdown_tracing
from reelshop.modules.compression.router import router as compression_router
from reelshop.modules.storage_mode.router import router as storage_mode_router
from reelshop.runtime import MediaRuntime

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 600.0


def create_app(
    runtime: Optional[MediaRuntime] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application.

    Args:
        runtime: Prebuilt runtime; built from settings at startup when omitted
        settings: Settings override, defaults to the environment
    """
    s = settings or default_settings
    environment = "development" if s.DEBUG else s.ENVIRONMENT

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(
            level="DEBUG" if s.DEBUG else s.LOG_LEVEL,
            json_format=s.LOG_JSON,
        )
        setup_tracing(
            service_name=s.PROJECT_NAME,
            service_version=s.VERSION,
            environment=environment,
            otlp_endpoint=s.OTLP_ENDPOINT,
            enable_console_export=s.DEBUG,
        )
        set_app_info(version=s.VERSION, environment=environment)

        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = MediaRuntime.from_settings(s)
        app.state.runtime.ensure_directories()
        try:
            yield
        finally:
            await app.state.runtime.aclose(timeout=SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
            shutdown_tracing()

    app = FastAPI(
        title=s.PROJECT_NAME,
        version=s.VERSION,
        description="Media ingestion: video compression, CDN storage and storage mode administration.",
        openapi_url=f"{s.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TracingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(storage_mode_router, prefix=s.API_V1_PREFIX)
    app.include_router(compression_router, prefix=s.API_V1_PREFIX)

    # Local-mode assets; remote assets are served by the CDN
    app.mount(
        s.UPLOADS_URL_PREFIX,
        StaticFiles(directory=s.UPLOADS_DIR, check_dir=False),
        name="uploads",
    )
    return app


app = create_app()
