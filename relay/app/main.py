"""
FastAPI application entry point — the hosting application.

Run with:
    uvicorn relay.app.main:app --port 8000

Or from the project root:
    python -m relay.app.main

The lifespan constructs exactly one DeliveryOrchestrator (the explicit
context object owning config, init state and enrichment) and closes it on
shutdown. Enrichment collection starts as soon as it is constructed.
"""

from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from relay.app.core.config import settings
from relay.app.core.logging_config import setup_logging, get_logger
from relay.app.core.errors import register_error_handlers
from relay.app.core.middleware import RequestLoggingMiddleware
from relay.app.core.health import HealthStatus, run_health_check
from relay.app.delivery.orchestrator import DeliveryOrchestrator

from relay.app.api.v1.deliver import router as deliver_router

setup_logging()
logger = get_logger(__name__)

OrchestratorFactory = Callable[[], DeliveryOrchestrator]


def create_app(orchestrator_factory: Optional[OrchestratorFactory] = None) -> FastAPI:
    """Build the app; ``orchestrator_factory`` is called once at startup."""
    factory = orchestrator_factory or (lambda: DeliveryOrchestrator(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        orchestrator = factory()
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            await orchestrator.aclose()
            logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Best-effort message relay: remote configuration with fallback "
            "retrieval, background origin enrichment, and ordered transport "
            "fallback with bounded waits."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)
    app.include_router(deliver_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Component health; 503 when the relay cannot deliver."""
        report = run_health_check(app.state.orchestrator)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Process liveness only; the orchestrator is not consulted."""
        return {"status": "alive"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("relay.app.main:app", host=settings.HOST, port=settings.PORT)
