from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from admitgate.app.core.config import settings
from admitgate.app.core.logging import get_logger, setup_logging
from admitgate.app.middleware.admission import AdmissionMiddleware
from admitgate.app.services.pipeline import AdmissionPipeline, build_pipeline


def create_app(pipeline: Optional[AdmissionPipeline] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        pipeline: Pre-built admission pipeline (built from settings if omitted)

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    # Configuration errors surface here, before the app accepts traffic
    pipeline = pipeline if pipeline is not None else build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Close the ledger backend on shutdown."""
        logger.info("Application startup complete", extra={"debug_mode": settings.debug})
        yield
        await pipeline.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Admission Gateway",
        description="Request admission with threat detection, address policy and sliding-window quotas",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(AdmissionMiddleware, pipeline=pipeline)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "ledger_backend": pipeline.ledger.backend.name}

    return app


# Create the application instance
app = create_app()
