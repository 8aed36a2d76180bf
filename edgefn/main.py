from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI

from .core.config import settings
from .routers import functions, metrics
from .services.controller import EdgeFunctionsController

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(controller: Optional[EdgeFunctionsController] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if controller is None:
            from .db.session import SessionLocal, init_db

            # Create database tables
            init_db()
            app.state.controller = EdgeFunctionsController.from_settings(settings, SessionLocal)
        else:
            app.state.controller = controller
        app.state.controller.start()
        logger.info("Edge functions controller started")
        try:
            yield
        finally:
            app.state.controller.close()
            logger.info("Edge functions controller stopped")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Deploy, invoke and meter scale-to-zero functions on Knative clusters",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(functions.router)
    app.include_router(functions.maintenance_router)
    app.include_router(metrics.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to the Edge Functions Controller API",
            "version": "1.0.0",
            "default_region": settings.DEFAULT_REGION,
            "features": [
                "Knative scale-to-zero deployments",
                "Multi-region fan-out",
                "Synchronous invocation with trace propagation",
                "Latency percentiles and cost estimates",
            ],
        }

    return app


app = create_app()
