"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .database import init_db, close_db
from .routers import scans_router, issues_router
from .services.scheduler import scheduler_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting PDP Watch")

    await init_db()
    logger.info("Database initialized")

    scheduler_service.start()

    yield

    scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="PDP Watch",
        description="Product page monitoring - scans, issue tracking and alerts",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(scans_router)
    app.include_router(issues_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "scans_in_flight": len(scheduler_service.orchestrator.guard.in_flight()),
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
