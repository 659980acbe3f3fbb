"""MapWatch — FastAPI Application Entry Point.

Tiered island metrics collection, discovery listing tracking and
compaction, with a small read API on top.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from mapwatch.api.map_routes import router as map_router
from mapwatch.api.status_routes import router as status_router
from mapwatch.core.logging import get_logger
from mapwatch.database import init_db, test_connection
from mapwatch.scheduler.jobs import close_clients, start_scheduler, stop_scheduler

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 MapWatch starting up...")
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected, workers will fail")
    start_scheduler()
    yield
    stop_scheduler()
    await close_clients()
    logger.info("MapWatch shut down")


app = FastAPI(
    title="MapWatch",
    description="Tiered Fortnite island metrics collector with discovery listing tracking.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(map_router)
app.include_router(status_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "mapwatch",
        "version": "1.0.0",
    }
