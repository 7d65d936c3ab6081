from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config import config # initialize logging
from data.database import create_tables
from api.experiment_routes import experiment_router
from api.events_routes import events_router
from api.sweep_routes import sweep_router

import contextlib
import logging
import middleware

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles startup and shutdown events for the application.
    Code before 'yield' runs on startup, code after it on shutdown.
    """
    try:
        logger.info("Application starting up: initializing database schema...")
        create_tables()
        logger.info("Database tables initialized successfully.")
    except Exception as e:
        logger.error("Failed to initialize database tables: %s", e)

    yield

    logger.info("Application shutting down.")

app = FastAPI(
    lifespan=lifespan,
    title="Experiment Lifecycle Controller",
    version="1.0.0",
    description="Runs A/B experiment lifecycle sweeps: scheduled start, expiry, winner declaration and auto-deploy, low-performance pause."
)

app.add_middleware(middleware.RequestIDMiddleware)

app.include_router(experiment_router)
app.include_router(events_router)
app.include_router(sweep_router)


@app.get("/health")
def health_check():
    return JSONResponse(content={"status": "healthy"}, status_code=200)
