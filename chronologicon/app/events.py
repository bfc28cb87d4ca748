from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from .database import init_db
from .services.ingestion import get_ingestion_executor, shutdown_ingestion_executor
from .telemetry import flush_telemetry

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the ingestion executor on startup; drain the executor on shutdown."""
    init_db()
    get_ingestion_executor()
    logger.info("Chronologicon started", app=app.title)

    yield

    logger.info("Waiting for running ingestion jobs")
    shutdown_ingestion_executor(wait=True)
    flush_telemetry()
    logger.info("Chronologicon stopped")
