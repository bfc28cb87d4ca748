"""Probes for load balancers and orchestrators."""

import platform
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings
from ..database import get_engine
from ..storage.job_store import JobStatus, get_job_registry

router = APIRouter(tags=["Health"])

MEMORY_LIMIT_PERCENT = 90
DISK_LIMIT_PERCENT = 90


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
def health_check() -> dict:
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "timestamp": _now(),
    }


@router.get("/health/ready")
def readiness_check() -> JSONResponse:
    """Ready when the event store answers a ping and the host has memory and disk to spare.

    Any failed check turns the response into a 503 with a ``warnings`` list.
    """
    warnings: list[str] = []
    jobs = get_job_registry().list_jobs()
    report: dict = {
        "timestamp": _now(),
        "jobs": {
            "tracked": len(jobs),
            "processing": sum(1 for job in jobs if job.status is JobStatus.PROCESSING),
        },
    }

    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        report["database"] = "reachable"
    except SQLAlchemyError as exc:
        report["database"] = {"error": str(exc)}
        warnings.append("Event store unreachable")

    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")
    report["resources"] = {
        "memory_percent": memory.percent,
        "memory_available_mb": round(memory.available / 2**20, 2),
        "disk_percent": disk.percent,
        "disk_free_gb": round(disk.free / 2**30, 2),
    }
    if memory.percent > MEMORY_LIMIT_PERCENT:
        warnings.append("High memory usage")
    if disk.percent > DISK_LIMIT_PERCENT:
        warnings.append("Low disk space")

    report["status"] = "degraded" if warnings else "ready"
    if warnings:
        report["warnings"] = warnings
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if warnings else status.HTTP_200_OK,
        content=report,
    )


@router.get("/health/live")
def liveness_check() -> dict:
    process = psutil.Process()
    return {
        "status": "alive",
        "timestamp": _now(),
        "uptime_seconds": round(datetime.now(timezone.utc).timestamp() - process.create_time(), 1),
        "python_version": platform.python_version(),
    }
