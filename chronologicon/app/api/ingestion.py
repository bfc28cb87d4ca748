from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from ..models.api import (
    IngestionRequest,
    IngestionResponse,
    IngestionStatusResponse,
)
from ..services.errors import JobNotFound
from ..services.ingestion import IngestionService, get_ingestion_service
from ..storage.job_store import IngestionJob
from ..utils.exceptions import to_http_exception

router = APIRouter()


def _accepted(job: IngestionJob) -> IngestionResponse:
    return IngestionResponse(
        job_id=job.job_id,
        message=f"Check /api/events/ingestion-status/{job.job_id} for progress",
    )


@router.post("/ingest", response_model=IngestionResponse, status_code=status.HTTP_202_ACCEPTED)
def ingest_file(
    request: Optional[IngestionRequest] = None,
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestionResponse:
    if request is None or not request.file_path or not request.file_path.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="file_path is required",
        )
    return _accepted(service.submit(request.file_path.strip()))


@router.post("/ingest/upload", response_model=IngestionResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_upload(
    file: UploadFile = File(...),
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestionResponse:
    """Store an uploaded file server-side, then ingest it like a path submission."""
    return _accepted(await service.submit_upload(file))


@router.get("/ingestion-status/{job_id}", response_model=IngestionStatusResponse)
def get_ingestion_status(
    job_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestionStatusResponse:
    try:
        job = service.get_job(job_id)
    except JobNotFound as exc:
        raise to_http_exception(exc) from exc
    return IngestionStatusResponse(**job.snapshot())
