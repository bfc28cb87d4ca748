import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..models.api import InfluenceResponse, OverlapResponse, TemporalGapResponse
from ..services.errors import WorkflowException
from ..services.insights import InsightsService, get_insights_service
from ..storage.event_store import EventFilter
from ..utils.exceptions import to_http_exception

LOGGER = logging.getLogger("chronologicon.api.insights")

router = APIRouter()


@router.get("/insights/overlapping-events", response_model=OverlapResponse)
def overlapping_events(
    service: InsightsService = Depends(get_insights_service),
    start_date_after: Optional[datetime] = Query(None),
    end_date_before: Optional[datetime] = Query(None),
) -> OverlapResponse:
    try:
        payload = service.overlapping_events(
            EventFilter(start_after=start_date_after, end_before=end_date_before)
        )
    except Exception as exc:
        LOGGER.exception("Overlap detection failed")
        raise HTTPException(status_code=500, detail="Something went wrong") from exc
    return OverlapResponse.model_validate(payload)


@router.get("/insights/temporal-gaps", response_model=TemporalGapResponse)
def temporal_gaps(
    service: InsightsService = Depends(get_insights_service),
    start_date_after: Optional[datetime] = Query(None),
    end_date_before: Optional[datetime] = Query(None),
) -> TemporalGapResponse:
    try:
        payload = service.temporal_gaps(
            EventFilter(start_after=start_date_after, end_before=end_date_before)
        )
    except Exception as exc:
        LOGGER.exception("Gap detection failed")
        raise HTTPException(status_code=500, detail="Something went wrong") from exc
    return TemporalGapResponse.model_validate(payload)


@router.get("/insights/event-influence", response_model=InfluenceResponse)
def event_influence(
    source: str = Query(..., min_length=1),
    target: str = Query(..., min_length=1),
    service: InsightsService = Depends(get_insights_service),
) -> InfluenceResponse:
    try:
        result = service.event_influence(source, target)
    except WorkflowException as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        LOGGER.exception("Influence search failed", extra={"source": source, "target": target})
        raise HTTPException(status_code=500, detail="Something went wrong") from exc
    return InfluenceResponse(total_duration_minutes=result.total_duration_minutes, path=result.path)
