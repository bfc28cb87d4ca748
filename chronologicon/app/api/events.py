import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import get_settings
from ..models.api import SearchResponse
from ..services.search import SearchService, get_search_service

LOGGER = logging.getLogger("chronologicon.api.events")

router = APIRouter()


@router.get("/search", response_model=SearchResponse)
def search_events(
    service: SearchService = Depends(get_search_service),
    name: Optional[str] = Query(None, description="Case-insensitive substring of the event name"),
    start_date_after: Optional[datetime] = Query(None),
    end_date_before: Optional[datetime] = Query(None),
    sort_by: str = Query("start_date", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> SearchResponse:
    settings = get_settings()
    try:
        result = service.search(
            name=name,
            start_date_after=start_date_after,
            end_date_before=end_date_before,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=min(limit or settings.search_default_limit, settings.search_max_limit),
        )
    except Exception as exc:
        LOGGER.exception("Event search failed")
        raise HTTPException(status_code=500, detail="Something went wrong") from exc
    return SearchResponse(
        total_events=result.total_events,
        page=result.page,
        limit=result.limit,
        events=result.events,
    )
