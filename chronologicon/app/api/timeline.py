import logging

from fastapi import APIRouter, Depends, HTTPException

from ..models.api import TimelineNodeModel
from ..services.errors import WorkflowException
from ..services.timeline import TimelineService, get_timeline_service
from ..utils.exceptions import to_http_exception

LOGGER = logging.getLogger("chronologicon.api.timeline")

router = APIRouter()


@router.get("/timeline/{root_event_id}", response_model=TimelineNodeModel)
def get_timeline(
    root_event_id: str,
    service: TimelineService = Depends(get_timeline_service),
) -> TimelineNodeModel:
    """
    Returns the event tree rooted at ``root_event_id``, children nested under
    their parent.
    """
    try:
        tree = service.build(root_event_id)
    except WorkflowException as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        LOGGER.exception("Timeline build failed", extra={"root_event_id": root_event_id})
        raise HTTPException(status_code=500, detail="Something went wrong") from exc
    return TimelineNodeModel.model_validate(tree.to_dict())
