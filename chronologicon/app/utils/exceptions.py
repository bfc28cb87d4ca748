import logging

from fastapi import HTTPException

from ..services.errors import WorkflowException, WorkflowSeverity

LOGGER = logging.getLogger("chronologicon.api.errors")


def to_http_exception(exc: WorkflowException) -> HTTPException:
    """Translate a domain error into the response FastAPI renders as ``detail``."""
    if exc.error.severity is WorkflowSeverity.CRITICAL:
        LOGGER.error(
            "Workflow invariant broken: %s",
            exc.error.message,
            extra={"component": exc.error.component.value, "code": exc.error.code},
        )
    return HTTPException(status_code=exc.status_code, detail=exc.error.to_dict())
