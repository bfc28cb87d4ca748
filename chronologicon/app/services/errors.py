"""Structured errors raised by the jobs, timeline and insights services.

Each exception carries a :class:`WorkflowError` that the API layer returns as
the response ``detail``, so clients see a stable ``code`` next to the message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


class WorkflowComponent(str, Enum):
    JOBS = "jobs"
    TIMELINE = "timeline"
    INSIGHTS = "insights"


class WorkflowSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class WorkflowError:
    component: WorkflowComponent
    code: str
    message: str
    severity: WorkflowSeverity = WorkflowSeverity.ERROR
    context: Dict[str, Any] = field(default_factory=dict)
    raised_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "component": self.component.value,
            "severity": self.severity.value,
            "raised_at": self.raised_at.isoformat(),
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload


_NOT_FOUND_CODES = frozenset({"EVENT_NOT_FOUND", "JOB_NOT_FOUND", "NO_PATH"})


def http_status_for_error(error: WorkflowError) -> int:
    """Status used when an exception does not name one itself."""

    if error.severity is WorkflowSeverity.CRITICAL:
        return 500
    if error.code in _NOT_FOUND_CODES:
        return 404
    return 400


class WorkflowException(Exception):
    def __init__(self, error: WorkflowError, *, status_code: int | None = None) -> None:
        super().__init__(error.message)
        self.error = error
        self.status_code = status_code or http_status_for_error(error)


class EventNotFound(WorkflowException):
    """Raised when a requested event, timeline root or influence source is missing."""

    def __init__(self, event_id: str, *, component: WorkflowComponent, message: str = "Event not found") -> None:
        super().__init__(
            WorkflowError(
                component=component,
                code="EVENT_NOT_FOUND",
                message=message,
                severity=WorkflowSeverity.WARNING,
                context={"event_id": event_id},
            )
        )
        self.event_id = event_id


class NoPathFound(WorkflowException):
    """Raised when influence traversal exhausts descendants without reaching the target."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            WorkflowError(
                component=WorkflowComponent.INSIGHTS,
                code="NO_PATH",
                message="No path found between source and target",
                severity=WorkflowSeverity.INFO,
                context={"source": source, "target": target},
            )
        )


class TimelineCycleError(WorkflowException):
    """Raised when a parent chain loops back onto an ancestor."""

    def __init__(self, event_id: str, ancestors: list[str]) -> None:
        super().__init__(
            WorkflowError(
                component=WorkflowComponent.TIMELINE,
                code="TIMELINE_CYCLE",
                message=f"Parent cycle detected at event {event_id}",
                context={"event_id": event_id, "ancestors": ancestors},
            ),
            status_code=409,
        )


class TimelineTooDeep(WorkflowException):
    """Raised when a timeline nests deeper than the configured limit."""

    def __init__(self, root_event_id: str, max_depth: int) -> None:
        super().__init__(
            WorkflowError(
                component=WorkflowComponent.TIMELINE,
                code="TIMELINE_TOO_DEEP",
                message=f"Timeline exceeds {max_depth} levels",
                context={"root_event_id": root_event_id, "max_depth": max_depth},
            ),
            status_code=422,
        )


class JobNotFound(WorkflowException):
    def __init__(self, job_id: str) -> None:
        super().__init__(
            WorkflowError(
                component=WorkflowComponent.JOBS,
                code="JOB_NOT_FOUND",
                message="Job not found",
                severity=WorkflowSeverity.WARNING,
                context={"job_id": job_id},
            )
        )


class InvalidJobTransition(WorkflowException):
    """Raised when a job status would move backwards or leave a terminal state."""

    def __init__(self, job_id: str, current: str, requested: str) -> None:
        super().__init__(
            WorkflowError(
                component=WorkflowComponent.JOBS,
                code="INVALID_TRANSITION",
                message=f"Job {job_id} cannot move from {current} to {requested}",
                severity=WorkflowSeverity.CRITICAL,
                context={"job_id": job_id, "from": current, "to": requested},
            )
        )


__all__ = [
    "WorkflowComponent",
    "WorkflowSeverity",
    "WorkflowError",
    "WorkflowException",
    "EventNotFound",
    "NoPathFound",
    "TimelineCycleError",
    "TimelineTooDeep",
    "JobNotFound",
    "InvalidJobTransition",
    "http_status_for_error",
]
