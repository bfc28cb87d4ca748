"""Persistent event storage and process-local job tracking."""

from .event_store import EventFilter, EventStore, PageSpec, SortSpec, SqlEventStore, get_event_store
from .job_store import IngestionJob, JobRegistry, JobStatus, get_job_registry

__all__ = [
    "EventFilter",
    "EventStore",
    "PageSpec",
    "SortSpec",
    "SqlEventStore",
    "get_event_store",
    "IngestionJob",
    "JobRegistry",
    "JobStatus",
    "get_job_registry",
]
