from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from ..services.errors import InvalidJobTransition, JobNotFound


class JobStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionJob:
    """Progress record for one ingestion submission.

    Only the background task that owns the job mutates it. Status readers take
    unsynchronised snapshots; counters only ever grow, so a snapshot is at worst
    slightly stale.
    """

    job_id: str
    file_path: str
    status: JobStatus = JobStatus.PROCESSING
    processed_lines: int = 0
    error_lines: int = 0
    errors: List[str] = field(default_factory=list)
    submitted_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.status is not JobStatus.PROCESSING

    def record_processed(self) -> None:
        self.processed_lines += 1
        self.updated_at = _now()

    def record_line_error(self, line_number: int, message: str) -> None:
        self.error_lines += 1
        self.errors.append(f"Line {line_number}: {message}")
        self.updated_at = _now()

    def complete(self) -> None:
        self._transition(JobStatus.COMPLETED)

    def fail(self, message: str) -> None:
        self.errors.append(message)
        self._transition(JobStatus.FAILED)

    def _transition(self, status: JobStatus) -> None:
        if self.status is not JobStatus.PROCESSING:
            raise InvalidJobTransition(self.job_id, self.status.value, status.value)
        self.status = status
        self.updated_at = self.completed_at = _now()

    def snapshot(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "processed_lines": self.processed_lines,
            "error_lines": self.error_lines,
            "errors": list(self.errors),
            "file_path": self.file_path,
            "submitted_at": self.submitted_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


def new_job_id() -> str:
    return f"job-{uuid4().hex}"


class JobRegistry:
    """Process-wide map of job id to :class:`IngestionJob`.

    Jobs are kept for the lifetime of the process and lost on restart. A
    deployment with many submissions would need eviction and durable storage.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, IngestionJob] = {}
        self._lock = Lock()

    def create(self, file_path: str) -> IngestionJob:
        with self._lock:
            job_id = new_job_id()
            while job_id in self._jobs:
                job_id = new_job_id()
            job = IngestionJob(job_id=job_id, file_path=file_path)
            self._jobs[job_id] = job
        return job

    def get(self, job_id: str) -> IngestionJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(self) -> List[IngestionJob]:
        with self._lock:
            return list(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)


@lru_cache(maxsize=1)
def get_job_registry() -> JobRegistry:
    return JobRegistry()


def reset_job_registry() -> None:
    get_job_registry.cache_clear()
