from __future__ import annotations

import atexit
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from fastapi import UploadFile
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..config import Settings, get_settings
from ..models.event import HistoricalEvent
from ..storage.event_store import EventStore, get_event_store
from ..storage.job_store import IngestionJob, JobRegistry, get_job_registry
from ..telemetry.metrics import record_job_duration, record_job_transition, record_line_outcome
from ..utils.dates import as_naive_utc

LOGGER = logging.getLogger("chronologicon.services.ingestion")

EXPECTED_FIELDS = 7
_MILLISECONDS_PER_MINUTE = 60000

_tracer = trace.get_tracer(__name__)


class LineRejected(ValueError):
    """A data line that cannot become an event record."""


@dataclass(frozen=True)
class ParsedLine:
    event_id: str
    event_name: str
    start_date: datetime
    end_date: datetime
    parent_event_id: Optional[str]
    research_value: str
    description: str

    @property
    def duration_minutes(self) -> float:
        return duration_minutes(self.start_date, self.end_date)

    def to_event(self) -> HistoricalEvent:
        return HistoricalEvent(
            event_id=self.event_id,
            event_name=self.event_name,
            description=self.description,
            start_date=self.start_date,
            end_date=self.end_date,
            duration_minutes=self.duration_minutes,
            parent_event_id=self.parent_event_id,
            attributes={"researchValue": self.research_value},
        )


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp into a naive UTC datetime.

    A trailing ``Z`` is read as UTC; values without an offset are taken as UTC.
    """

    value = raw.strip()
    if not value:
        raise LineRejected("missing timestamp")
    if value[-1] in "zZ":
        value = f"{value[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise LineRejected(f"invalid timestamp {raw.strip()!r}") from exc
    return as_naive_utc(parsed)


def duration_minutes(start: datetime, end: datetime) -> float:
    # Whole milliseconds, matching the precision timestamps are compared at.
    return ((end - start) // timedelta(milliseconds=1)) / _MILLISECONDS_PER_MINUTE


def parse_line(line: str, *, delimiter: str = "|", null_parent_token: str = "NULL") -> ParsedLine:
    parts = line.split(delimiter)
    if len(parts) < EXPECTED_FIELDS:
        raise LineRejected("malformed (not enough fields)")
    event_id, event_name, start_raw, end_raw, parent_raw, research_value, description = (
        part.strip() for part in parts[:EXPECTED_FIELDS]
    )
    if not event_id:
        raise LineRejected("missing event id")
    if not event_name:
        raise LineRejected("missing event name")
    # No ordering check: an end before the start yields a negative duration.
    return ParsedLine(
        event_id=event_id,
        event_name=event_name,
        start_date=parse_timestamp(start_raw),
        end_date=parse_timestamp(end_raw),
        parent_event_id=None if parent_raw == null_parent_token else parent_raw,
        research_value=research_value,
        description=description,
    )


class IngestionService:
    def __init__(
        self,
        event_store: EventStore | None = None,
        job_registry: JobRegistry | None = None,
        executor: ThreadPoolExecutor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.logger = LOGGER
        self.settings = settings or get_settings()
        self.event_store = event_store or get_event_store()
        self.job_registry = job_registry or get_job_registry()
        self.executor = executor or get_ingestion_executor()

    def submit(self, file_path: str) -> IngestionJob:
        """Register a job and start processing ``file_path`` in the background."""

        job = self.job_registry.create(file_path)
        record_job_transition(None, job.status.value)
        with _tracer.start_as_current_span("ingestion.submit") as span:
            span.set_attribute("ingestion.job_id", job.job_id)
            span.set_attribute("ingestion.file_path", file_path)
            future = self.executor.submit(self._run_job, job, Path(file_path))
            future.add_done_callback(self._log_job_failure(job.job_id))
        self.logger.info("Ingestion job accepted", extra={"job_id": job.job_id, "file_path": file_path})
        return job

    async def submit_upload(self, file: UploadFile) -> IngestionJob:
        upload_dir = Path(self.settings.ingestion_upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        filename = Path(file.filename or "upload.txt").name
        target = upload_dir / f"{uuid4().hex}_{filename}"
        with open(target, "wb") as buffer:
            while content := await file.read(65536):
                buffer.write(content)
        return self.submit(str(target))

    def get_job(self, job_id: str) -> IngestionJob:
        return self.job_registry.get(job_id)

    def _log_job_failure(self, job_id: str):
        def _callback(future: Future) -> None:
            try:
                future.result()
            except Exception:  # pylint: disable=broad-except
                self.logger.exception("Unhandled ingestion worker failure", extra={"job_id": job_id})

        return _callback

    def _run_job(self, job: IngestionJob, path: Path) -> None:
        try:
            self.process_file(job, path)
        except Exception as exc:
            if not job.finished:
                self._fail(job, f"Unexpected ingestion error: {exc}")
            raise

    def process_file(self, job: IngestionJob, path: Path) -> IngestionJob:
        """Ingest every data line of ``path`` into the event store.

        Line 1 is a header. Each later line is handled independently: malformed
        lines, bad timestamps and store rejections are recorded on the job and
        processing moves on. Only an unreadable file fails the whole job.
        """

        with _tracer.start_as_current_span("ingestion.process_file") as span, record_job_duration():
            span.set_attribute("ingestion.job_id", job.job_id)
            try:
                lines = self._read_lines(path)
            except (OSError, UnicodeDecodeError) as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, description=str(exc)))
                self._fail(job, f"File read error: {exc}")
                return job

            header_seen = False
            for line_number, line in enumerate(lines, start=1):
                if not line.strip():
                    continue
                # The first non-blank line is the header, wherever it sits.
                if not header_seen:
                    header_seen = True
                    continue
                self._ingest_line(job, line_number, line)

            record_job_transition(job.status.value, "COMPLETED")
            job.complete()
            span.set_attribute("ingestion.processed_lines", job.processed_lines)
            span.set_attribute("ingestion.error_lines", job.error_lines)
            self.logger.info(
                "Ingestion job completed",
                extra={
                    "job_id": job.job_id,
                    "processed_lines": job.processed_lines,
                    "error_lines": job.error_lines,
                },
            )
        return job

    def _read_lines(self, path: Path) -> List[str]:
        return Path(path).read_text(encoding="utf-8").splitlines()

    def _ingest_line(self, job: IngestionJob, line_number: int, line: str) -> None:
        try:
            parsed = parse_line(
                line,
                delimiter=self.settings.ingestion_field_delimiter,
                null_parent_token=self.settings.ingestion_null_parent_token,
            )
        except LineRejected as exc:
            self._record_line_error(job, line_number, str(exc))
            return

        try:
            inserted = self.event_store.upsert_if_absent(parsed.to_event())
        except Exception as exc:  # pylint: disable=broad-except
            self._record_line_error(job, line_number, str(exc))
            return

        if not inserted:
            self.logger.debug(
                "Duplicate event id ignored",
                extra={"job_id": job.job_id, "line": line_number, "event_id": parsed.event_id},
            )
        record_line_outcome("processed" if inserted else "duplicate")
        job.record_processed()

    def _record_line_error(self, job: IngestionJob, line_number: int, message: str) -> None:
        job.record_line_error(line_number, message)
        record_line_outcome("error")
        self.logger.warning(
            "Rejected ingestion line: %s",
            message,
            extra={"job_id": job.job_id, "line": line_number},
        )

    def _fail(self, job: IngestionJob, message: str) -> None:
        record_job_transition(job.status.value, "FAILED")
        job.fail(message)
        self.logger.error("Ingestion job failed: %s", message, extra={"job_id": job.job_id})


_EXECUTOR_LOCK = Lock()
_EXECUTOR_INSTANCE: ThreadPoolExecutor | None = None


def get_ingestion_executor() -> ThreadPoolExecutor:
    global _EXECUTOR_INSTANCE
    with _EXECUTOR_LOCK:
        if _EXECUTOR_INSTANCE is None:
            settings = get_settings()
            _EXECUTOR_INSTANCE = ThreadPoolExecutor(
                max_workers=max(1, settings.ingestion_max_workers),
                thread_name_prefix="ingestion",
            )
    return _EXECUTOR_INSTANCE


def shutdown_ingestion_executor(wait: bool = True) -> None:
    global _EXECUTOR_INSTANCE
    with _EXECUTOR_LOCK:
        if _EXECUTOR_INSTANCE is None:
            return
        _EXECUTOR_INSTANCE.shutdown(wait=wait)
        _EXECUTOR_INSTANCE = None


atexit.register(shutdown_ingestion_executor)


def get_ingestion_service() -> IngestionService:
    return IngestionService()
