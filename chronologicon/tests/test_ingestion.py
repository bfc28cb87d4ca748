from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path

import pytest

from chronologicon.app.config import Settings
from chronologicon.app.services.ingestion import (
    IngestionService,
    LineRejected,
    duration_minutes,
    parse_line,
    parse_timestamp,
)
from chronologicon.app.storage.job_store import JobRegistry, JobStatus
from chronologicon.app.telemetry import metrics as metrics_module


@pytest.fixture()
def executor():
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="test-ingestion")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture()
def service(event_store, executor, tmp_path: Path) -> IngestionService:
    settings = Settings(ingestion_upload_dir=tmp_path / "uploads")
    return IngestionService(
        event_store=event_store,
        job_registry=JobRegistry(),
        executor=executor,
        settings=settings,
    )


def test_parse_timestamp_normalises_to_naive_utc() -> None:
    assert parse_timestamp("2023-01-01T10:00:00.000Z") == datetime(2023, 1, 1, 10, 0)
    assert parse_timestamp("2023-01-01T12:00:00+02:00") == datetime(2023, 1, 1, 10, 0)
    assert parse_timestamp(" 2023-01-01T10:00:00 ") == datetime(2023, 1, 1, 10, 0)


@pytest.mark.parametrize("raw, message", [("", "missing timestamp"), ("not-a-date", "invalid timestamp 'not-a-date'")])
def test_parse_timestamp_rejects_bad_values(raw: str, message: str) -> None:
    with pytest.raises(LineRejected, match=message):
        parse_timestamp(raw)


def test_duration_minutes_keeps_fractions_and_sign() -> None:
    start = datetime(2023, 1, 1, 10, 0)

    assert duration_minutes(start, datetime(2023, 1, 1, 11, 30)) == 90.0
    assert duration_minutes(start, datetime(2023, 1, 1, 10, 0, 30)) == 0.5
    assert duration_minutes(start, datetime(2023, 1, 1, 9, 0)) == -60.0


def test_parse_line_maps_fields() -> None:
    parsed = parse_line(
        "e1 | Kickoff |2023-01-01T10:00:00Z|2023-01-01T11:30:00Z|NULL|High|First meeting|extra"
    )

    assert parsed.event_id == "e1"
    assert parsed.event_name == "Kickoff"
    assert parsed.parent_event_id is None
    assert parsed.duration_minutes == 90.0
    assert parsed.description == "First meeting"

    event = parsed.to_event()
    assert event.attributes == {"researchValue": "High"}
    assert event.duration_minutes == 90.0


def test_parse_line_null_token_is_exact() -> None:
    parsed = parse_line("e2|Child|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|null|Low|")

    assert parsed.parent_event_id == "null"


@pytest.mark.parametrize(
    "line, message",
    [
        ("e1|Kickoff|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL", "malformed"),
        ("|Kickoff|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|desc", "missing event id"),
        ("e1| |2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|desc", "missing event name"),
        ("e1|Kickoff|yesterday|2023-01-01T11:00:00Z|NULL|High|desc", "invalid timestamp"),
    ],
)
def test_parse_line_rejections(line: str, message: str) -> None:
    with pytest.raises(LineRejected, match=message):
        parse_line(line)


def test_process_file_ingests_valid_lines_and_records_errors(service, event_store, write_events_file) -> None:
    path = write_events_file(
        "root|Project|2023-01-01T00:00:00Z|2023-01-10T00:00:00Z|NULL|High|Whole project",
        "child|Design|2023-01-02T00:00:00Z|2023-01-03T00:00:00Z|root|Medium|Design work",
        "bad|Too short|2023-01-02T00:00:00Z",
        "",
        "late|Review|not-a-date|2023-01-05T00:00:00Z|root|Low|Review",
        "neg|Backwards|2023-01-05T00:00:00Z|2023-01-04T23:00:00Z|NULL|Low|Ends first",
    )
    job = service.job_registry.create(str(path))

    service.process_file(job, path)

    assert job.status is JobStatus.COMPLETED
    assert job.processed_lines == 3
    assert job.processed_lines + job.error_lines == 5
    assert job.error_lines == 2
    assert job.errors == [
        "Line 4: malformed (not enough fields)",
        "Line 6: invalid timestamp 'not-a-date'",
    ]
    assert event_store.get_by_id("child").parent_event_id == "root"
    assert event_store.get_by_id("root").parent_event_id is None
    assert event_store.get_by_id("neg").duration_minutes == -60.0
    assert event_store.get_by_id("late") is None


def test_duplicate_ids_count_as_processed_and_keep_first(service, event_store, write_events_file) -> None:
    path = write_events_file(
        "e1|First|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|one",
        "e1|Second|2023-02-01T10:00:00Z|2023-02-01T11:00:00Z|NULL|Low|two",
    )
    job = service.job_registry.create(str(path))

    service.process_file(job, path)

    assert job.processed_lines == 2
    assert job.error_lines == 0
    assert event_store.get_by_id("e1").event_name == "First"


def test_header_only_file_completes_empty(service, write_events_file) -> None:
    path = write_events_file()
    job = service.job_registry.create(str(path))

    service.process_file(job, path)

    assert job.status is JobStatus.COMPLETED
    assert (job.processed_lines, job.error_lines) == (0, 0)


def test_header_is_first_non_blank_line(service, event_store, write_events_file) -> None:
    path = write_events_file(
        "",
        "EVENT_ID|EVENT_NAME|START_DATE|END_DATE|PARENT_ID|RESEARCH_VALUE|DESCRIPTION",
        "e1|First|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|one",
        "short|Missing fields",
        header="",
    )
    job = service.job_registry.create(str(path))

    service.process_file(job, path)

    assert job.status is JobStatus.COMPLETED
    assert (job.processed_lines, job.error_lines) == (1, 1)
    # Line numbers count physical lines, blank ones included.
    assert job.errors == ["Line 5: malformed (not enough fields)"]
    assert event_store.get_by_id("e1").event_name == "First"


def test_unreadable_file_fails_job(service, tmp_path: Path) -> None:
    missing = tmp_path / "missing.txt"
    job = service.job_registry.create(str(missing))

    service.process_file(job, missing)

    assert job.status is JobStatus.FAILED
    assert job.processed_lines == 0
    assert len(job.errors) == 1
    assert job.errors[0].startswith("File read error:")


def test_store_rejection_becomes_line_error(service, write_events_file, monkeypatch: pytest.MonkeyPatch) -> None:
    original = service.event_store.upsert_if_absent

    def flaky_upsert(event):
        if event.event_id == "boom":
            raise RuntimeError("database unavailable")
        return original(event)

    monkeypatch.setattr(service.event_store, "upsert_if_absent", flaky_upsert)
    path = write_events_file(
        "boom|Broken|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|x",
        "fine|Works|2023-01-01T12:00:00Z|2023-01-01T13:00:00Z|NULL|High|y",
    )
    job = service.job_registry.create(str(path))

    service.process_file(job, path)

    assert job.status is JobStatus.COMPLETED
    assert job.errors == ["Line 2: database unavailable"]
    assert job.processed_lines == 1


def test_submit_returns_before_processing_finishes(service, executor, write_events_file, monkeypatch) -> None:
    path = write_events_file("e1|First|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|one")
    release = threading.Event()
    original = service._read_lines

    def gated_read(target):
        release.wait(timeout=5.0)
        return original(target)

    monkeypatch.setattr(service, "_read_lines", gated_read)

    job = service.submit(str(path))
    assert job.status is JobStatus.PROCESSING
    assert service.get_job(job.job_id) is job

    release.set()
    executor.shutdown(wait=True)

    assert job.status is JobStatus.COMPLETED
    assert job.processed_lines == 1


def test_unexpected_worker_error_fails_job(service, executor, write_events_file, monkeypatch) -> None:
    path = write_events_file("e1|First|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|one")

    def explode(job, line_number, line):
        raise KeyError("parser state")

    monkeypatch.setattr(service, "_ingest_line", explode)

    job = service.submit(str(path))
    executor.shutdown(wait=True)

    assert job.status is JobStatus.FAILED
    assert job.errors[-1].startswith("Unexpected ingestion error:")


class _RecordingInstrument:
    def __init__(self) -> None:
        self.attributes: list[dict] = []

    def add(self, amount, attributes=None) -> None:
        self.attributes.append(dict(attributes or {}))

    def record(self, amount, attributes=None) -> None:
        self.attributes.append(dict(attributes or {}))


def test_job_metrics_carry_no_job_id(service, write_events_file, tmp_path: Path, monkeypatch) -> None:
    transitions = _RecordingInstrument()
    durations = _RecordingInstrument()
    monkeypatch.setattr(metrics_module, "_JOB_STATUS_TRANSITIONS", transitions)
    monkeypatch.setattr(metrics_module, "_JOB_DURATION", durations)
    path = write_events_file("e1|First|2023-01-01T10:00:00Z|2023-01-01T11:00:00Z|NULL|High|one")

    completed = service.job_registry.create(str(path))
    service.process_file(completed, path)
    failed = service.job_registry.create(str(tmp_path / "missing.txt"))
    service.process_file(failed, tmp_path / "missing.txt")

    assert transitions.attributes == [
        {"from": "PROCESSING", "to": "COMPLETED"},
        {"from": "PROCESSING", "to": "FAILED"},
    ]
    assert durations.attributes == [{}, {}]
