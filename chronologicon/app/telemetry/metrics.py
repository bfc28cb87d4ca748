"""OpenTelemetry instruments for ingestion and analytics."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from opentelemetry import metrics

_meter = metrics.get_meter("chronologicon.ingestion")

_JOB_STATUS_TRANSITIONS = _meter.create_counter(
    "ingestion.job.status_transitions",
    unit="1",
    description="Lifecycle transitions for ingestion jobs",
)

_LINE_OUTCOMES = _meter.create_counter(
    "ingestion.lines",
    unit="1",
    description="Ingested lines by outcome (processed, duplicate, error)",
)

_JOB_DURATION = _meter.create_histogram(
    "ingestion.job.duration",
    unit="s",
    description="Wall time spent processing one ingestion file",
)

_ANALYTICS_DURATION = _meter.create_histogram(
    "insights.duration",
    unit="s",
    description="Time taken to answer an analytics query",
)


def record_job_transition(previous: str | None, new: str) -> None:
    # Job ids stay on spans and logs; as metric attributes they would mint a series per job.
    attributes = {"to": new}
    if previous:
        attributes["from"] = previous
    _JOB_STATUS_TRANSITIONS.add(1, attributes)


def record_line_outcome(outcome: str) -> None:
    _LINE_OUTCOMES.add(1, {"outcome": outcome})


@contextmanager
def record_job_duration() -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        _JOB_DURATION.record(time.perf_counter() - start)


@contextmanager
def record_analytics_duration(operation: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        _ANALYTICS_DURATION.record(time.perf_counter() - start, {"operation": operation})


__all__ = [
    "record_job_transition",
    "record_line_outcome",
    "record_job_duration",
    "record_analytics_duration",
]
