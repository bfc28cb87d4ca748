from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402

from chronologicon.app import config  # noqa: E402
from chronologicon.app.database import build_engine, get_session_factory, init_db, reset_engine_cache  # noqa: E402
from chronologicon.app.models.event import HistoricalEvent  # noqa: E402
from chronologicon.app.services.ingestion import (  # noqa: E402
    duration_minutes,
    parse_timestamp,
    shutdown_ingestion_executor,
)
from chronologicon.app.storage.event_store import SqlEventStore, reset_event_store  # noqa: E402
from chronologicon.app.storage.job_store import reset_job_registry  # noqa: E402

EventFactory = Callable[..., HistoricalEvent]

SAMPLE_HEADER = "EVENT_ID|EVENT_NAME|START_DATE|END_DATE|PARENT_ID|RESEARCH_VALUE|DESCRIPTION"


def _reset_caches() -> None:
    shutdown_ingestion_executor(wait=True)
    config.reset_settings_cache()
    reset_engine_cache()
    reset_event_store()
    reset_job_registry()


@pytest.fixture()
def app_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    storage_root = tmp_path / "storage"
    storage_root.mkdir()
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{storage_root / 'events.db'}")
    monkeypatch.setenv("INGESTION_UPLOAD_DIR", str(storage_root / "uploads"))
    monkeypatch.setenv("INGESTION_MAX_WORKERS", "2")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "1000/minute")
    monkeypatch.setenv("TELEMETRY_ENABLED", "false")
    _reset_caches()
    yield storage_root
    _reset_caches()


@pytest.fixture()
def client(app_environment: Path) -> TestClient:
    from chronologicon.app import main as main_module

    importlib.reload(main_module)
    return TestClient(main_module.app)


@pytest.fixture()
def event_store(tmp_path: Path) -> SqlEventStore:
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield SqlEventStore(get_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def make_event() -> EventFactory:
    def _factory(
        event_id: str,
        start: str,
        end: str,
        *,
        parent: Optional[str] = None,
        name: Optional[str] = None,
        description: str = "",
    ) -> HistoricalEvent:
        start_date = parse_timestamp(start)
        end_date = parse_timestamp(end)
        return HistoricalEvent(
            event_id=event_id,
            event_name=name or f"Event {event_id}",
            description=description,
            start_date=start_date,
            end_date=end_date,
            duration_minutes=duration_minutes(start_date, end_date),
            parent_event_id=parent,
            attributes={},
        )

    return _factory


@pytest.fixture()
def write_events_file(tmp_path: Path) -> Callable[..., Path]:
    def _write(*lines: str, name: str = "events.txt", header: str = SAMPLE_HEADER) -> Path:
        path = tmp_path / name
        path.write_text("\n".join([header, *lines]) + "\n", encoding="utf-8")
        return path

    return _write
