from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Iterable, List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..database import get_session_factory
from ..models.event import HistoricalEvent
from ..utils.dates import as_naive_utc

LOGGER = logging.getLogger("chronologicon.storage.event_store")

SORTABLE_FIELDS = ("start_date", "end_date", "event_name")
DEFAULT_SORT_FIELD = "start_date"


@dataclass(frozen=True)
class EventFilter:
    """Optional listing constraints; ``None`` disables a clause."""

    name: Optional[str] = None
    start_after: Optional[datetime] = None
    end_before: Optional[datetime] = None


@dataclass(frozen=True)
class SortSpec:
    field: str = DEFAULT_SORT_FIELD
    descending: bool = False

    @classmethod
    def parse(cls, sort_by: str | None, sort_order: str | None) -> "SortSpec":
        """Build a sort spec from raw request values.

        Unknown fields fall back to ``start_date`` ascending instead of being
        rejected, so callers never see an error for a bad ``sortBy``.
        """

        if sort_by not in SORTABLE_FIELDS:
            return cls()
        return cls(field=sort_by, descending=(sort_order or "").lower() == "desc")


@dataclass(frozen=True)
class PageSpec:
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class EventStore(abc.ABC):
    """Read/write access to historical event records."""

    @abc.abstractmethod
    def upsert_if_absent(self, event: HistoricalEvent) -> bool:
        """Insert ``event`` unless its id exists. Returns ``True`` when inserted."""

    @abc.abstractmethod
    def get_by_id(self, event_id: str) -> HistoricalEvent | None: ...

    @abc.abstractmethod
    def get_children(self, parent_id: str) -> List[HistoricalEvent]: ...

    @abc.abstractmethod
    def get_by_ids(self, event_ids: Iterable[str]) -> List[HistoricalEvent]: ...

    @abc.abstractmethod
    def list_matching(
        self, event_filter: EventFilter, sort: SortSpec | None = None
    ) -> List[HistoricalEvent]: ...

    @abc.abstractmethod
    def search(self, event_filter: EventFilter, sort: SortSpec, page: PageSpec) -> List[HistoricalEvent]: ...

    @abc.abstractmethod
    def count_matching(self, event_filter: EventFilter) -> int: ...


class SqlEventStore(EventStore):
    """SQLAlchemy implementation; every call runs in its own short session."""

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    def upsert_if_absent(self, event: HistoricalEvent) -> bool:
        attributes = dict(event.attributes or {})
        with self._session_factory() as session:
            dialect = session.get_bind().dialect.name
            if dialect in {"sqlite", "postgresql"}:
                insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                row = {
                    "event_id": event.event_id,
                    "event_name": event.event_name,
                    "description": event.description or "",
                    "start_date": event.start_date,
                    "end_date": event.end_date,
                    "duration_minutes": event.duration_minutes,
                    "parent_event_id": event.parent_event_id,
                    "metadata": attributes,
                }
                statement = (
                    insert(HistoricalEvent.__table__)
                    .values(row)
                    .on_conflict_do_nothing(index_elements=["event_id"])
                )
                result = session.execute(statement)
                session.commit()
                return bool(result.rowcount)
            if session.get(HistoricalEvent, event.event_id) is not None:
                return False
            session.add(
                HistoricalEvent(
                    event_id=event.event_id,
                    event_name=event.event_name,
                    description=event.description or "",
                    start_date=event.start_date,
                    end_date=event.end_date,
                    duration_minutes=event.duration_minutes,
                    parent_event_id=event.parent_event_id,
                    attributes=attributes,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # Lost a race with a concurrent writer of the same id.
                session.rollback()
                LOGGER.debug("Duplicate event ignored", extra={"event_id": event.event_id})
                return False
            return True

    def get_by_id(self, event_id: str) -> HistoricalEvent | None:
        with self._session_factory() as session:
            return session.get(HistoricalEvent, event_id)

    def get_children(self, parent_id: str) -> List[HistoricalEvent]:
        statement = (
            select(HistoricalEvent)
            .where(HistoricalEvent.parent_event_id == parent_id)
            .order_by(HistoricalEvent.start_date, HistoricalEvent.event_id)
        )
        with self._session_factory() as session:
            return list(session.scalars(statement))

    def get_by_ids(self, event_ids: Iterable[str]) -> List[HistoricalEvent]:
        ids = list(dict.fromkeys(event_ids))
        if not ids:
            return []
        statement = select(HistoricalEvent).where(HistoricalEvent.event_id.in_(ids))
        with self._session_factory() as session:
            return list(session.scalars(statement))

    def list_matching(
        self, event_filter: EventFilter, sort: SortSpec | None = None
    ) -> List[HistoricalEvent]:
        statement = self._order(self._filtered(select(HistoricalEvent), event_filter), sort or SortSpec())
        with self._session_factory() as session:
            return list(session.scalars(statement))

    def search(self, event_filter: EventFilter, sort: SortSpec, page: PageSpec) -> List[HistoricalEvent]:
        statement = (
            self._order(self._filtered(select(HistoricalEvent), event_filter), sort)
            .limit(page.limit)
            .offset(page.offset)
        )
        with self._session_factory() as session:
            return list(session.scalars(statement))

    def count_matching(self, event_filter: EventFilter) -> int:
        statement = self._filtered(select(func.count()).select_from(HistoricalEvent), event_filter)
        with self._session_factory() as session:
            return int(session.scalar(statement) or 0)

    @staticmethod
    def _filtered(statement: Select, event_filter: EventFilter) -> Select:
        if event_filter.name:
            statement = statement.where(
                HistoricalEvent.event_name.icontains(event_filter.name, autoescape=True)
            )
        if event_filter.start_after is not None:
            statement = statement.where(HistoricalEvent.start_date > as_naive_utc(event_filter.start_after))
        if event_filter.end_before is not None:
            statement = statement.where(HistoricalEvent.end_date < as_naive_utc(event_filter.end_before))
        return statement

    @staticmethod
    def _order(statement: Select, sort: SortSpec) -> Select:
        column = getattr(HistoricalEvent, sort.field)
        primary = column.desc() if sort.descending else column.asc()
        return statement.order_by(primary, HistoricalEvent.event_id.asc())


@lru_cache(maxsize=1)
def get_event_store() -> EventStore:
    return SqlEventStore()


def reset_event_store() -> None:
    get_event_store.cache_clear()
