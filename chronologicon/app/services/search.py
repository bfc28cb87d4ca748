from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from ..storage.event_store import EventFilter, EventStore, PageSpec, SortSpec, get_event_store


@dataclass
class SearchResult:
    total_events: int
    page: int
    limit: int
    events: List[Dict[str, object]]


class SearchService:
    def __init__(self, event_store: EventStore | None = None) -> None:
        self.event_store = event_store or get_event_store()

    def search(
        self,
        *,
        name: Optional[str] = None,
        start_date_after: Optional[datetime] = None,
        end_date_before: Optional[datetime] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> SearchResult:
        event_filter = EventFilter(name=name, start_after=start_date_after, end_before=end_date_before)
        page_spec = PageSpec(page=page, limit=limit)
        total = self.event_store.count_matching(event_filter)
        events = self.event_store.search(event_filter, SortSpec.parse(sort_by, sort_order), page_spec)
        return SearchResult(
            total_events=total,
            page=page,
            limit=limit,
            events=[event.to_summary() for event in events],
        )


def get_search_service() -> SearchService:
    return SearchService()
