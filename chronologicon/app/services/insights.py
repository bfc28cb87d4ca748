"""Interval and graph analytics over stored events.

Overlaps and gaps treat each event as a time interval; influence paths treat
the parent references as a directed forest and only ever walk downwards.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from ..models.event import HistoricalEvent
from ..storage.event_store import EventFilter, EventStore, SortSpec, get_event_store
from ..telemetry.metrics import record_analytics_duration
from .errors import EventNotFound, NoPathFound, WorkflowComponent

LOGGER = logging.getLogger("chronologicon.services.insights")

_SECONDS_PER_MINUTE = 60


def _interval(event: HistoricalEvent) -> Dict[str, object]:
    return {
        "id": event.event_id,
        "name": event.event_name,
        "start": event.start_date,
        "end": event.end_date,
    }


def _minutes_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / _SECONDS_PER_MINUTE


def find_overlaps(events: Sequence[HistoricalEvent]) -> List[Tuple[HistoricalEvent, HistoricalEvent]]:
    """Return every unordered pair whose intervals overlap.

    Two events overlap when ``a.start < b.end and a.end > b.start``, so events
    that only touch at an endpoint do not. Events are swept in start order;
    once a later event starts at or after the current event's end, no event
    after it can overlap the current one either. Pairs come out with the
    earlier-starting event first.
    """

    ordered = sorted(events, key=lambda event: (event.start_date, event.event_id))
    pairs: List[Tuple[HistoricalEvent, HistoricalEvent]] = []
    for index, first in enumerate(ordered):
        for second in ordered[index + 1 :]:
            if second.start_date >= first.end_date:
                break
            if first.start_date < second.end_date:
                pairs.append((first, second))
    return pairs


@dataclass
class GapResult:
    largest_gap_minutes: float
    first_event: Optional[HistoricalEvent] = None
    second_event: Optional[HistoricalEvent] = None
    message: Optional[str] = None


def find_largest_gap(events: Sequence[HistoricalEvent]) -> GapResult:
    """Largest positive gap between consecutive events in start order.

    The gap runs from one event's end to the next event's start. Overlapping
    neighbours give negative gaps, which never beat the initial zero, so the
    result has no bounding events unless some gap is strictly positive. Ties
    keep the first pair found.
    """

    ordered = sorted(events, key=lambda event: (event.start_date, event.event_id))
    if len(ordered) < 2:
        return GapResult(largest_gap_minutes=0, message="Not enough events to calculate gaps")

    result = GapResult(largest_gap_minutes=0)
    for current, following in zip(ordered, ordered[1:]):
        gap = _minutes_between(current.end_date, following.start_date)
        if gap > result.largest_gap_minutes:
            result = GapResult(largest_gap_minutes=gap, first_event=current, second_event=following)
    return result


@dataclass
class InfluencePath:
    total_duration_minutes: float
    path: List[Dict[str, object]]


@dataclass
class _Frontier:
    event_id: str
    path: List[str]
    total_duration: float


class InsightsService:
    def __init__(self, event_store: EventStore | None = None) -> None:
        self.event_store = event_store or get_event_store()

    def overlapping_events(self, event_filter: EventFilter) -> Dict[str, object]:
        with record_analytics_duration("overlaps"):
            events = self.event_store.list_matching(event_filter, SortSpec())
            pairs = find_overlaps(events)
        LOGGER.debug("Overlap scan finished", extra={"events": len(events), "overlaps": len(pairs)})
        return {
            "total_overlaps": len(pairs),
            "overlaps": [{"event_a": _interval(a), "event_b": _interval(b)} for a, b in pairs],
        }

    def temporal_gaps(self, event_filter: EventFilter) -> Dict[str, object]:
        with record_analytics_duration("gaps"):
            events = self.event_store.list_matching(event_filter, SortSpec())
            result = find_largest_gap(events)
        return {
            "largest_gap_minutes": result.largest_gap_minutes,
            "first_event": result.first_event.to_summary() if result.first_event else None,
            "second_event": result.second_event.to_summary() if result.second_event else None,
            "message": result.message,
        }

    def event_influence(self, source: str, target: str) -> InfluencePath:
        """Shortest downward path from ``source`` to ``target``.

        Breadth-first over parent -> child links, so the path found has the
        fewest hops; its duration is just the sum along that path. A target
        that is an ancestor or a cousin of the source is never reached.
        """

        with record_analytics_duration("influence"):
            source_event = self.event_store.get_by_id(source)
            if source_event is None:
                raise EventNotFound(
                    source, component=WorkflowComponent.INSIGHTS, message="Source event not found"
                )

            queue: Deque[_Frontier] = deque(
                [_Frontier(source, [source], source_event.duration_minutes or 0)]
            )
            visited: Set[str] = {source}
            while queue:
                current = queue.popleft()
                if current.event_id == target:
                    return InfluencePath(
                        total_duration_minutes=current.total_duration,
                        path=self._summaries(current.path),
                    )
                for child in self.event_store.get_children(current.event_id):
                    if child.event_id in visited:
                        continue
                    visited.add(child.event_id)
                    queue.append(
                        _Frontier(
                            child.event_id,
                            current.path + [child.event_id],
                            current.total_duration + (child.duration_minutes or 0),
                        )
                    )
        raise NoPathFound(source, target)

    def _summaries(self, path: List[str]) -> List[Dict[str, object]]:
        by_id = {event.event_id: event for event in self.event_store.get_by_ids(path)}
        return [
            {
                "event_id": event_id,
                "event_name": by_id[event_id].event_name,
                "duration_minutes": by_id[event_id].duration_minutes,
            }
            for event_id in path
        ]


def get_insights_service() -> InsightsService:
    return InsightsService()
