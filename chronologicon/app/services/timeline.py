from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..config import get_settings
from ..models.event import HistoricalEvent
from ..storage.event_store import EventStore, get_event_store
from ..telemetry.metrics import record_analytics_duration
from .errors import EventNotFound, TimelineCycleError, TimelineTooDeep, WorkflowComponent

LOGGER = logging.getLogger("chronologicon.services.timeline")


@dataclass
class TimelineNode:
    event_id: str
    event_name: str
    description: str
    start_date: datetime
    end_date: datetime
    duration_minutes: Optional[float]
    parent_event_id: Optional[str]
    children: List["TimelineNode"] = field(default_factory=list)

    @classmethod
    def from_event(cls, event: HistoricalEvent) -> "TimelineNode":
        return cls(
            event_id=event.event_id,
            event_name=event.event_name,
            description=event.description,
            start_date=event.start_date,
            end_date=event.end_date,
            duration_minutes=event.duration_minutes,
            parent_event_id=event.parent_event_id,
        )

    def _fields(self) -> Dict[str, object]:
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "description": self.description,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "duration_minutes": self.duration_minutes,
            "parent_event_id": self.parent_event_id,
            "children": [],
        }

    def to_dict(self) -> Dict[str, object]:
        # Walks with an explicit stack so long parent chains stay off the call stack.
        payload = self._fields()
        pending: List[Tuple[TimelineNode, Dict[str, object]]] = [(self, payload)]
        while pending:
            node, target = pending.pop()
            for child in node.children:
                child_payload = child._fields()
                target["children"].append(child_payload)
                pending.append((child, child_payload))
        return payload

    def size(self) -> int:
        count = 0
        pending: List[TimelineNode] = [self]
        while pending:
            node = pending.pop()
            count += 1
            pending.extend(node.children)
        return count


class TimelineService:
    """Rebuilds the event tree hanging off a root event.

    ``max_depth`` caps how many levels sit below the root; ``None`` removes the
    cap. The walk is iterative either way, so depth is never bounded by the
    interpreter's recursion limit.
    """

    def __init__(self, event_store: EventStore | None = None, max_depth: int | None = None) -> None:
        self.event_store = event_store or get_event_store()
        self.max_depth = max_depth

    def build(self, root_event_id: str) -> TimelineNode:
        with record_analytics_duration("timeline"):
            root = self.event_store.get_by_id(root_event_id)
            if root is None:
                raise EventNotFound(root_event_id, component=WorkflowComponent.TIMELINE)
            tree = self._build_tree(root)
        LOGGER.debug("Timeline built", extra={"root_event_id": root_event_id, "nodes": tree.size()})
        return tree

    def _build_tree(self, root: HistoricalEvent) -> TimelineNode:
        tree = TimelineNode.from_event(root)
        # Each entry carries the ids from the root down to its node; meeting one
        # of them again as a child means the parent links loop.
        pending: List[Tuple[TimelineNode, Tuple[str, ...]]] = [(tree, (root.event_id,))]
        while pending:
            node, lineage = pending.pop()
            for child in self.event_store.get_children(node.event_id):
                if child.event_id in lineage:
                    raise TimelineCycleError(child.event_id, list(lineage))
                if self.max_depth is not None and len(lineage) > self.max_depth:
                    raise TimelineTooDeep(root.event_id, self.max_depth)
                child_node = TimelineNode.from_event(child)
                node.children.append(child_node)
                pending.append((child_node, lineage + (child.event_id,)))
        return tree


def get_timeline_service() -> TimelineService:
    return TimelineService(max_depth=get_settings().timeline_max_depth)
