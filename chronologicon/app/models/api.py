from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class IngestionRequest(BaseModel):
    file_path: Optional[str] = Field(default=None, description="Server-side path of the delimited file to ingest")


class IngestionResponse(BaseModel):
    status: str = Field(default="Ingestion started")
    job_id: str = Field(description="Identifier tracking the ingestion operation")
    message: str


class IngestionStatusResponse(BaseModel):
    job_id: str
    status: Literal["PROCESSING", "COMPLETED", "FAILED"]
    processed_lines: int
    error_lines: int
    errors: List[str] = Field(default_factory=list)
    file_path: Optional[str] = None
    submitted_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class TimelineNodeModel(BaseModel):
    event_id: str
    event_name: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    duration_minutes: Optional[float] = None
    parent_event_id: Optional[str] = None
    children: List["TimelineNodeModel"] = Field(default_factory=list)


class EventSummaryModel(BaseModel):
    event_id: str
    event_name: str
    start_date: datetime
    end_date: datetime


class SearchResponse(BaseModel):
    total_events: int
    page: int
    limit: int
    events: List[EventSummaryModel]


class IntervalModel(BaseModel):
    id: str
    name: str
    start: datetime
    end: datetime


class OverlapPairModel(BaseModel):
    event_a: IntervalModel
    event_b: IntervalModel


class OverlapResponse(BaseModel):
    total_overlaps: int
    overlaps: List[OverlapPairModel]


class TemporalGapResponse(BaseModel):
    largest_gap_minutes: float
    first_event: Optional[EventSummaryModel] = None
    second_event: Optional[EventSummaryModel] = None
    message: Optional[str] = None


class InfluenceStepModel(BaseModel):
    event_id: str
    event_name: str
    duration_minutes: Optional[float] = None


class InfluenceResponse(BaseModel):
    total_duration_minutes: float
    path: List[InfluenceStepModel]


TimelineNodeModel.model_rebuild()
