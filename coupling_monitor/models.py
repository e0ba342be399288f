from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Window(BaseModel):
    """Half-open fetch window, both bounds in UTC microseconds."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., description="Window start (µs since epoch).")
    end: int = Field(..., description="Window end (µs since epoch).")

    @model_validator(mode="after")
    def _check_order(self) -> "Window":
        if self.start > self.end:
            raise ValueError(f"window start {self.start} is after end {self.end}")
        return self


class Node(BaseModel):
    id: str
    absolute_importance: int
    absolute_dependence: int


class Edge(BaseModel):
    source: str
    target: str
    latency: float
    frequency: int
    co_execution: float


class GraphData(BaseModel):
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return [] if value is None else value


class WeightedGraphResponse(BaseModel):
    """Envelope returned by the weighted graph API."""

    status: Optional[str] = None
    message: Optional[str] = None
    weight_type: Optional[str] = None
    gap_time: Optional[str] = None
    data: GraphData


class GraphSnapshot(BaseModel):
    """A fetched graph bound to the window it covers."""

    model_config = ConfigDict(frozen=True)

    window: Window
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    weight_type: Optional[str] = None
    gap_time: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.nodes or not self.edges

    def to_record(self) -> dict:
        """Document layout used by both store backends."""
        return {
            "start_time": self.window.start,
            "end_time": self.window.end,
            "weight_type": self.weight_type,
            "gap_time": self.gap_time,
            "data": {
                "nodes": [n.model_dump() for n in self.nodes],
                "edges": [e.model_dump() for e in self.edges],
            },
        }

    @classmethod
    def from_record(cls, record: dict) -> "GraphSnapshot":
        data = record.get("data") or {}
        return cls(
            window=Window(start=int(record["start_time"]), end=int(record["end_time"])),
            nodes=data.get("nodes") or [],
            edges=data.get("edges") or [],
            weight_type=record.get("weight_type"),
            gap_time=record.get("gap_time"),
        )


class SkipReason(str, Enum):
    EMPTY_GRAPH = "empty_graph"
    RUN_IN_PROGRESS = "run_in_progress"


class PersistStatus(str, Enum):
    PERSISTED = "persisted"
    SKIPPED = "skipped"


class PersistResult(BaseModel):
    status: PersistStatus
    reason: Optional[SkipReason] = None
    watermark: Optional[int] = Field(None, description="Watermark appended by this persist, if any.")

    @classmethod
    def persisted(cls, watermark: int) -> "PersistResult":
        return cls(status=PersistStatus.PERSISTED, watermark=watermark)

    @classmethod
    def skipped(cls, reason: SkipReason) -> "PersistResult":
        return cls(status=PersistStatus.SKIPPED, reason=reason)


class RunStatus(str, Enum):
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunSummary(BaseModel):
    """Outcome of a pipeline run."""

    status: RunStatus
    window: Optional[Window] = None
    node_count: int = 0
    edge_count: int = 0
    skip_reason: Optional[SkipReason] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
