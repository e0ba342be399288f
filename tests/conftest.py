from __future__ import annotations

from typing import List, Optional

import httpx
import pytest

from coupling_monitor.errors import StoreQueryError
from coupling_monitor.models import GraphSnapshot

T = 1_700_000_000_000_000
MINUTE = 60 * 1_000_000
HOUR = 60 * MINUTE
URL_TEMPLATE = "http://graph.test/weighted-graph?start={start}&end={end}"


class InMemoryGraphStore:
    """Store double that records writes and can be told to fail."""

    def __init__(self, watermarks: Optional[List[int]] = None) -> None:
        self.watermarks: List[int] = list(watermarks or [])
        self.snapshots: List[GraphSnapshot] = []
        self.fail_latest = False
        self.fail_insert = False
        self.fail_append = False
        self.closed = False

    def latest(self) -> Optional[int]:
        if self.fail_latest:
            raise StoreQueryError("update log unavailable")
        return max(self.watermarks) if self.watermarks else None

    def append(self, timestamp: int) -> None:
        if self.fail_append:
            raise StoreQueryError("update log write rejected")
        self.watermarks.append(timestamp)

    def insert_snapshot(self, snapshot: GraphSnapshot) -> None:
        if self.fail_insert:
            raise StoreQueryError("metrics write rejected")
        self.snapshots.append(snapshot)

    def load_snapshots(self, limit: int = 20) -> List[GraphSnapshot]:
        return sorted(self.snapshots, key=lambda s: s.window.end, reverse=True)[:limit]

    def close(self) -> None:
        self.closed = True


def graph_payload(nodes=None, edges=None) -> dict:
    if nodes is None:
        nodes = [
            {"id": "checkout", "absolute_importance": 3, "absolute_dependence": 1},
            {"id": "payments", "absolute_importance": 1, "absolute_dependence": 2},
        ]
    if edges is None:
        edges = [
            {"source": "checkout", "target": "payments", "latency": 12.5, "frequency": 40, "co_execution": 0.8},
        ]
    return {
        "status": "success",
        "message": "graph computed",
        "weight_type": "latency",
        "gap_time": "15m",
        "data": {"nodes": nodes, "edges": edges},
    }


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler) -> None:
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


def json_transport(payload: dict, status_code: int = 200) -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(status_code, json=payload))


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()
