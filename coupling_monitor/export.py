from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from coupling_monitor.models import GraphSnapshot

logger = logging.getLogger(__name__)

EDGE_COLUMNS = ["start_time", "end_time", "source", "target", "latency", "frequency", "co_execution"]


def edges_frame(snapshots: Iterable[GraphSnapshot]) -> pd.DataFrame:
    """One row per edge, tagged with the window it was observed in."""
    rows = [
        {"start_time": s.window.start, "end_time": s.window.end, **edge.model_dump()}
        for s in snapshots
        for edge in s.edges
    ]
    df = pd.DataFrame(rows, columns=EDGE_COLUMNS)
    df.sort_values(by=["end_time", "source", "target"], inplace=True)
    return df


def export_edges_csv(snapshots: Iterable[GraphSnapshot], destination: Path) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    df = edges_frame(snapshots)
    if df.empty:
        logger.warning("No stored edges found. Nothing to export.")
        return 0

    df.to_csv(destination, index=False)
    logger.info("Exported %s rows to %s", len(df), destination)
    return len(df)
