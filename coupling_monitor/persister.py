from __future__ import annotations

import asyncio
import logging

from coupling_monitor.errors import RecordWriteFailed, StoreError, WatermarkWriteFailed
from coupling_monitor.models import GraphSnapshot, PersistResult, SkipReason
from coupling_monitor.storage import SnapshotStore, WatermarkStore

logger = logging.getLogger(__name__)


class MetricsPersister:
    """Writes a snapshot, then advances the watermark to the snapshot's window end.

    The two writes are not transactional. The record goes first, so a failed
    watermark write leaves the old watermark in place and the next run fetches
    the same window again: a duplicate record, never a missing one.
    """

    def __init__(self, snapshots: SnapshotStore, watermarks: WatermarkStore) -> None:
        self.snapshots = snapshots
        self.watermarks = watermarks

    async def persist(self, snapshot: GraphSnapshot) -> PersistResult:
        window = snapshot.window
        if snapshot.is_empty:
            logger.info(
                "Graph data is empty (%s nodes, %s edges) for window %s - %s. Skipping push.",
                len(snapshot.nodes),
                len(snapshot.edges),
                window.start,
                window.end,
            )
            return PersistResult.skipped(SkipReason.EMPTY_GRAPH)

        try:
            await asyncio.to_thread(self.snapshots.insert_snapshot, snapshot)
        except StoreError as exc:
            raise RecordWriteFailed(f"Failed to insert graph for window {window.start} - {window.end}: {exc}") from exc
        logger.info("Graph saved for window %s - %s", window.start, window.end)

        try:
            await asyncio.to_thread(self.watermarks.append, window.end)
        except StoreError as exc:
            raise WatermarkWriteFailed(
                f"Graph for window {window.start} - {window.end} is stored but the watermark was not advanced; "
                f"the next run will fetch this window again: {exc}",
                end_time=window.end,
            ) from exc
        logger.info("Last fetch time advanced to %s", window.end)

        return PersistResult.persisted(window.end)
