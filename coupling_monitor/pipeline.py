from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from coupling_monitor.config import Settings
from coupling_monitor.errors import CouplingMonitorError
from coupling_monitor.fetcher import GraphFetcher, GraphSource
from coupling_monitor.models import PersistStatus, RunStatus, RunSummary, Window
from coupling_monitor.persister import MetricsPersister
from coupling_monitor.planner import now_micros, plan_window
from coupling_monitor.storage import GraphStore

logger = logging.getLogger(__name__)


class CollectionPipeline:
    """One collection run: plan a window, fetch its graph, persist it."""

    def __init__(
        self,
        store: GraphStore,
        source: GraphSource,
        default_lookback: timedelta,
        max_gap: timedelta,
        request_timeout_seconds: float,
        clock: Callable[[], int] = now_micros,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.source = source
        self.persister = MetricsPersister(store, store)
        self.default_lookback = default_lookback
        self.max_gap = max_gap
        self.request_timeout_seconds = request_timeout_seconds
        self.clock = clock
        self.transport = transport

    async def _plan(self) -> Window:
        last_watermark = await asyncio.to_thread(self.store.latest)
        if last_watermark is None:
            logger.info("No previous fetch time found, looking back %s", self.default_lookback)
        else:
            logger.info("Last fetch time found: %s", last_watermark)
        return plan_window(self.clock(), last_watermark, self.default_lookback, self.max_gap)

    async def run_once(self) -> RunSummary:
        """Run every stage and report the outcome; stage errors never escape."""
        started_at = datetime.now(timezone.utc)
        window: Optional[Window] = None
        try:
            window = await self._plan()
            logger.info("Planned window %s - %s", window.start, window.end)

            timeout = httpx.Timeout(self.request_timeout_seconds)
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=self.transport) as client:
                snapshot = await self.source.fetch(client, window)

            result = await self.persister.persist(snapshot)
        except CouplingMonitorError as exc:
            logger.error(
                "Collection run failed [%s] for window %s - %s: %s",
                exc.kind,
                window.start if window else None,
                window.end if window else None,
                exc,
            )
            return RunSummary(
                status=RunStatus.FAILED,
                window=window,
                error_kind=exc.kind,
                error=str(exc),
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        if result.status is PersistStatus.SKIPPED:
            status = RunStatus.SKIPPED
        else:
            status = RunStatus.PERSISTED
        return RunSummary(
            status=status,
            window=window,
            node_count=len(snapshot.nodes),
            edge_count=len(snapshot.edges),
            skip_reason=result.reason,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )


def build_pipeline(settings: Settings, store: GraphStore) -> CollectionPipeline:
    """Create a pipeline with default settings and the given store."""
    return CollectionPipeline(
        store=store,
        source=GraphFetcher(settings.graph_api_url_template),
        default_lookback=settings.default_lookback,
        max_gap=settings.max_gap,
        request_timeout_seconds=settings.request_timeout_seconds,
    )
