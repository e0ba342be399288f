import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from coupling_monitor.fetcher import GraphFetcher
from coupling_monitor.models import RunStatus, RunSummary
from coupling_monitor.pipeline import CollectionPipeline
from coupling_monitor.scheduler import Scheduler

from conftest import HOUR, T, URL_TEMPLATE, InMemoryGraphStore, graph_payload


class BlockingPipeline:
    """Pipeline double whose runs block until released."""

    def __init__(self) -> None:
        self.calls = 0
        self.release = asyncio.Event()
        self.cancelled = False

    async def run_once(self) -> RunSummary:
        self.calls += 1
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return RunSummary(status=RunStatus.PERSISTED, started_at=datetime.now(timezone.utc))


class FlakyPipeline:
    def __init__(self) -> None:
        self.calls = 0

    async def run_once(self) -> RunSummary:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("unexpected payload")
        return RunSummary(status=RunStatus.SKIPPED, started_at=datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_tick_during_active_run_is_dropped():
    pipeline = BlockingPipeline()
    scheduler = Scheduler(pipeline, interval_seconds=60)

    first = scheduler.trigger()
    await asyncio.sleep(0)
    second = scheduler.trigger()

    assert first is not None
    assert second is None
    assert pipeline.calls == 1
    assert scheduler.skipped_ticks == 1

    pipeline.release.set()
    await first
    third = scheduler.trigger()
    assert third is not None
    await third
    assert pipeline.calls == 2


@pytest.mark.asyncio
async def test_run_now_refuses_while_run_active():
    pipeline = BlockingPipeline()
    scheduler = Scheduler(pipeline)
    task = scheduler.trigger()

    assert await scheduler.run_now() is None

    pipeline.release.set()
    await task
    summary = await scheduler.run_now()
    assert summary.status is RunStatus.PERSISTED


@pytest.mark.asyncio
async def test_crashed_run_is_reported_and_next_tick_proceeds():
    pipeline = FlakyPipeline()
    scheduler = Scheduler(pipeline)

    failed = await scheduler.trigger()
    assert failed.status is RunStatus.FAILED
    assert failed.error_kind == "unexpected"

    recovered = await scheduler.trigger()
    assert recovered.status is RunStatus.SKIPPED
    assert scheduler.last_run is recovered


@pytest.mark.asyncio
async def test_loop_ticks_on_cadence_until_stopped():
    pipeline = FlakyPipeline()
    scheduler = Scheduler(pipeline, interval_seconds=0.02)

    scheduler.start()
    assert scheduler.is_running
    await asyncio.sleep(0.15)
    await scheduler.stop()

    assert not scheduler.is_running
    assert scheduler.tick_count >= 2
    calls = pipeline.calls
    await asyncio.sleep(0.05)
    assert pipeline.calls == calls


@pytest.mark.asyncio
async def test_double_start_is_ignored():
    scheduler = Scheduler(FlakyPipeline(), interval_seconds=60)
    scheduler.start()
    loop_task = scheduler._loop_task
    scheduler.start()
    assert scheduler._loop_task is loop_task
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_run():
    pipeline = BlockingPipeline()
    scheduler = Scheduler(pipeline, shutdown_timeout_seconds=1.0)
    task = scheduler.trigger()
    await asyncio.sleep(0)

    asyncio.get_running_loop().call_later(0.02, pipeline.release.set)
    await scheduler.stop()

    assert task.done() and not task.cancelled()
    assert scheduler.last_run.status is RunStatus.PERSISTED
    assert scheduler.trigger() is None


@pytest.mark.asyncio
async def test_stop_cancels_run_after_shutdown_timeout():
    pipeline = BlockingPipeline()
    scheduler = Scheduler(pipeline, shutdown_timeout_seconds=0.02)
    task = scheduler.trigger()
    await asyncio.sleep(0)

    await scheduler.stop()

    assert task.cancelled()
    assert pipeline.cancelled
    assert not scheduler.run_in_progress


def test_health_before_start():
    health = Scheduler(FlakyPipeline(), interval_seconds=60).health()
    assert health["running"] is False
    assert health["tick_count"] == 0
    assert health["last_run"] is None


@pytest.mark.asyncio
async def test_stop_cancels_hung_graph_request_without_advancing_watermark():
    store = InMemoryGraphStore(watermarks=[T - HOUR])
    request_started = asyncio.Event()
    request_cancelled = asyncio.Event()

    async def hung_api(request: httpx.Request) -> httpx.Response:
        request_started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            request_cancelled.set()
            raise
        return httpx.Response(200, json=graph_payload())

    pipeline = CollectionPipeline(
        store=store,
        source=GraphFetcher(URL_TEMPLATE),
        default_lookback=timedelta(minutes=15),
        max_gap=timedelta(days=7),
        request_timeout_seconds=120.0,
        clock=lambda: T,
        transport=httpx.MockTransport(hung_api),
    )
    scheduler = Scheduler(pipeline, shutdown_timeout_seconds=0.05)
    task = scheduler.trigger()
    await asyncio.wait_for(request_started.wait(), timeout=1.0)

    await scheduler.stop()

    assert task.cancelled()
    assert request_cancelled.is_set()
    assert store.latest() == T - HOUR
    assert store.snapshots == []


@pytest.mark.asyncio
async def test_cancelled_manual_caller_does_not_cancel_the_run():
    pipeline = BlockingPipeline()
    scheduler = Scheduler(pipeline)

    caller = asyncio.create_task(scheduler.run_now())
    await asyncio.sleep(0.01)
    assert scheduler.run_in_progress

    caller.cancel()
    await asyncio.gather(caller, return_exceptions=True)
    assert caller.cancelled()
    assert scheduler.run_in_progress

    pipeline.release.set()
    await asyncio.sleep(0.01)
    assert not scheduler.run_in_progress
    assert scheduler.last_run.status is RunStatus.PERSISTED
    assert not pipeline.cancelled
