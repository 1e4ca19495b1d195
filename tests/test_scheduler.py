"""Tests for gitstore.sync.scheduler -- background worker and status."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from gitstore.errors import SyncFailed
from gitstore.sync.engine import SyncEngine
from gitstore.sync.models import SyncPhase, SyncReport
from gitstore.sync.scheduler import SyncScheduler


def _report(**overrides) -> SyncReport:
    data = {
        "instance": "x",
        "started_at": "2026-03-01T12:00:00+00:00",
        "completed_at": "2026-03-01T12:00:01+00:00",
        "attempts": 1,
        "fetched": True,
        "pushed": True,
    }
    data.update(overrides)
    return SyncReport(**data)


class BlockingEngine:
    """Engine stand-in whose first cycle blocks until released."""

    def __init__(self) -> None:
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self) -> SyncReport:
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            assert self.release.wait(5)
        return _report(attempts=self.calls)


@pytest.fixture
def engine():
    engine = MagicMock(spec=SyncEngine)
    engine.run.return_value = _report()
    return engine


@pytest.fixture
def scheduler_factory():
    started: list[SyncScheduler] = []

    def _make(engine, mode="auto") -> SyncScheduler:
        scheduler = SyncScheduler(engine, mode=mode, instance="x")
        started.append(scheduler)
        return scheduler

    yield _make

    for scheduler in started:
        scheduler.stop(timeout=5)


class TestFlush:
    def test_flush_runs_on_caller_thread(self, engine, scheduler_factory):
        scheduler = scheduler_factory(engine, mode="batched")
        report = scheduler.flush()

        assert report.success
        status = scheduler.status()
        assert status.phase is SyncPhase.OK
        assert status.cycles_completed == 1
        assert status.last_report == report
        assert status.last_success_at is not None

    def test_flush_raises_and_records_failure(self, engine, scheduler_factory):
        failed = _report(pushed=False, error="fetch failed: boom")
        engine.run.side_effect = SyncFailed("fetch failed: boom", failed)
        scheduler = scheduler_factory(engine, mode="batched")

        with pytest.raises(SyncFailed):
            scheduler.flush()
        with pytest.raises(SyncFailed):
            scheduler.flush()

        status = scheduler.status()
        assert status.phase is SyncPhase.FAILED
        assert status.consecutive_failures == 2
        assert "boom" in status.last_error
        assert status.last_report == failed

    def test_success_clears_failure(self, engine, scheduler_factory):
        engine.run.side_effect = [SyncFailed("down"), _report()]
        scheduler = scheduler_factory(engine, mode="batched")

        with pytest.raises(SyncFailed):
            scheduler.flush()
        scheduler.flush()

        status = scheduler.status()
        assert status.phase is SyncPhase.OK
        assert status.last_error is None
        assert status.consecutive_failures == 0

    def test_flush_timeout_while_cycle_in_flight(self, scheduler_factory):
        engine = BlockingEngine()
        scheduler = scheduler_factory(engine)
        scheduler.start()

        scheduler.request()
        assert engine.started.wait(5)
        with pytest.raises(SyncFailed, match="timed out"):
            scheduler.flush(timeout=0.05)
        assert scheduler.status().phase is SyncPhase.SYNCING

        engine.release.set()
        report = scheduler.flush(timeout=5)

        assert report.success
        assert engine.calls == 2
        assert scheduler.status().consecutive_failures == 0


class TestBackgroundWorker:
    def test_request_runs_cycle(self, engine, scheduler_factory):
        scheduler = scheduler_factory(engine)
        scheduler.start()
        assert scheduler.running

        scheduler.request()

        assert scheduler.wait_idle(timeout=5)
        assert engine.run.call_count == 1
        assert scheduler.status().cycles_completed == 1

    def test_worker_thread_name(self, engine, scheduler_factory):
        scheduler = scheduler_factory(engine)
        scheduler.start()
        names = {t.name for t in threading.enumerate()}
        assert "gitstore-sync-x" in names

    def test_requests_during_cycle_coalesce(self, scheduler_factory):
        engine = BlockingEngine()
        scheduler = scheduler_factory(engine)
        scheduler.start()

        scheduler.request()
        assert engine.started.wait(5)
        for _ in range(10):
            scheduler.request()
        assert scheduler.status().pending
        engine.release.set()

        assert scheduler.wait_idle(timeout=5)
        assert engine.calls == 2
        assert not scheduler.status().pending

    def test_batched_mode_ignores_requests(self, engine, scheduler_factory):
        scheduler = scheduler_factory(engine, mode="batched")
        scheduler.start()

        scheduler.request()

        assert scheduler.wait_idle(timeout=1)
        engine.run.assert_not_called()
        assert scheduler.status().phase is SyncPhase.IDLE

    def test_background_failure_is_recorded_not_raised(
        self, engine, scheduler_factory, caplog
    ):
        engine.run.side_effect = SyncFailed("remote unreachable")
        scheduler = scheduler_factory(engine)
        scheduler.start()

        with caplog.at_level("ERROR", logger="gitstore.sync.scheduler"):
            scheduler.request()
            assert scheduler.wait_idle(timeout=5)
            scheduler.stop(timeout=5)

        status = scheduler.status()
        assert status.phase is SyncPhase.FAILED
        assert "remote unreachable" in status.last_error
        assert "Background sync failed" in caplog.text

    def test_stop_is_idempotent(self, engine, scheduler_factory):
        scheduler = scheduler_factory(engine)
        scheduler.start()
        scheduler.stop(timeout=5)
        scheduler.stop(timeout=5)
        assert not scheduler.running


class TestAutoStore:
    def test_commit_triggers_background_sync(self, make_store, remote, tmp_path):
        store = make_store("x", mode="auto")
        store.scheduler.start()

        store.write("note", {"a": 1})

        assert store.scheduler.wait_idle(timeout=30)
        status = store.status()
        assert status.phase is SyncPhase.OK
        assert store.repo.rev_parse("refs/remotes/origin/main") == store.repo.head()
