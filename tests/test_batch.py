"""Tests for the bounded-concurrency batch processor."""

import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from webplab.batch import (
    BatchProcessor,
    BatchRun,
    BatchStatistics,
    ProgressEvent,
    TaskStatus,
)
from webplab.config import BatchConfig
from webplab.error_handling import BatchItemError, InputValidationError


class InstrumentedJob:
    """Job double that records concurrency and fails on request."""

    def __init__(self, delay=0.01, fail=(), sizes=None):
        self.delay = delay
        self.fail = set(fail)
        self.sizes = sizes or {}
        self.lock = threading.Lock()
        self.running = 0
        self.max_running = 0
        self.started: list[str] = []

    def __call__(self, path: Path):
        with self.lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.started.append(path.name)
        try:
            time.sleep(self.delay)
            if path.name in self.fail:
                raise RuntimeError(f"cannot convert {path.name}")
            before, after = self.sizes.get(path.name, (1000, 400))
            return SimpleNamespace(bytes_before=before, bytes_after=after)
        finally:
            with self.lock:
                self.running -= 1


def paths(*names):
    return [Path(name) for name in names]


class TestConcurrencyBound:
    @pytest.mark.parametrize("concurrency", [1, 2, 3, 5])
    def test_never_exceeds_limit(self, concurrency):
        job = InstrumentedJob(delay=0.02)
        processor = BatchProcessor(job, BatchConfig(concurrency=concurrency))

        run = processor.process_files(paths(*(f"{i}.gif" for i in range(12))))

        assert job.max_running <= concurrency
        assert run.processed_count == 12
        assert run.concurrency == concurrency

    def test_observer_sees_bounded_running_count(self):
        job = InstrumentedJob(delay=0.02)
        processor = BatchProcessor(job, BatchConfig(concurrency=2))
        observed = []
        processor.add_progress_observer(
            lambda event: observed.append(processor.status_counts()[TaskStatus.RUNNING])
        )

        processor.process_files(paths(*(f"{i}.gif" for i in range(8))))

        assert observed
        assert max(observed) <= 2

    def test_sliding_admission(self):
        """A freed slot is refilled immediately, not after the whole wave."""
        released = threading.Event()
        waited = {}

        def job(path: Path):
            if path.name == "long.gif":
                waited["released"] = released.wait(timeout=5)
            elif path.name == "short3.gif":
                released.set()
            return SimpleNamespace(bytes_before=10, bytes_after=5)

        processor = BatchProcessor(job, BatchConfig(concurrency=2))
        run = processor.process_files(paths("long.gif", "short1.gif", "short2.gif", "short3.gif"))

        assert waited["released"] is True
        assert run.processed_count == 4

    def test_invalid_concurrency(self):
        processor = BatchProcessor(InstrumentedJob())
        with pytest.raises(ValueError):
            processor.process_files(paths("a.gif"), concurrency=0)

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            BatchProcessor(InstrumentedJob()).process_files([])


class TestFailures:
    def test_failures_recorded_and_run_continues(self):
        job = InstrumentedJob(fail={"b.gif"})
        processor = BatchProcessor(job, BatchConfig(concurrency=2))

        run = processor.process_files(paths("a.gif", "b.gif", "c.gif"))

        assert [t.status for t in run.tasks] == [
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.COMPLETED,
        ]
        failed = run.tasks[1]
        assert failed.error == "cannot convert b.gif"
        assert isinstance(failed.exception, BatchItemError)
        assert isinstance(failed.exception.cause, RuntimeError)
        assert failed.exception.item_id == "b.gif"
        assert run.failed_count == 1

    def test_stop_on_error_skips_unstarted(self):
        def job(path: Path):
            if path.name == "fail.gif":
                raise RuntimeError("broken")
            time.sleep(0.2 if path.name == "slow.gif" else 0.0)
            return SimpleNamespace(bytes_before=100, bytes_after=50)

        started = []

        def recording_job(path: Path):
            started.append(path.name)
            return job(path)

        processor = BatchProcessor(recording_job, BatchConfig(concurrency=2))
        run = processor.process_files(
            paths("slow.gif", "fail.gif", "p1.gif", "p2.gif", "p3.gif"), stop_on_error=True
        )

        statuses = {t.input_path.name: t.status for t in run.tasks}
        assert statuses["slow.gif"] is TaskStatus.COMPLETED
        assert statuses["fail.gif"] is TaskStatus.FAILED
        assert all(statuses[n] is TaskStatus.SKIPPED for n in ("p1.gif", "p2.gif", "p3.gif"))
        assert sorted(started) == ["fail.gif", "slow.gif"]
        assert run.skipped_count == 3
        assert run.stop_on_error is True

    def test_stop_on_error_sequential(self):
        job = InstrumentedJob(delay=0, fail={"b.gif"})
        run = BatchProcessor(job).process_files(
            paths("a.gif", "b.gif", "c.gif"), concurrency=1, stop_on_error=True
        )

        assert job.started == ["a.gif", "b.gif"]
        assert [t.status for t in run.tasks] == [
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.SKIPPED,
        ]

    def test_status_counts_sum_to_total(self):
        job = InstrumentedJob(delay=0, fail={"b.gif", "d.gif"})
        run = BatchProcessor(job).process_files(
            paths("a.gif", "b.gif", "c.gif", "d.gif", "e.gif"), concurrency=1, stop_on_error=True
        )

        counts = run.status_counts()
        assert sum(counts.values()) == run.total_count == 5
        assert counts[TaskStatus.PENDING] == 0
        assert counts[TaskStatus.RUNNING] == 0


class TestStatistics:
    def test_aggregate_ratio_over_completed_only(self):
        sizes = {"a.gif": (1000, 400), "b.gif": (3000, 1500), "c.gif": (9999, 1)}
        job = InstrumentedJob(delay=0, fail={"c.gif"}, sizes=sizes)

        run = BatchProcessor(job).process_files(paths("a.gif", "b.gif", "c.gif"))

        assert run.total_bytes_before == 4000
        assert run.total_bytes_after == 1900
        assert run.aggregate_ratio == pytest.approx((4000 - 1900) / 4000)
        assert run.processed_count == 2
        assert run.failed_count == 1

    def test_stats_accumulate_and_reset(self):
        processor = BatchProcessor(InstrumentedJob(delay=0, fail={"x.gif"}))

        processor.process_files(paths("a.gif", "x.gif"))
        processor.process_files(paths("b.gif"))
        stats = processor.get_stats()

        assert stats.processed == 2
        assert stats.failed == 1
        assert stats.total_bytes_before == 2000
        assert stats.total_saved == 1200
        assert stats.compression_ratio == pytest.approx(0.6)

        processor.reset_stats()
        assert processor.get_stats() == BatchStatistics()

    def test_get_stats_returns_snapshot(self):
        processor = BatchProcessor(InstrumentedJob(delay=0))
        processor.process_files(paths("a.gif"))

        snapshot = processor.get_stats()
        snapshot.processed = 99
        assert processor.get_stats().processed == 1

    def test_empty_statistics(self):
        stats = BatchStatistics()
        assert stats.compression_ratio == 0.0
        assert stats.to_dict()["total_saved"] == 0

    def test_memory_usage(self):
        usage = BatchProcessor(InstrumentedJob()).get_memory_usage()
        assert set(usage) == {"rss", "vms"}


class TestProgress:
    def test_one_event_per_task_in_completion_order(self):
        released = threading.Event()

        def job(path: Path):
            if path.name == "first.gif":
                released.wait(timeout=5)
            else:
                released.set()
            return SimpleNamespace(bytes_before=10, bytes_after=5)

        events: list[ProgressEvent] = []
        processor = BatchProcessor(job, BatchConfig(concurrency=2))
        processor.add_progress_observer(events.append)

        processor.process_files(paths("first.gif", "second.gif"))

        assert [e.item_id for e in events] == ["second.gif", "first.gif"]
        assert [e.completed_count for e in events] == [1, 2]
        assert all(e.total_count == 2 for e in events)
        assert events[-1].percent == 100.0

    def test_events_follow_finish_order(self):
        delays = {"a.gif": 0.3, "b.gif": 0.0, "c.gif": 0.1, "d.gif": 0.2}
        finish_order = []
        lock = threading.Lock()

        def job(path: Path):
            time.sleep(delays[path.name])
            with lock:
                finish_order.append(path.name)
            return SimpleNamespace(bytes_before=10, bytes_after=5)

        events: list[ProgressEvent] = []
        processor = BatchProcessor(job, BatchConfig(concurrency=4))
        processor.add_progress_observer(events.append)

        processor.process_files(paths("a.gif", "b.gif", "c.gif", "d.gif"))

        assert finish_order == ["b.gif", "c.gif", "d.gif", "a.gif"]
        assert [e.item_id for e in events] == finish_order
        assert [e.completed_count for e in events] == [1, 2, 3, 4]

    def test_failure_events_carry_error(self):
        events = []
        processor = BatchProcessor(InstrumentedJob(delay=0, fail={"a.gif"}))
        processor.set_progress_callback(events.append)

        processor.process_files(paths("a.gif"))

        assert events[0].status is TaskStatus.FAILED
        assert events[0].error == "cannot convert a.gif"
        assert events[0].result is None

    def test_observer_exceptions_isolated(self):
        received = []

        def broken(event):
            raise RuntimeError("observer bug")

        processor = BatchProcessor(InstrumentedJob(delay=0), BatchConfig(concurrency=2))
        processor.add_progress_observer(broken)
        processor.add_progress_observer(received.append)

        run = processor.process_files(paths("a.gif", "b.gif", "c.gif"))

        assert run.processed_count == 3
        assert len(received) == 3
        assert processor.get_stats().processed == 3

    def test_slow_observer_does_not_block_admission(self):
        last_started = threading.Event()
        outcome = {}

        def job(path: Path):
            if path.name == "c.gif":
                last_started.set()
            return SimpleNamespace(bytes_before=10, bytes_after=5)

        def slow_observer(event):
            if event.completed_count == 1:
                outcome["admitted"] = last_started.wait(timeout=5)

        processor = BatchProcessor(job, BatchConfig(concurrency=1))
        processor.add_progress_observer(slow_observer)
        processor.process_files(paths("a.gif", "b.gif", "c.gif"))

        assert outcome["admitted"] is True

    def test_remove_observer(self):
        events = []
        processor = BatchProcessor(InstrumentedJob(delay=0))
        processor.add_progress_observer(events.append)
        processor.remove_progress_observer(events.append)

        processor.process_files(paths("a.gif"))

        assert events == []


class TestDirectory:
    def test_recursive_scan(self, gif_directory: Path):
        processor = BatchProcessor(InstrumentedJob(delay=0))
        files = processor.find_input_files(gif_directory)

        assert [f.name for f in files] == ["a.gif", "b.gif", "c.gif"]

    def test_non_recursive_scan(self, gif_directory: Path):
        processor = BatchProcessor(InstrumentedJob(delay=0))
        files = processor.find_input_files(gif_directory, recursive=False)

        assert [f.name for f in files] == ["a.gif", "b.gif"]

    def test_process_directory(self, gif_directory: Path):
        job = InstrumentedJob(delay=0)
        run = BatchProcessor(job).process_directory(gif_directory)

        assert run.processed_count == 3
        assert sorted(job.started) == ["a.gif", "b.gif", "c.gif"]

    def test_empty_directory(self, tmp_path: Path):
        run = BatchProcessor(InstrumentedJob()).process_directory(tmp_path)

        assert isinstance(run, BatchRun)
        assert run.total_count == 0
        assert run.aggregate_ratio == 0.0

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(InputValidationError):
            BatchProcessor(InstrumentedJob()).find_input_files(tmp_path / "nope")
