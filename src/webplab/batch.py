"""Bounded-concurrency batch conversion.

:class:`BatchProcessor` runs a per-item job over many inputs with at most
``concurrency`` jobs in flight. It works as a sliding pool rather than in
waves: whenever one job finishes the next queued input is admitted.

The calling thread is the coordinator. It is the only writer of task
status and of the statistics records, and it performs every write under
``_state_lock`` so that accessors called from other threads see consistent
snapshots. Jobs run on a :class:`~concurrent.futures.ThreadPoolExecutor`
and never touch shared state. Progress events go through a queue to a
notifier thread, so a slow observer cannot hold up admission.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import psutil

from .codec import format_bytes
from .config import DEFAULT_BATCH_CONFIG, BatchConfig
from .error_handling import BatchItemError, InputValidationError, clean_error_message
from .optimizer import OptimizationResult
from .quality import QualityMetrics

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Lifecycle of a batch item."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BatchTask:
    """One input of a batch run. Mutated only by the coordinating thread."""

    item_id: str
    input_path: Path
    index: int
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    optimization: OptimizationResult | None = None
    metrics: QualityMetrics | None = None
    error: str | None = None
    exception: BatchItemError | None = field(default=None, repr=False)
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)


@dataclass(frozen=True)
class ProgressEvent:
    """Delivered to observers once per finished (completed or failed) task."""

    completed_count: int
    total_count: int
    item_id: str
    status: TaskStatus
    result: Any = None
    error: str | None = None

    @property
    def percent(self) -> float:
        return self.completed_count / self.total_count * 100 if self.total_count else 100.0


ProgressObserver = Callable[[ProgressEvent], None]


@dataclass
class BatchStatistics:
    """Aggregate counters. Byte totals cover completed items only."""

    processed: int = 0
    failed: int = 0
    total_bytes_before: int = 0
    total_bytes_after: int = 0

    def record_success(self, bytes_before: int, bytes_after: int) -> None:
        self.processed += 1
        self.total_bytes_before += bytes_before
        self.total_bytes_after += bytes_after

    def record_failure(self) -> None:
        self.failed += 1

    @property
    def total_saved(self) -> int:
        return self.total_bytes_before - self.total_bytes_after

    @property
    def compression_ratio(self) -> float:
        if self.total_bytes_before <= 0:
            return 0.0
        return self.total_saved / self.total_bytes_before

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "total_bytes_before": self.total_bytes_before,
            "total_bytes_after": self.total_bytes_after,
            "total_saved": self.total_saved,
            "compression_ratio": self.compression_ratio,
        }


@dataclass(frozen=True)
class BatchRun:
    """Read-only record of a finished batch run."""

    tasks: tuple[BatchTask, ...]
    processed_count: int
    failed_count: int
    skipped_count: int
    total_bytes_before: int
    total_bytes_after: int
    elapsed_seconds: float
    started_at: datetime
    concurrency: int
    stop_on_error: bool

    @property
    def total_count(self) -> int:
        return len(self.tasks)

    @property
    def aggregate_ratio(self) -> float:
        """Size reduction over completed tasks: ``(before - after) / before``."""
        if self.total_bytes_before <= 0:
            return 0.0
        return (self.total_bytes_before - self.total_bytes_after) / self.total_bytes_before

    @property
    def completed_tasks(self) -> list[BatchTask]:
        return [t for t in self.tasks if t.status is TaskStatus.COMPLETED]

    @property
    def failed_tasks(self) -> list[BatchTask]:
        return [t for t in self.tasks if t.status is TaskStatus.FAILED]

    @property
    def skipped_tasks(self) -> list[BatchTask]:
        return [t for t in self.tasks if t.status is TaskStatus.SKIPPED]

    def status_counts(self) -> dict[TaskStatus, int]:
        counts = Counter(t.status for t in self.tasks)
        return {status: counts.get(status, 0) for status in TaskStatus}

    @classmethod
    def empty(cls, concurrency: int, stop_on_error: bool) -> BatchRun:
        return cls(
            tasks=(),
            processed_count=0,
            failed_count=0,
            skipped_count=0,
            total_bytes_before=0,
            total_bytes_after=0,
            elapsed_seconds=0.0,
            started_at=datetime.now(),
            concurrency=concurrency,
            stop_on_error=stop_on_error,
        )


class _ProgressNotifier:
    """Delivers progress events to observers on a dedicated thread, in order."""

    def __init__(self, observers: list[ProgressObserver]):
        self._observers = observers
        self._queue: queue.Queue[ProgressEvent | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if not self._observers:
            return
        self._thread = threading.Thread(
            target=self._worker, name="webplab-progress", daemon=True
        )
        self._thread.start()

    def publish(self, event: ProgressEvent) -> None:
        if self._thread is not None:
            self._queue.put(event)

    def close(self) -> None:
        """Deliver everything queued so far, then stop."""
        if self._thread is None:
            return
        self._queue.put(None)
        self._thread.join()
        self._thread = None

    def _worker(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            for observer in self._observers:
                try:
                    observer(event)
                except Exception as e:
                    logger.error(f"Progress observer failed for {event.item_id}: {e}")


class BatchProcessor:
    """Runs a per-item job over many inputs under a concurrency bound.

    Args:
        job: Callable taking an input path and returning the item result.
            Results exposing ``bytes_before``/``bytes_after`` feed the byte
            statistics; ``optimization``/``metrics`` are copied onto the task.
            Defaults to a :class:`~webplab.pipeline.ConversionJob`.
        config: Concurrency, stop-on-error and directory-scan settings
        output_dir: Output directory for the default job
    """

    def __init__(
        self,
        job: Callable[[Path], Any] | None = None,
        config: BatchConfig | None = None,
        output_dir: Path | None = None,
    ):
        self.config = config or DEFAULT_BATCH_CONFIG

        # The default job mirrors scanned sub-directories under output_dir
        self._owns_job = job is None
        if job is None:
            from .pipeline import ConversionJob

            job = ConversionJob(output_dir=output_dir, batch_config=self.config)
        self.job = job

        self._observers: list[ProgressObserver] = []
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._stats = BatchStatistics()
        self._live_tasks: list[BatchTask] = []

    # Observers -------------------------------------------------------------

    def add_progress_observer(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def remove_progress_observer(self, observer: ProgressObserver) -> None:
        self._observers.remove(observer)

    def set_progress_callback(self, callback: ProgressObserver | None) -> None:
        """Replace all observers with ``callback`` (or clear them with None)."""
        self._observers = [callback] if callback is not None else []

    # Statistics ------------------------------------------------------------

    def get_stats(self) -> BatchStatistics:
        """Snapshot of the statistics accumulated since the last reset."""
        with self._state_lock:
            return replace(self._stats)

    def reset_stats(self) -> None:
        with self._state_lock:
            self._stats = BatchStatistics()

    def status_counts(self) -> dict[TaskStatus, int]:
        """Live status counts of the current (or last) run."""
        with self._state_lock:
            counts = Counter(t.status for t in self._live_tasks)
        return {status: counts.get(status, 0) for status in TaskStatus}

    def get_memory_usage(self) -> dict[str, str]:
        """Resident and virtual memory of this process, human readable."""
        info = psutil.Process().memory_info()
        return {"rss": format_bytes(info.rss), "vms": format_bytes(info.vms)}

    # Input discovery -------------------------------------------------------

    def find_input_files(
        self,
        input_dir: Path,
        recursive: bool | None = None,
        extensions: tuple[str, ...] | None = None,
    ) -> list[Path]:
        """Files under ``input_dir`` with a matching extension, sorted.

        Raises:
            InputValidationError: If ``input_dir`` is not a directory
        """
        recursive = self.config.recursive if recursive is None else recursive
        extensions = extensions or self.config.extensions

        if not input_dir.is_dir():
            raise InputValidationError(f"Input directory does not exist: {input_dir}")

        candidates = input_dir.rglob("*") if recursive else input_dir.iterdir()
        return sorted(
            path
            for path in candidates
            if path.is_file() and path.suffix.lower() in extensions
        )

    # Running ---------------------------------------------------------------

    def process_directory(
        self,
        input_dir: Path,
        recursive: bool | None = None,
        concurrency: int | None = None,
        stop_on_error: bool | None = None,
    ) -> BatchRun:
        """Scan ``input_dir`` and process every matching file."""
        logger.info(f"📂 Scanning directory: {input_dir}")
        files = self.find_input_files(input_dir, recursive)

        if not files:
            logger.info("❌ No matching files found")
            return BatchRun.empty(
                concurrency if concurrency is not None else self.config.concurrency,
                self.config.stop_on_error if stop_on_error is None else stop_on_error,
            )

        if self._owns_job:
            self.job.source_root = input_dir

        logger.info(f"📋 Found {len(files)} files")
        return self.process_files(files, concurrency, stop_on_error)

    def process_files(
        self,
        inputs: Iterable[Path | str],
        concurrency: int | None = None,
        stop_on_error: bool | None = None,
    ) -> BatchRun:
        """Run the job over ``inputs`` and return the finished run.

        Per-item failures are recorded on their task and never raised. With
        ``stop_on_error`` the first failure stops further admissions: items
        already running still finish, items never started end up skipped.

        Raises:
            ValueError: If ``inputs`` is empty or ``concurrency < 1``
            RuntimeError: If this processor is already running a batch
        """
        paths = [Path(p) for p in inputs]
        if not paths:
            raise ValueError("No input files to process")

        concurrency = self.config.concurrency if concurrency is None else concurrency
        stop_on_error = self.config.stop_on_error if stop_on_error is None else stop_on_error
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("BatchProcessor is already running a batch")

        try:
            return self._run(paths, concurrency, stop_on_error)
        finally:
            self._run_lock.release()

    def _run(self, paths: list[Path], concurrency: int, stop_on_error: bool) -> BatchRun:
        tasks = [
            BatchTask(item_id=str(path), input_path=path, index=index)
            for index, path in enumerate(paths)
        ]
        with self._state_lock:
            self._live_tasks = tasks

        total = len(tasks)
        logger.info(f"🚀 Batch started: {total} files, concurrency {concurrency}")

        started_at = datetime.now()
        start_time = time.perf_counter()
        run_stats = BatchStatistics()
        notifier = _ProgressNotifier(list(self._observers))
        notifier.start()

        pending = deque(tasks)
        in_flight: dict[Future[Any], BatchTask] = {}
        # Futures land here in the order they finish
        finished: queue.SimpleQueue[Future[Any]] = queue.SimpleQueue()
        finished_count = 0
        stopped = False

        try:
            with ThreadPoolExecutor(
                max_workers=concurrency, thread_name_prefix="webplab-batch"
            ) as executor:
                while pending or in_flight:
                    while pending and not stopped and len(in_flight) < concurrency:
                        task = pending.popleft()
                        self._mark_running(task)
                        future = executor.submit(self.job, task.input_path)
                        in_flight[future] = task
                        future.add_done_callback(finished.put)

                    if not in_flight:
                        break

                    future = finished.get()
                    task = in_flight.pop(future)
                    self._finalize(task, future, run_stats)
                    finished_count += 1

                    notifier.publish(
                        ProgressEvent(
                            completed_count=finished_count,
                            total_count=total,
                            item_id=task.item_id,
                            status=task.status,
                            result=task.result,
                            error=task.error,
                        )
                    )

                    if task.status is TaskStatus.FAILED and stop_on_error and not stopped:
                        stopped = True
                        logger.warning(
                            f"⏹️  Stopping admissions after failure of {task.input_path.name}"
                        )

            self._mark_skipped(pending)
        finally:
            notifier.close()

        elapsed = time.perf_counter() - start_time

        with self._state_lock:
            run = BatchRun(
                tasks=tuple(replace(t) for t in tasks),
                processed_count=run_stats.processed,
                failed_count=run_stats.failed,
                skipped_count=sum(1 for t in tasks if t.status is TaskStatus.SKIPPED),
                total_bytes_before=run_stats.total_bytes_before,
                total_bytes_after=run_stats.total_bytes_after,
                elapsed_seconds=elapsed,
                started_at=started_at,
                concurrency=concurrency,
                stop_on_error=stop_on_error,
            )

        logger.info(
            f"🎉 Batch finished: {run.processed_count} succeeded, {run.failed_count} failed, "
            f"{run.skipped_count} skipped in {elapsed:.1f}s "
            f"(saved {format_bytes(run.total_bytes_before - run.total_bytes_after)}, "
            f"{run.aggregate_ratio * 100:.1f}%)"
        )
        return run

    def _mark_running(self, task: BatchTask) -> None:
        with self._state_lock:
            task.status = TaskStatus.RUNNING
            task.started_at = time.perf_counter()

    def _mark_skipped(self, remaining: Iterable[BatchTask]) -> None:
        with self._state_lock:
            for task in remaining:
                task.status = TaskStatus.SKIPPED

    def _finalize(
        self, task: BatchTask, future: Future[Any], run_stats: BatchStatistics
    ) -> None:
        error = future.exception()

        with self._state_lock:
            task.finished_at = time.perf_counter()

            if error is None:
                result = future.result()
                task.result = result
                task.optimization = getattr(result, "optimization", None)
                task.metrics = getattr(result, "metrics", None)
                task.status = TaskStatus.COMPLETED

                bytes_before = int(getattr(result, "bytes_before", 0) or 0)
                bytes_after = int(getattr(result, "bytes_after", 0) or 0)
                run_stats.record_success(bytes_before, bytes_after)
                self._stats.record_success(bytes_before, bytes_after)
            else:
                if isinstance(error, BatchItemError):
                    item_error = error
                else:
                    item_error = BatchItemError(
                        task.item_id,
                        f"Processing failed for {task.input_path.name}",
                        cause=error,
                        context={"error_type": type(error).__name__},
                    )
                task.exception = item_error
                task.error = clean_error_message(str(error))
                task.status = TaskStatus.FAILED

                run_stats.record_failure()
                self._stats.record_failure()

        if error is None:
            logger.debug(f"Completed {task.input_path.name} in {task.duration_ms}ms")
        else:
            logger.error(f"❌ Conversion failed: {task.input_path.name}: {error}")
