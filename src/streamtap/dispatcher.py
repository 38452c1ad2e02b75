"""Bounded worker pool for download jobs.

PUBLIC API:
  - DownloadDispatcher: Fixed pool of download workers fed by a bounded queue
"""

import logging
import queue
import threading
from typing import Callable, Protocol

from streamtap.errors import DispatcherClosedError, DownloadError, QueueFullError
from streamtap.models import DispatchStats, DownloadJob, JobOutcome

__all__ = ["DownloadDispatcher"]

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    def run(self, job: DownloadJob) -> JobOutcome: ...


class DownloadDispatcher:
    """Runs download jobs on a fixed number of worker threads.

    Jobs wait in a single bounded queue. When it is full, submit() blocks
    (or raises QueueFullError), which pushes back on the caller instead of
    letting pending work pile up. At most ``workers`` jobs run at once and
    each queued job is taken by exactly one worker.

    Attributes:
        workers: Number of worker threads.
        stats: Running totals.
    """

    def __init__(
        self,
        runner: JobRunner,
        workers: int = 8,
        queue_size: int = 64,
        on_outcome: Callable[[JobOutcome], None] | None = None,
        poll_interval: float = 0.1,
    ):
        """Initialize dispatcher.

        Args:
            runner: Executes a single job, e.g. a Downloader.
            workers: Pool size.
            queue_size: Jobs that may wait for a free worker.
            on_outcome: Called on a worker thread with every job's outcome.
            poll_interval: How often idle workers check for shutdown.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.runner = runner
        self.workers = workers
        self.on_outcome = on_outcome
        self.poll_interval = poll_interval
        self.stats = DispatchStats()

        self._queue: queue.Queue[DownloadJob] = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._active = 0
        self._submitting = 0

    @property
    def active(self) -> int:
        """Number of jobs currently running."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of jobs waiting for a worker."""
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        """Start the worker threads."""
        if self._threads:
            raise RuntimeError("Dispatcher already started")

        for i in range(self.workers):
            thread = threading.Thread(target=self._work, name=f"download-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.debug(f"Started {self.workers} download workers")

    def submit(self, job: DownloadJob, block: bool = True, timeout: float | None = None) -> None:
        """Queue a job for execution.

        Args:
            job: Job to run.
            block: Wait for queue space when the queue is full.
            timeout: Maximum seconds to wait when blocking.

        Raises:
            DispatcherClosedError: If shutdown has started.
            QueueFullError: If no space became available.
        """
        with self._lock:
            if self._closed.is_set():
                raise DispatcherClosedError(f"Dispatcher is shut down, dropping {job.source_url}")
            self._submitting += 1

        try:
            self._queue.put(job, block=block, timeout=timeout)
        except queue.Full:
            raise QueueFullError(f"Job queue full ({self._queue.maxsize}), dropping {job.source_url}") from None
        finally:
            with self._lock:
                self._submitting -= 1

        self.stats.record_submit()

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> list[DownloadJob]:
        """Stop accepting jobs and let the workers wind down.

        Args:
            wait: Block until all workers have exited.
            cancel_pending: Discard jobs that have not started yet.

        Returns:
            Jobs discarded by cancel_pending.
        """
        with self._lock:
            self._closed.set()

        discarded: list[DownloadJob] = []
        if cancel_pending:
            while True:
                try:
                    discarded.append(self._queue.get_nowait())
                except queue.Empty:
                    break
            if discarded:
                logger.warning(f"Discarded {len(discarded)} pending downloads")

        if wait:
            for thread in self._threads:
                thread.join()
            logger.debug("All download workers stopped")

        return discarded

    def _work(self) -> None:
        while True:
            try:
                job = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                with self._lock:
                    if self._closed.is_set() and self._submitting == 0 and self._queue.empty():
                        return
                continue

            with self._lock:
                self._active += 1
                active = self._active
            self.stats.record_start(active)

            try:
                outcome = self._execute(job)
            finally:
                with self._lock:
                    self._active -= 1

            self.stats.record_outcome(outcome)
            if self.on_outcome:
                try:
                    self.on_outcome(outcome)
                except Exception:
                    logger.exception("Outcome handler failed")

    def _execute(self, job: DownloadJob) -> JobOutcome:
        try:
            return self.runner.run(job)
        except DownloadError as e:
            return JobOutcome(job=job, bytes_written=e.bytes_written, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error downloading {job.source_url}")
            return JobOutcome(job=job, error=e)
