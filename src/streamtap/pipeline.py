"""Capture pipeline and its failure policy.

PUBLIC API:
  - CapturePipeline: Connects, listens, filters and dispatches downloads
"""

import logging
import threading
from functools import partial
from pathlib import Path

from streamtap.cdp import CDPSession
from streamtap.config import CaptureConfig
from streamtap.connector import SessionConnector
from streamtap.dispatcher import DownloadDispatcher
from streamtap.downloader import Downloader
from streamtap.errors import DispatcherClosedError, MalformedURLError, QueueFullError
from streamtap.listener import EventListener
from streamtap.models import DownloadJob, JobNamer, JobOutcome
from streamtap.segments import is_segment_url, to_downloadable

__all__ = ["CapturePipeline"]

logger = logging.getLogger(__name__)


class CapturePipeline:
    """Session connector -> listener -> filter -> dispatcher -> downloader.

    Decides what happens to each kind of failure:

    - connection errors are retried by the connector
    - a lost event stream or failed bootstrap ends run() with the error
    - malformed segment URLs are logged and skipped
    - failed downloads are logged, the other jobs carry on

    Attributes:
        config: Settings the pipeline was built from.
        connector: Session connector.
        dispatcher: Download worker pool.
        namer: Destination path allocator.
    """

    def __init__(
        self,
        config: CaptureConfig,
        connector: SessionConnector | None = None,
        dispatcher: DownloadDispatcher | None = None,
        namer: JobNamer | None = None,
    ):
        self.config = config
        self.connector = connector or SessionConnector(
            endpoint=config.endpoint,
            bootstrap_url=config.bootstrap_url,
            retry_interval=config.retry_interval,
            max_attempts=config.max_attempts,
            deadline=config.connect_deadline,
            session_factory=partial(CDPSession, connect_timeout=config.connect_timeout),
        )
        self._downloader: Downloader | None = None
        if dispatcher is None:
            self._downloader = Downloader(timeout=config.request_timeout, chunk_size=config.chunk_size)
        self.dispatcher = dispatcher or DownloadDispatcher(
            self._downloader,
            workers=config.workers,
            queue_size=config.queue_size,
        )
        if self.dispatcher.on_outcome is None:
            self.dispatcher.on_outcome = self._on_outcome
        self.namer = namer or JobNamer(config.output_dir, prefix=config.prefix)

        self._cancel = threading.Event()
        self._listener: EventListener | None = None
        self._lock = threading.RLock()  # stop() may run in a signal handler on the run() thread

    def run(self) -> None:
        """Run until stop() is called or a fatal error occurs.

        Raises:
            SessionConnectionError: If the connect bound is exhausted.
            ConnectCancelledError: If stopped while connecting.
            BootstrapError: If the bootstrap navigation fails.
            EventStreamError: If the event stream is lost.
        """
        Path(self.config.output_dir).mkdir(parents=True, exist_ok=True)

        session = self.connector.connect(self._cancel)
        try:
            listener = EventListener(session)
            with self._lock:
                if self._cancel.is_set():
                    self._stopped_early()
                    return
                self._listener = listener
            listener.start()
            if self._cancel.is_set():
                self._stopped_early()
                return
            self.connector.bootstrap(session)

            self.dispatcher.start()
            try:
                for url in listener:
                    self.handle_url(url)
            finally:
                self._shutdown_dispatcher()
        finally:
            session.disconnect()

    def handle_url(self, url: str) -> DownloadJob | None:
        """Turn one observed response URL into at most one queued job.

        Returns:
            The queued job, or None if the URL was not queued.
        """
        if not is_segment_url(url):
            return None

        try:
            source_url = to_downloadable(url)
        except MalformedURLError as e:
            logger.warning(f"Skipping segment: {e}")
            return None

        job = self.namer.job_for(source_url)
        try:
            self.dispatcher.submit(job)
        except (DispatcherClosedError, QueueFullError) as e:
            logger.warning(str(e))
            return None

        logger.debug(f"Queued {source_url} -> {job.target_path}")
        return job

    def stop(self) -> None:
        """Request a graceful stop. Safe to call from any thread or a signal handler."""
        with self._lock:
            self._cancel.set()
            if self._listener:
                self._listener.stop()

    def _stopped_early(self) -> None:
        logger.info("Stopped before capture started")
        if self._downloader:
            self._downloader.close()

    def _shutdown_dispatcher(self) -> None:
        drain = self.config.drain_on_exit
        if drain and self.dispatcher.pending:
            logger.info(f"Waiting for {self.dispatcher.pending + self.dispatcher.active} downloads to finish")
        self.dispatcher.shutdown(wait=drain, cancel_pending=not drain)
        if drain and self._downloader:
            self._downloader.close()

        stats = self.dispatcher.stats
        logger.info(
            f"Downloads: {stats.completed} done, {stats.failed} failed, "
            f"{stats.bytes_written} bytes, {stats.submitted} queued in total"
        )

    def _on_outcome(self, outcome: JobOutcome) -> None:
        if outcome.ok:
            return
        logger.error(f"Download of {outcome.job.source_url} failed: {outcome.error}")
