"""Data model for the capture pipeline.

PUBLIC API:
  - ResponseEvent: One observed network response
  - DownloadJob: Source URL paired with a unique destination path
  - JobOutcome: Result of executing a DownloadJob
  - DispatchStats: Counters kept by the dispatcher
  - JobNamer: Issues collision-free destination paths
"""

import itertools
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeAlias

URL: TypeAlias = str


@dataclass(frozen=True)
class ResponseEvent:
    """A network response reported by the debugging session."""

    url: URL

    @classmethod
    def from_params(cls, params: dict) -> "ResponseEvent | None":
        """Build from Network.responseReceived params.

        Returns:
            ResponseEvent, or None if the event carries no URL.
        """
        url = params.get("response", {}).get("url")
        if not url:
            return None
        return cls(url=url)


@dataclass(frozen=True)
class DownloadJob:
    """One unit of download work.

    Attributes:
        source_url: URL to fetch.
        target_path: Local file the body is written to. Never reused.
    """

    source_url: URL
    target_path: Path


@dataclass(frozen=True)
class JobOutcome:
    """Result of running a DownloadJob."""

    job: DownloadJob
    bytes_written: int = 0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DispatchStats:
    """Running totals for a dispatcher."""

    submitted: int = 0
    completed: int = 0
    failed: int = 0
    bytes_written: int = 0
    peak_active: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_submit(self) -> None:
        with self._lock:
            self.submitted += 1

    def record_start(self, active: int) -> None:
        with self._lock:
            self.peak_active = max(self.peak_active, active)

    def record_outcome(self, outcome: JobOutcome) -> None:
        with self._lock:
            if outcome.ok:
                self.completed += 1
            else:
                self.failed += 1
            self.bytes_written += outcome.bytes_written


def _default_run_id() -> str:
    return f"{time.strftime('%Y%m%d%H%M%S')}-{os.getpid()}"


class JobNamer:
    """Issues destination paths that never repeat within a process.

    Each path embeds a strictly increasing counter, so two calls can never
    return the same name. The run id separates runs sharing a directory.
    """

    def __init__(self, output_dir: str | Path = ".", prefix: str = "DL-", run_id: str | None = None):
        """Initialize namer.

        Args:
            output_dir: Directory the files are placed in.
            prefix: File name prefix.
            run_id: Per-run token. Defaults to start timestamp and pid.
        """
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.run_id = run_id or _default_run_id()
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next_path(self) -> Path:
        """Return the next unused destination path."""
        with self._lock:
            n = next(self._counter)
        return self.output_dir / f"{self.prefix}{self.run_id}-{n:06d}"

    def job_for(self, source_url: URL) -> DownloadJob:
        """Create a job for source_url with a fresh destination."""
        return DownloadJob(source_url=source_url, target_path=self.next_path())


__all__ = ["URL", "ResponseEvent", "DownloadJob", "JobOutcome", "DispatchStats", "JobNamer"]
