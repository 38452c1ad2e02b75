"""Single-job HTTP downloader.

PUBLIC API:
  - Downloader: Streams one job's response body into its destination file
"""

import logging

import httpx

from streamtap.errors import FileCreateError, TransferError
from streamtap.models import DownloadJob, JobOutcome

__all__ = ["Downloader"]

logger = logging.getLogger(__name__)


class Downloader:
    """Fetches a job's source URL and writes the body to its target path.

    The body is written chunk by chunk as it arrives. A failed transfer
    leaves the partial file behind; nothing is retried or cleaned up here.
    Safe to share between worker threads.
    """

    def __init__(self, client: httpx.Client | None = None, timeout: float = 30.0, chunk_size: int = 65536):
        """Initialize downloader.

        Args:
            client: Shared HTTP client. Created when omitted.
            timeout: Network timeout for a created client.
            chunk_size: Bytes per write.
        """
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.chunk_size = chunk_size

    def run(self, job: DownloadJob) -> JobOutcome:
        """Download one job.

        Returns:
            JobOutcome with the number of bytes written.

        Raises:
            FileCreateError: If the target exists or cannot be created.
            TransferError: On network failure, error status or write failure.
        """
        logger.info(f"Downloading {job.source_url}")

        try:
            out = open(job.target_path, "xb")
        except OSError as e:
            raise FileCreateError(job, f"Can't create {job.target_path}: {e}") from e

        written = 0
        with out:
            try:
                with self.client.stream("GET", job.source_url) as resp:
                    resp.raise_for_status()
                    for chunk in resp.iter_bytes(self.chunk_size):
                        out.write(chunk)
                        written += len(chunk)
            except httpx.HTTPStatusError as e:
                raise TransferError(
                    job, f"{job.source_url} answered {e.response.status_code}", bytes_written=written
                ) from e
            except (httpx.HTTPError, OSError) as e:
                raise TransferError(
                    job, f"Transfer of {job.source_url} failed after {written} bytes: {e}", bytes_written=written
                ) from e

        logger.info(f"Done, got {written} bytes ({job.target_path.name})")
        return JobOutcome(job=job, bytes_written=written)

    def close(self) -> None:
        """Close the HTTP client if this downloader created it."""
        if self._owns_client:
            self.client.close()
