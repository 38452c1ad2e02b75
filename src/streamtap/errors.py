"""Exception hierarchy for streamtap.

Errors are grouped by how the pipeline treats them: connection failures are
retried, stream failures are fatal, malformed URLs are dropped and download
failures are contained to a single job.

PUBLIC API:
  - StreamtapError: Base exception for all streamtap errors
  - SessionConnectionError: Discovery or transport failure while connecting
  - ConnectCancelledError: Connect aborted by a cancellation signal
  - BootstrapError: Initial page navigation failed
  - CDPCommandError: Chrome answered a command with an error
  - SessionClosedError: Command pending when the socket closed
  - EventStreamError: Response event stream closed or failed
  - MalformedURLError: URL cannot be turned into a download URL
  - DownloadError: Base for per-job download failures
  - FileCreateError: Destination file could not be created
  - TransferError: HTTP transfer or write failed
  - DispatcherClosedError: Job submitted after shutdown
  - QueueFullError: Job queue stayed full
  - ConfigurationError: Invalid configuration file or value
"""


class StreamtapError(Exception):
    """Base exception for all streamtap errors."""

    pass


class SessionConnectionError(StreamtapError, ConnectionError):
    """Raised when the debugging endpoint cannot be discovered or reached."""

    pass


class ConnectCancelledError(StreamtapError):
    """Raised when a pending connect is cancelled."""

    pass


class BootstrapError(StreamtapError):
    """Raised when the controlled page cannot be navigated to the bootstrap URL."""

    pass


class CDPCommandError(StreamtapError):
    """Raised when Chrome returns an error for a command."""

    def __init__(self, method: str, error: dict):
        self.method = method
        self.error = error
        super().__init__(f"{method} failed: {error.get('message', error)}")


class SessionClosedError(StreamtapError):
    """Raised for commands still pending when the session closed."""

    pass


class EventStreamError(StreamtapError):
    """Raised when the response event stream closes or errors."""

    pass


class MalformedURLError(StreamtapError, ValueError):
    """Raised when a URL cannot be parsed into a downloadable URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Malformed URL {url!r}: {reason}")


class DownloadError(StreamtapError):
    """Base exception for a failed download job."""

    def __init__(self, job, message: str, bytes_written: int = 0):
        self.job = job
        self.bytes_written = bytes_written
        super().__init__(message)


class FileCreateError(DownloadError):
    """Raised when the job's destination path is occupied or unwritable."""

    pass


class TransferError(DownloadError):
    """Raised on a network failure, error status or partial write."""

    pass


class DispatcherClosedError(StreamtapError):
    """Raised when submitting to a dispatcher that is shutting down."""

    pass


class QueueFullError(StreamtapError):
    """Raised when a job cannot be queued without blocking."""

    pass


class ConfigurationError(StreamtapError):
    """Raised for invalid configuration files or values."""

    pass
