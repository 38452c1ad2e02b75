"""Debugging session bring-up with fixed-interval retry.

PUBLIC API:
  - SessionConnector: Connects to a page target, retrying until it succeeds
"""

import logging
import threading
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, stop_any, stop_before_delay, wait_fixed

from streamtap.cdp import CDPSession
from streamtap.errors import BootstrapError, CDPCommandError, ConnectCancelledError, SessionClosedError, SessionConnectionError

__all__ = ["SessionConnector"]

logger = logging.getLogger(__name__)


class SessionConnector:
    """Establishes the debugging session the pipeline listens on.

    A connect attempt looks up an existing page target, creates one if there
    is none, then opens the page's control socket. Failed attempts are
    retried after a fixed interval until one succeeds, the optional attempt
    or time bound is hit, or the attempt is cancelled.

    Attributes:
        endpoint: DevTools HTTP endpoint, e.g. http://127.0.0.1:9222.
        bootstrap_url: Page opened once the session is listening.
        retry_interval: Seconds between attempts.
        max_attempts: Attempt bound. None retries forever.
        deadline: Seconds after which no new attempt starts. None for no limit.
    """

    def __init__(
        self,
        endpoint: str = "http://127.0.0.1:9222",
        bootstrap_url: str | None = None,
        retry_interval: float = 5.0,
        max_attempts: int | None = None,
        deadline: float | None = None,
        session_factory: Callable[[str], CDPSession] = CDPSession,
        sleep: Callable[[float], None] | None = None,
    ):
        """Initialize connector.

        Args:
            endpoint: DevTools HTTP endpoint.
            bootstrap_url: URL to navigate to after connecting. Empty skips it.
            retry_interval: Fixed delay between attempts.
            max_attempts: Maximum number of attempts.
            deadline: Maximum seconds spent retrying.
            session_factory: Builds an unconnected session for an endpoint.
            sleep: Replaces the interruptible wait between attempts.
        """
        self.endpoint = endpoint
        self.bootstrap_url = bootstrap_url
        self.retry_interval = retry_interval
        self.max_attempts = max_attempts
        self.deadline = deadline
        self._session_factory = session_factory
        self._sleep = sleep

    def connect(self, cancel: threading.Event | None = None) -> CDPSession:
        """Connect to a page target, retrying on failure.

        Args:
            cancel: Setting this event aborts the wait between attempts.

        Returns:
            Connected CDPSession. The caller owns it.

        Raises:
            SessionConnectionError: If the attempt or time bound is exhausted.
            ConnectCancelledError: If cancel is set before a session is up.
        """
        cancel = cancel or threading.Event()

        def cancelled(retry_state: RetryCallState) -> bool:
            return cancel.is_set()

        stops = [cancelled]
        if self.max_attempts is not None:
            stops.append(stop_after_attempt(self.max_attempts))
        if self.deadline is not None:
            # checked before each wait, so no attempt starts past the deadline
            stops.append(stop_before_delay(self.deadline))

        retrying = Retrying(
            retry=retry_if_exception_type(SessionConnectionError),
            wait=wait_fixed(self.retry_interval),
            stop=stop_any(*stops),
            sleep=self._sleep or cancel.wait,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            session = retrying(self._attempt, cancel)
        except SessionConnectionError:
            if cancel.is_set():
                raise ConnectCancelledError("Connect cancelled") from None
            raise

        page = session.page_info or {}
        logger.info(f"Connected to page {page.get('id', '?')} ({page.get('url', '')})")
        return session

    def bootstrap(self, session: CDPSession) -> None:
        """Navigate the controlled page to bootstrap_url.

        Raises:
            BootstrapError: If navigation fails.
        """
        if not self.bootstrap_url:
            return

        logger.info(f"Opening {self.bootstrap_url}")
        try:
            result = session.execute("Page.navigate", {"url": self.bootstrap_url})
        except (CDPCommandError, SessionClosedError, TimeoutError) as e:
            raise BootstrapError(f"Failed to open {self.bootstrap_url}: {e}") from e

        if result.get("errorText"):
            raise BootstrapError(f"Failed to open {self.bootstrap_url}: {result['errorText']}")

    def _attempt(self, cancel: threading.Event) -> CDPSession:
        if cancel.is_set():
            raise ConnectCancelledError("Connect cancelled")

        session = self._session_factory(self.endpoint)
        try:
            pages = session.list_pages()
        except SessionConnectionError as e:
            logger.debug(f"Page lookup failed, creating a page instead: {e}")
            pages = []

        try:
            page = pages[0] if pages else session.create_page()
            session.connect(page)
        except SessionConnectionError:
            session.disconnect()
            raise
        return session

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Can't connect to {self.endpoint}. Chrome must be started with --remote-debugging-port. "
            f"{error} (attempt {retry_state.attempt_number}, retrying in {self.retry_interval:g}s)"
        )
