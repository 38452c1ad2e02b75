"""Response event stream of a debugging session.

PUBLIC API:
  - EventListener: Turns Network.responseReceived events into a URL iterator
"""

import logging
import queue
from collections.abc import Iterator
from typing import TYPE_CHECKING

from streamtap.errors import CDPCommandError, EventStreamError, SessionClosedError
from streamtap.models import ResponseEvent

if TYPE_CHECKING:
    from streamtap.cdp import CDPSession

__all__ = ["EventListener"]

logger = logging.getLogger(__name__)

RESPONSE_EVENT = "Network.responseReceived"


class _Stopped:
    pass


class _Closed:
    def __init__(self, reason: str):
        self.reason = reason


class EventListener:
    """Yields the URL of every response the page receives, in arrival order.

    The socket thread appends events to an unbounded FIFO, so a slow consumer
    never causes events to be dropped or reordered. The stream can be
    consumed once.
    """

    def __init__(self, session: "CDPSession"):
        """Initialize listener.

        Args:
            session: Connected session. Borrowed, not owned.
        """
        self.session = session
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self._started = False
        self._consumed = False

    def start(self) -> None:
        """Subscribe to response events, then enable the Network domain.

        Raises:
            EventStreamError: If the Network domain cannot be enabled.
        """
        if self._started:
            raise RuntimeError("Listener already started")
        self._started = True

        self.session.on(RESPONSE_EVENT, self._on_response)
        self.session.set_close_callback(self._on_close)
        try:
            self.session.execute("Network.enable")
        except (CDPCommandError, SessionClosedError, TimeoutError) as e:
            raise EventStreamError(f"Failed to enable network events: {e}") from e
        logger.info("Network events enabled")

    def stop(self) -> None:
        """End the URL stream after the events already received."""
        self._events.put(_Stopped())

    def urls(self) -> Iterator[str]:
        """Iterate over response URLs until stopped.

        Raises:
            EventStreamError: If the session's socket closes or fails.
            RuntimeError: If the stream was already consumed.
        """
        if self._consumed:
            raise RuntimeError("Event stream can only be consumed once")
        self._consumed = True

        while True:
            item = self._events.get()
            if isinstance(item, _Stopped):
                return
            if isinstance(item, _Closed):
                raise EventStreamError(f"Response event stream lost: {item.reason}")
            yield item.url

    def __iter__(self) -> Iterator[str]:
        return self.urls()

    def _on_response(self, params: dict) -> None:
        event = ResponseEvent.from_params(params)
        if event is None:
            logger.debug(f"Response event without URL: {params.get('requestId')}")
            return
        self._events.put(event)

    def _on_close(self, reason: str) -> None:
        self._events.put(_Closed(reason))
