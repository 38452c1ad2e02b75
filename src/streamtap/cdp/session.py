"""Minimal CDP session - discovery, one page socket, commands and events.

WebSocketApp handles the WebSocket, we handle the CDP protocol.
"""

import json
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, TimeoutError
from typing import Any, Callable, TypeAlias

import httpx
import websocket

from streamtap.errors import CDPCommandError, SessionClosedError, SessionConnectionError

logger = logging.getLogger(__name__)

EventCallback: TypeAlias = Callable[[dict], None]


class CDPSession:
    """CDP client bound to a single page target.

    No auto-enable and no reconnect. Once the socket closes the session is
    done and the close callback fires.
    """

    def __init__(
        self,
        endpoint: str = "http://127.0.0.1:9222",
        timeout: float = 30,
        connect_timeout: float = 5,
        http_client: httpx.Client | None = None,
    ):
        """Initialize CDP session.

        Args:
            endpoint: DevTools HTTP endpoint of the browser.
            timeout: Default timeout for execute().
            connect_timeout: Seconds to wait for the socket to open.
            http_client: Client used for target discovery.
        """
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=2)

        # WebSocketApp instance
        self.ws_app: websocket.WebSocketApp | None = None
        self.ws_thread: threading.Thread | None = None

        # Connection state
        self.connected = threading.Event()
        self._settled = threading.Event()  # set once the socket has opened or given up
        self.page_info: dict | None = None

        # CDP request/response tracking
        self._next_id = 1
        self._pending: dict[int, tuple[str, Future]] = {}
        self._lock = threading.Lock()

        self._event_callbacks: dict[str, list[EventCallback]] = defaultdict(list)
        self._close_callback: Callable[[str], None] | None = None
        self._closed_notified = False

    @property
    def is_connected(self) -> bool:
        return self.connected.is_set()

    def list_pages(self) -> list[dict]:
        """List debuggable page targets.

        Raises:
            SessionConnectionError: If the endpoint cannot be queried.
        """
        try:
            resp = self._http.get(f"{self.endpoint}/json/list")
            resp.raise_for_status()
            targets = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SessionConnectionError(f"Failed to list pages at {self.endpoint}: {e}") from e
        return [t for t in targets if t.get("type") == "page" and "webSocketDebuggerUrl" in t]

    def create_page(self) -> dict:
        """Open a new blank page target.

        Raises:
            SessionConnectionError: If the target cannot be created.
        """
        try:
            # Chrome 111+ only accepts PUT here
            resp = self._http.put(f"{self.endpoint}/json/new")
            resp.raise_for_status()
            page = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SessionConnectionError(f"Failed to create page at {self.endpoint}: {e}") from e
        if "webSocketDebuggerUrl" not in page:
            raise SessionConnectionError("New page has no webSocketDebuggerUrl")
        return page

    def connect(self, page: dict) -> None:
        """Open the control socket of a page target.

        Raises:
            RuntimeError: If already connected.
            SessionConnectionError: If the socket fails or does not open in time.
        """
        if self.ws_app:
            raise RuntimeError("Already connected")

        ws_url = page["webSocketDebuggerUrl"]
        self.page_info = page
        self._closed_notified = False
        self._settled.clear()

        # Create WebSocketApp with callbacks
        self.ws_app = websocket.WebSocketApp(
            ws_url, on_open=self._on_open, on_message=self._on_message, on_error=self._on_error, on_close=self._on_close
        )

        # Let WebSocketApp handle everything in a thread
        self.ws_thread = threading.Thread(
            target=self._run_socket,
            args=(self.ws_app,),
            kwargs={
                "ping_interval": 30,
                "ping_timeout": 10,
                "skip_utf8_validation": True,
                "suppress_origin": True,
            },
            name="cdp-socket",
        )
        self.ws_thread.daemon = True
        self.ws_thread.start()

        self._settled.wait(timeout=self.connect_timeout)
        if not self.connected.is_set():
            self.disconnect()
            raise SessionConnectionError(f"Failed to open control socket {ws_url}")

    def _run_socket(self, ws_app: websocket.WebSocketApp, **kwargs) -> None:
        try:
            ws_app.run_forever(**kwargs)
        finally:
            self._settled.set()

    def disconnect(self) -> None:
        """Disconnect from Chrome. A requested disconnect does not fire the close callback."""
        with self._lock:
            ws_app = self.ws_app
            self.ws_app = None
            self._closed_notified = True

        if ws_app:
            ws_app.close()

        if self.ws_thread and self.ws_thread.is_alive() and self.ws_thread is not threading.current_thread():
            self.ws_thread.join(timeout=2)
        self.ws_thread = None

        self.connected.clear()
        self.page_info = None

        if self._owns_http:
            self._http.close()

    def on(self, method: str, callback: EventCallback) -> None:
        """Register callback for a CDP event.

        Callbacks run on the socket thread in arrival order and receive the
        event's params.
        """
        self._event_callbacks[method].append(callback)

    def set_close_callback(self, callback: Callable[[str], None] | None) -> None:
        """Set callback invoked once, with a reason, when the socket goes away."""
        self._close_callback = callback

    def send(self, method: str, params: dict | None = None) -> Future:
        """Send CDP command asynchronously.

        Returns a Future holding the 'result' field of the response.
        """
        ws_app = self.ws_app
        if not ws_app or not self.connected.is_set():
            raise SessionClosedError("Not connected")

        with self._lock:
            msg_id = self._next_id
            self._next_id += 1

            future = Future()
            self._pending[msg_id] = (method, future)

        message: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            message["params"] = params

        try:
            ws_app.send(json.dumps(message))
        except websocket.WebSocketException as e:
            with self._lock:
                self._pending.pop(msg_id, None)
            raise SessionClosedError(f"Failed to send {method}: {e}") from e

        return future

    def execute(self, method: str, params: dict | None = None, timeout: float | None = None) -> Any:
        """Send CDP command synchronously.

        Raises:
            CDPCommandError: If Chrome answers with an error.
            SessionClosedError: If the socket closes first.
            TimeoutError: If no answer arrives in time.
        """
        future = self.send(method, params)

        try:
            return future.result(timeout=timeout or self.timeout)
        except TimeoutError:
            # Clean up the pending future
            with self._lock:
                for msg_id, (_, f) in list(self._pending.items()):
                    if f is future:
                        self._pending.pop(msg_id, None)
                        break
            raise TimeoutError(f"Command {method} timed out")

    def _on_open(self, ws):
        """WebSocket opened."""
        logger.info("WebSocket connected")
        self.connected.set()
        self._settled.set()

    def _on_message(self, ws, message):
        """Resolve command futures and dispatch events."""
        try:
            data = json.loads(message)
        except ValueError as e:
            logger.error(f"Undecodable CDP message: {e}")
            return

        if "id" in data:
            with self._lock:
                entry = self._pending.pop(data["id"], None)

            if entry:
                method, future = entry
                if "error" in data:
                    future.set_exception(CDPCommandError(method, data["error"]))
                else:
                    future.set_result(data.get("result", {}))

        elif "method" in data:
            for callback in self._event_callbacks.get(data["method"], []):
                try:
                    callback(data.get("params", {}))
                except Exception:
                    logger.exception(f"Event callback for {data['method']} failed")

    def _on_error(self, ws, error):
        """WebSocket error."""
        logger.error(f"WebSocket error: {error}")
        if self.connected.is_set():
            self._notify_closed(f"socket error: {error}")

    def _on_close(self, ws, code, reason):
        """WebSocket closed."""
        logger.info(f"WebSocket closed: {code} {reason}")
        was_connected = self.connected.is_set()
        self.connected.clear()
        self._settled.set()

        # Fail pending commands
        with self._lock:
            pending = [future for _, future in self._pending.values()]
            self._pending.clear()
        for future in pending:
            future.set_exception(SessionClosedError("Connection closed"))

        if was_connected:
            self._notify_closed(f"socket closed: {code} {reason}")

    def _notify_closed(self, reason: str) -> None:
        with self._lock:
            if self._closed_notified:
                return
            self._closed_notified = True
        if self._close_callback:
            self._close_callback(reason)
