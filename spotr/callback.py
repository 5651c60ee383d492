"""Loopback HTTP listener that captures the OAuth authorization code."""

import enum
import http.server
import logging
import time
import urllib.parse
from typing import Any

from .config import CALLBACK_POLL_INTERVAL, CALLBACK_READ_TIMEOUT, REDIRECT_HOST, REDIRECT_PORT
from .errors import CallbackTimeout, TokenRequestFailed

logger = logging.getLogger(__name__)

# Nothing is actually served here, so every answer is a 404 with this body.
CLOSE_TAB_BODY = b"Authorization received, you can close this tab."


class ListenerState(enum.Enum):
    LISTENING = "listening"
    CAPTURED = "captured"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class CallbackListener:
    """Single-threaded redirect catcher driven by explicit polling.

    Each `poll()` waits at most `poll_interval` seconds for a connection and
    returns the current state. The first request carrying a `code` (or an
    `error`) moves the listener out of LISTENING; later requests still get the
    close-this-tab answer but change nothing. After `close()` the state is
    CLOSED and `poll()` no longer serves requests.
    """

    def __init__(
        self,
        host: str = REDIRECT_HOST,
        port: int = REDIRECT_PORT,
        poll_interval: float = CALLBACK_POLL_INTERVAL,
    ) -> None:
        self.state = ListenerState.LISTENING
        self.code: str | None = None
        self.error: str | None = None

        try:
            self._server = http.server.HTTPServer((host, port), self._create_handler_class())
        except OSError as exc:
            raise TokenRequestFailed(f"Could not listen for the OAuth redirect on {host}:{port}: {exc}") from exc
        self._server.timeout = poll_interval

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def _record(self, params: dict[str, list[str]]) -> None:
        if self.state is not ListenerState.LISTENING:
            return

        if "code" in params:
            self.code = params["code"][0]
            self.state = ListenerState.CAPTURED
        elif "error" in params:
            self.error = params["error"][0]
            self.state = ListenerState.FAILED

    def _create_handler_class(self) -> type:
        listener = self

        class CallbackHandler(http.server.BaseHTTPRequestHandler):
            # Idle connections (browser preconnects) are dropped so polling resumes.
            timeout = CALLBACK_READ_TIMEOUT

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback request: " + format, *args)

            def do_GET(self) -> None:
                query = urllib.parse.urlparse(self.path).query
                listener._record(urllib.parse.parse_qs(query))

                self.send_response(404)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(CLOSE_TAB_BODY)))
                self.end_headers()
                self.wfile.write(CLOSE_TAB_BODY)

        return CallbackHandler

    def poll(self) -> ListenerState:
        if self.state is ListenerState.LISTENING:
            self._server.handle_request()
        return self.state

    def wait(self, timeout: float | None = None) -> str:
        """Poll until a code arrives and return it.

        With `timeout=None` this blocks until a redirect is delivered; only
        process termination ends the wait early.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while self.poll() is ListenerState.LISTENING:
            if deadline is not None and time.monotonic() >= deadline:
                self.state = ListenerState.TIMED_OUT

        if self.state is ListenerState.TIMED_OUT:
            raise CallbackTimeout()
        if self.state is ListenerState.FAILED:
            raise TokenRequestFailed(f"Authorization was not granted: {self.error}")
        if self.state is ListenerState.CLOSED:
            raise TokenRequestFailed("The OAuth redirect listener is closed")
        return self.code

    def close(self) -> None:
        if self.state is not ListenerState.CLOSED:
            self._server.server_close()
            self.state = ListenerState.CLOSED
