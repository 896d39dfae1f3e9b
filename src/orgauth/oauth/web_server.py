"""Short-lived loopback HTTP listener for OAuth redirects.

:class:`WebServer` binds one port, serves exactly one request on a daemon
thread, and hands that request to the caller as a
(:class:`CallbackRequest`, :class:`CallbackResponse`) pair through
:meth:`WebServer.receive_request`. The browser connection stays open until
the caller writes a response with :meth:`~WebServer.do_redirect`,
:meth:`~WebServer.send_error`, or :meth:`~WebServer.report_error`, so the
page the user sees reflects the real outcome of the login.

Two failure modes are reported with their own error types:

* the port is held by another process -- :class:`~orgauth.exceptions.PortConflictError`;
* no request arrives within the client socket timeout --
  :class:`~orgauth.exceptions.SocketTimeoutError`. The timeout defaults to
  :attr:`WebServer.DEFAULT_CLIENT_SOCKET_TIMEOUT` milliseconds and can be
  overridden with ``ORGAUTH_HTTP_SOCKET_TIMEOUT``.
"""

from __future__ import annotations

import errno
import html
import logging
import queue
import socketserver
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from orgauth.env import Env
from orgauth.exceptions import InvalidUsageError, PortConflictError, SocketTimeoutError
from orgauth.models import MAX_CLIENT_SOCKET_TIMEOUT, ServerConfig

logger = logging.getLogger(__name__)

_ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
_SERVE_POLL_INTERVAL = 0.25
# Seconds a connection may sit idle before sending its request line.
_IDLE_CONNECTION_TIMEOUT = 3.0

_ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Login failed</title></head>
<body>
<h2>Login failed</h2>
<p>{message}</p>
<p>Return to your terminal and try again.</p>
</body>
</html>
"""


class CallbackRequest:
    """The parsed request the browser sent to the callback server.

    Attributes:
        method: HTTP method, upper case.
        path: URL path without the query string.
        query: Query parameters; repeated keys keep their first value.
        headers: Request headers.
    """

    def __init__(
        self,
        method: str,
        path: str,
        query: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.query = query or {}
        self.headers = headers or {}
        self.closed = False

    @classmethod
    def from_target(cls, method: str, target: str, headers: Optional[dict[str, str]] = None) -> CallbackRequest:
        """Build a request from an HTTP request target such as ``/cb?code=1``."""
        parsed = urlparse(target)
        params = parse_qs(parsed.query, keep_blank_values=True)
        query = {key: values[0] for key, values in params.items()}
        return cls(method, parsed.path or "/", query, headers)

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"CallbackRequest({self.method} {self.path})"


class CallbackResponse:
    """Write handle for the response to a :class:`CallbackRequest`.

    A response can be sent once; later attempts are ignored and return
    ``False``. If the browser has already gone away the write is logged
    and the response still counts as sent.
    """

    def __init__(self, handler: BaseHTTPRequestHandler) -> None:
        self._handler = handler
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self.status_code: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def send(
        self,
        status: int,
        headers: Optional[dict[str, str]] = None,
        body: bytes = b"",
    ) -> bool:
        with self._lock:
            if self._finished.is_set():
                logger.debug("Response already sent; dropping status %d", status)
                return False
            try:
                self._handler.send_response(status)
                for name, value in (headers or {}).items():
                    self._handler.send_header(name, value)
                self._handler.send_header("Content-Length", str(len(body)))
                self._handler.end_headers()
                if body:
                    self._handler.wfile.write(body)
                self._handler.wfile.flush()
            except OSError as exc:
                logger.debug("Browser connection lost before response was written: %s", exc)
            self.status_code = status
            self._finished.set()
            return True

    def wait(self, closed: threading.Event) -> None:
        """Block until a response is sent, or send 503 once *closed* is set."""
        while not self._finished.wait(_SERVE_POLL_INTERVAL):
            if closed.is_set():
                self.send(
                    503,
                    {"Content-Type": "text/plain; charset=utf-8"},
                    b"The login server has shut down.\n",
                )
                return


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer that queues requests for :class:`WebServer` and skips FQDN lookup."""

    def __init__(self, address: tuple[str, int]) -> None:
        self.exchanges: queue.Queue[tuple[CallbackRequest, CallbackResponse]] = queue.Queue()
        self.closed = threading.Event()
        self.request_received = False
        super().__init__(address, _CallbackHandler)

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = int(port)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackHTTPServer
    # Preconnects that never send a request are dropped so the next
    # connection gets served.
    timeout = _IDLE_CONNECTION_TIMEOUT

    def do_GET(self) -> None:  # noqa: N802
        self._deliver()

    def do_POST(self) -> None:  # noqa: N802
        self._deliver()

    def do_PUT(self) -> None:  # noqa: N802
        self._deliver()

    def do_DELETE(self) -> None:  # noqa: N802
        self._deliver()

    def _deliver(self) -> None:
        self.server.request_received = True
        request = CallbackRequest.from_target(self.command, self.path, dict(self.headers.items()))
        response = CallbackResponse(self)
        if self.server.closed.is_set():
            response.wait(self.server.closed)
            return
        self.server.exchanges.put((request, response))
        response.wait(self.server.closed)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("callback server: " + format, *args)


class WebServer:
    """Loopback listener for a single OAuth redirect.

    Args:
        config: Port and timeout settings. Defaults to port
            :attr:`DEFAULT_PORT` on ``localhost``.
        env: Environment reader used for the socket timeout override.

    Example::

        server = WebServer(ServerConfig(port=1717))
        server.start()
        try:
            request, response = server.receive_request()
            server.do_redirect(303, "https://example.com/done", response)
        finally:
            server.close()
    """

    DEFAULT_PORT = ServerConfig().default_port
    DEFAULT_CLIENT_SOCKET_TIMEOUT = 20000
    SOCKET_TIMEOUT_ENV_VAR = "ORGAUTH_HTTP_SOCKET_TIMEOUT"

    def __init__(self, config: Optional[ServerConfig] = None, env: Optional[Env] = None) -> None:
        self._config = config or ServerConfig()
        self._env = env or Env()
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._close_lock = threading.Lock()
        self._closed = False
        self._port: Optional[int] = None

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def port(self) -> int:
        """Bound port after :meth:`start`, the configured port before."""
        return self._port if self._port is not None else self._config.effective_port

    @property
    def is_listening(self) -> bool:
        return self._httpd is not None and not self._closed

    def get_socket_timeout(self) -> int:
        """Return the client socket timeout in milliseconds.

        ``ORGAUTH_HTTP_SOCKET_TIMEOUT`` wins when it holds a positive
        integer no larger than
        :data:`~orgauth.models.MAX_CLIENT_SOCKET_TIMEOUT`; a missing, zero,
        negative, oversized or non-integer value falls back to
        :attr:`DEFAULT_CLIENT_SOCKET_TIMEOUT`.
        """
        value = self._env.get_number(self.SOCKET_TIMEOUT_ENV_VAR)
        valid = isinstance(value, int) and not isinstance(value, bool)
        if valid and 0 < value <= MAX_CLIENT_SOCKET_TIMEOUT:
            return value
        if value is not None:
            logger.debug(
                "Ignoring %s=%r; using %d ms",
                self.SOCKET_TIMEOUT_ENV_VAR,
                value,
                self.DEFAULT_CLIENT_SOCKET_TIMEOUT,
            )
        return self.DEFAULT_CLIENT_SOCKET_TIMEOUT

    def start(self) -> int:
        """Bind the port and start waiting for the browser.

        Returns:
            The bound port.

        Raises:
            PortConflictError: Another process listens on the port.
            InvalidUsageError: The server was already started.
            OSError: Any other bind failure.
        """
        if self._httpd is not None or self._closed:
            raise InvalidUsageError("WebServer.start() can only be called once")

        requested = self._config.effective_port
        try:
            httpd = _CallbackHTTPServer((self.host, requested))
        except OSError as exc:
            if exc.errno in _ADDRESS_IN_USE:
                raise PortConflictError(
                    f"EADDRINUSE: port {requested} on {self.host} is already in use. "
                    "Close the process using it, or set 'oauthLocalPort' in "
                    "orgauth-project.json to a free port."
                ) from exc
            raise

        httpd.timeout = _SERVE_POLL_INTERVAL
        self._httpd = httpd
        self._port = int(httpd.server_address[1])
        self._thread = threading.Thread(
            target=self._serve, args=(httpd,), name=f"orgauth-callback-{self._port}", daemon=True
        )
        self._thread.start()
        logger.debug("Callback server listening on %s:%d", self.host, self._port)
        return self._port

    def receive_request(self) -> tuple[CallbackRequest, CallbackResponse]:
        """Wait for the first request within the client socket timeout.

        Raises:
            SocketTimeoutError: No request arrived in time. The listener
                is closed before this is raised.
            InvalidUsageError: :meth:`start` was not called.
        """
        if self._httpd is None:
            raise InvalidUsageError("WebServer.start() must be called before receive_request()")
        timeout_ms = self._config.client_socket_timeout or self.get_socket_timeout()
        try:
            return self._httpd.exchanges.get(timeout=timeout_ms / 1000)
        except queue.Empty:
            self.close()
            raise SocketTimeoutError(
                f"SOCKET_TIMEOUT: no request reached the login server on port "
                f"{self.port} within {timeout_ms} ms"
            ) from None

    def do_redirect(self, status: int, location: str, response: CallbackResponse) -> None:
        """Redirect the browser to *location* with *status* (normally 303)."""
        logger.debug("Redirecting browser (%d) to %s", status, location.split("?", 1)[0])
        response.send(status, {"Location": location})

    def send_error(self, status: int, message: str, response: CallbackResponse) -> None:
        """Finish *response* with *status* and a plain-text *message*."""
        body = message if message.endswith("\n") else f"{message}\n"
        response.send(
            status,
            {"Content-Type": "text/plain; charset=utf-8"},
            body.encode("utf-8"),
        )

    def report_error(self, error: BaseException, response: CallbackResponse) -> None:
        """Render *error* as an HTML page so the browser is never left hanging."""
        logger.debug("Reporting error to browser: %s", error)
        page = _ERROR_PAGE.format(message=html.escape(str(error)))
        response.send(
            500,
            {"Content-Type": "text/html; charset=utf-8"},
            page.encode("utf-8"),
        )

    def close(self) -> bool:
        """Release the port. Idempotent.

        Returns:
            ``True`` if this call released the socket, ``False`` if it was
            already closed or never started.
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True
            httpd = self._httpd
            if httpd is None:
                return False
            httpd.closed.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        httpd.server_close()
        logger.debug("Callback server on port %s closed", self._port)
        return True

    def __enter__(self) -> WebServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _serve(self, httpd: _CallbackHTTPServer) -> None:
        while not httpd.closed.is_set() and not httpd.request_received:
            httpd.handle_request()
