"""
=============================================================================
HTTP ROUTE DISPATCHER
=============================================================================

A deliberately small HTTP server: one background thread, one request per
connection, handled start to finish before the next accept.

=============================================================================
PER-REQUEST STATE MACHINE
=============================================================================

    accept
      │
      ▼
    read + parse ───────── client sent nothing ──► close
      │
      ▼
    filter hook ────────── False and enforce_filter ──► 403
      │  (result otherwise ignored)
      ▼
    resolve route ──────── no route, no default ──► NoHandlerError ─┐
      │                                                             │
      ▼                                                             │
    handler(ctx) → (payload, content_type)                          │
      │                                                             │
      ▼                                                             │
    write response, close                                           │
                                                                    │
    ANY exception above ◄───────────────────────────────────────────┘
      │
      ├── error hook(exception)       its own failure is only logged
      └── nothing written yet?        404 NoHandlerError
                                      4xx/5xx HTTPParseError status
                                      500 anything else

Every path ends with the connection closed and the loop waiting for the
next one. A slow handler delays every request queued behind it.
=============================================================================
"""

import logging
import socket
import threading
import time
from typing import Optional, Tuple, Union

from ..config import ServerConfig
from ..core.channel import FramedChannel
from ..core.socket_server import Listener
from ..errors import AlreadyStartedError, NoHandlerError
from .request import HTTPParseError, HTTPRequest, RequestParser, read_raw_request
from .response import HTTPResponse, error_response
from .router import RequestContext, RouteSnapshot, RouteTable
from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)

# Upper bounds on reading leftover client bytes before close
DRAIN_TIMEOUT = 0.5
MAX_DRAIN_BYTES = 64 * 1024


class HTTPDispatcher:
    """
    Serves a RouteTable over HTTP/1.x.

    Usage:
        api = RouteTable("Api")

        @api.get("/")
        def index(ctx):
            return "hello", "text/plain"

        dispatcher = HTTPDispatcher(api, ServerConfig(port=8080))
        dispatcher.start()
        ...
        dispatcher.stop()
    """

    def __init__(self, routes: RouteTable, config: Optional[ServerConfig] = None):
        self.routes = routes
        self.config = config or ServerConfig()
        self.config.validate()

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._listener = Listener(self.config)
        self._snapshot: Optional[RouteSnapshot] = None
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()
        self._lifecycle_lock = threading.Lock()

        self.requests_handled = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and not self._stopped.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        return self._listener.address

    @property
    def snapshot(self) -> Optional[RouteSnapshot]:
        """Routes in effect since the last start()."""
        return self._snapshot

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> Tuple[str, int]:
        """
        Snapshot the route table, bind and start serving.

        Raises:
            AlreadyStartedError: if already running.
            OSError: if the address cannot be bound.
        """
        with self._lifecycle_lock:
            if self._thread is not None:
                raise AlreadyStartedError("HTTPDispatcher")

            snapshot = self.routes.snapshot()
            listener = Listener(self.config)
            listener.open()

            stopped = threading.Event()
            self._snapshot = snapshot
            self._listener = listener
            self._stopped = stopped

            for line in self.routes.describe():
                logger.debug(f"Route {line}")

            self._thread = threading.Thread(
                target=self._serve,
                args=(listener, snapshot, stopped),
                name="http-dispatcher",
                daemon=True,
            )
            self._thread.start()

        return listener.address

    def stop(self) -> None:
        """Stop accepting. A request in progress finishes first. Idempotent."""
        with self._lifecycle_lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            self._stopped.set()
            self._listener.close()

        if thread is not threading.current_thread():
            thread.join(timeout=self.config.poll_interval * 2)
        logger.info(f"HTTP dispatcher stopped after {self.requests_handled} requests")

    def __enter__(self) -> "HTTPDispatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _serve(self, listener: Listener, snapshot: RouteSnapshot, stopped: threading.Event) -> None:
        def handle_socket(sock: socket.socket, address: Tuple[str, int]) -> None:
            self._handle(sock, address, snapshot)

        try:
            listener.serve(handle_socket, lambda: not stopped.is_set())
        except Exception as e:
            logger.exception(f"HTTP dispatcher loop failed: {e}")
        logger.debug("HTTP dispatcher loop exited")

    def _handle(self, sock: socket.socket, address: Tuple[str, int], snapshot: RouteSnapshot) -> None:
        written = False
        request: Optional[HTTPRequest] = None

        try:
            sock.settimeout(self.config.timeout)
            channel = FramedChannel(
                sock,
                buffer_size=self.config.buffer_size,
                max_size=self.config.max_request_size,
            )

            raw = read_raw_request(channel)
            if raw is None:
                logger.debug(f"{address[0]}:{address[1]} closed without a request")
                return
            request = self._parser.parse(raw, address)

            if snapshot.filter_hook is not None:
                allowed = snapshot.filter_hook(request)
                if self.config.enforce_filter and allowed is False:
                    written = True
                    self._write(sock, error_response(HTTPStatus.FORBIDDEN), request)
                    return

            handler = snapshot.resolve(request.method, request.path)
            context = RequestContext(request)
            payload, content_type = handler(context)

            response = context.response
            response.set_content_type(content_type)
            response.set_body(_encode_payload(payload, self.config.encoding))

            written = True
            self._write(sock, response, request)

        except Exception as e:
            self._report(e, snapshot)
            if not written:
                try:
                    self._write(sock, error_response(_error_status(e)), request)
                except OSError as send_error:
                    logger.debug(f"Could not send error response: {send_error}")
        finally:
            self.requests_handled += 1
            _close_gracefully(sock)

    def _write(self, sock: socket.socket, response: HTTPResponse, request: Optional[HTTPRequest]) -> None:
        sock.sendall(response.to_bytes(self.config.server_name))
        if request is not None:
            logger.info(f"{request.method} {request.path} {int(response.status)}")
        else:
            logger.info(f"- - {int(response.status)}")

    def _report(self, error: BaseException, snapshot: RouteSnapshot) -> None:
        if isinstance(error, (NoHandlerError, HTTPParseError)):
            logger.warning(str(error))
        else:
            logger.exception(f"Request failed: {error}")

        if snapshot.error_hook is None:
            return
        try:
            snapshot.error_hook(error)
        except Exception as hook_error:
            logger.exception(f"Error hook failed: {hook_error}")


def _encode_payload(payload: Union[str, bytes], encoding: str) -> bytes:
    if isinstance(payload, str):
        return payload.encode(encoding)
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    raise TypeError(f"Handler payload must be str or bytes, not {type(payload).__name__}")


def _error_status(error: BaseException) -> int:
    if isinstance(error, NoHandlerError):
        return HTTPStatus.NOT_FOUND
    if isinstance(error, HTTPParseError):
        return error.status_code
    return HTTPStatus.INTERNAL_SERVER_ERROR


def _close_gracefully(
    sock: socket.socket,
    drain_timeout: float = DRAIN_TIMEOUT,
    max_drain: int = MAX_DRAIN_BYTES,
) -> None:
    """
    Send FIN, drain what the client still sends, then close.

    The drain stops after drain_timeout seconds in total or max_drain
    bytes, whichever comes first, so a trickling client cannot hold the
    dispatcher thread.
    """
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    deadline = time.monotonic() + drain_timeout
    drained = 0
    try:
        while drained < max_drain:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock.settimeout(remaining)
            chunk = sock.recv(1024)
            if not chunk:
                break
            drained += len(chunk)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
