"""
=============================================================================
LINE-FRAMED TCP CLIENT
=============================================================================

The single-connection mirror of TCPServer. One outbound connection, one
background read loop, the same frame format and the same event delivery:

    start()
      │
      ├── connect() fails ──► close socket, post on_connect_failed(error)
      │                       return False (no read loop)
      │
      └── connect() ok ─────► post on_connect()
                              start read loop ──► on_message(frame) ...
                                              └─► on_disconnect()   (once)
                              return True

Callbacks run on the client's event thread, never on the caller's.
=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, Optional

from ..config import ServerConfig
from ..core.channel import FramedChannel, encode_frame
from ..core.connection import RemoteConnection
from ..core.events import EventDispatcher
from ..errors import AlreadyStartedError, ConnectFailedError


logger = logging.getLogger(__name__)


class TCPClient:
    """
    Background TCP client speaking newline-terminated text frames.

    Usage:
        client = TCPClient("127.0.0.1", 9000)
        client.on_message = print
        if client.start():
            client.send("hello")
        ...
        client.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        config: Optional[ServerConfig] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_message: Optional[Callable[[str], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
        on_connect_failed: Optional[Callable[[ConnectFailedError], None]] = None,
    ):
        self.host = host
        self.port = port
        self.config = config or ServerConfig()
        self.config.validate()

        self.on_connect = on_connect
        self.on_message = on_message
        self.on_disconnect = on_disconnect
        self.on_connect_failed = on_connect_failed

        self._connection: Optional[RemoteConnection] = None
        self._events: Optional[EventDispatcher] = None
        self._reader: Optional[threading.Thread] = None
        self._running = False
        self._lifecycle_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        conn = self._connection
        return self._running and conn is not None and conn.is_connected

    @property
    def connection(self) -> Optional[RemoteConnection]:
        return self._connection

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> bool:
        """
        Connect and start reading in the background.

        Returns:
            True if connected. False if the connection failed, in which
            case on_connect_failed has been queued instead of on_connect.

        Raises:
            AlreadyStartedError: if already connected.
        """
        with self._lifecycle_lock:
            if self._running:
                raise AlreadyStartedError("TCPClient")

            events = EventDispatcher("tcp-client")
            events.start()

            try:
                # create_connection() closes its own socket if it fails
                sock = socket.create_connection(
                    (self.host, self.port), timeout=self.config.connect_timeout
                )
            except OSError as e:
                error = ConnectFailedError(self.host, self.port, e)
                logger.warning(str(error))
                events.post("connect_failed", self.on_connect_failed, error)
                # Deliver the failure, then let the event thread exit
                events.shutdown(drain=True, timeout=0)
                return False

            conn = RemoteConnection.from_socket(sock)
            self._connection = conn
            self._events = events
            self._running = True

            logger.info(f"[{conn.id}] Connected to {self.host}:{self.port}")
            events.post("connect", self.on_connect)

            self._reader = threading.Thread(
                target=self._read_loop,
                args=(conn, events),
                name=f"tcp-client-{conn.id}",
                daemon=True,
            )
            self._reader.start()
            return True

    def stop(self) -> None:
        """Close the connection and stop event delivery. Idempotent."""
        with self._lifecycle_lock:
            self._running = False
            events, self._events = self._events, None
            conn = self._connection
            self._reader = None

        if events is not None:
            events.shutdown(drain=False)
        if conn is not None:
            conn.close()

    def __enter__(self) -> "TCPClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # READING
    # =========================================================================

    def _read_loop(self, conn: RemoteConnection, events: EventDispatcher) -> None:
        channel = FramedChannel(
            conn,
            encoding=self.config.encoding,
            buffer_size=self.config.buffer_size,
        )

        try:
            while self._running:
                try:
                    frame = channel.read_frame()
                except Exception as e:
                    logger.debug(f"[{conn.id}] Read ended: {e}")
                    break

                if frame is None or not self._running:
                    break

                events.post("message", self.on_message, frame)

                if not channel.has_buffered and not conn.is_connected:
                    break
        finally:
            with self._lifecycle_lock:
                # Only the run that owns this connection reports on it
                remote_closed = self._running and self._connection is conn
                if remote_closed:
                    self._running = False
                    self._events = None

            if remote_closed:
                logger.info(f"[{conn.id}] Disconnected from {self.host}:{self.port}")
                events.post("disconnect", self.on_disconnect)
                events.shutdown(drain=True, timeout=0)
            conn.close()

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, frame: str) -> bool:
        """
        Send one frame to the server.

        Returns:
            True if written. False if not connected or the write failed;
            never raises for those cases.
        """
        conn = self._connection
        if conn is None or not self._running:
            logger.warning(f"Send to {self.host}:{self.port} while not connected")
            return False
        try:
            conn.sendall(encode_frame(frame, self.config.encoding))
            return True
        except OSError as e:
            logger.warning(f"[{conn.id}] Send failed: {e}")
            return False
