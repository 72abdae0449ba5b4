"""
=============================================================================
LINE-FRAMED TCP SERVER
=============================================================================

TCPServer accepts connections in the background, reads newline-terminated
frames from each one, and reports what happens through three callbacks:

    on_connect(conn)            a peer connected
    on_message(conn, frame)     a frame arrived from that peer
    on_disconnect(conn)         the peer went away

=============================================================================
THREADS
=============================================================================

    ┌──────────────────────────┐
    │ accept thread            │  Listener.serve()
    │  for each new socket:    │
    │   1. wrap + register     │──► ConnectionRegistry
    │   2. post "connect"      │──┐
    │   3. start read loop     │  │
    └──────────────────────────┘  │
    ┌──────────────────────────┐  │   ┌──────────────────────────────┐
    │ read loop, conn 1        │──┼──►│ EventDispatcher               │
    ├──────────────────────────┤  │   │  one thread runs callbacks    │
    │ read loop, conn 2        │──┘   │  in the order events arrive   │
    └──────────────────────────┘      └──────────────────────────────┘

Steps 1-3 happen in that order, so when on_connect runs the connection is
already in the registry, and the connect event is queued ahead of every
message from that connection.

=============================================================================
READ LOOP
=============================================================================

    while running:
        frame = read_frame()             blocks
        EOF / error / stopped → break
        post "message"
        peer gone (liveness check) → break

    on exit, unless the whole server is stopping:
        remove from registry, post "disconnect"
    always: close the connection

During stop() no disconnect events are posted; stop() closes everything
itself and nobody wants a burst of callbacks during shutdown.
=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, List, Optional, Tuple, Union

from ..config import ServerConfig
from ..core.channel import FramedChannel, encode_frame
from ..core.connection import RemoteConnection
from ..core.events import EventDispatcher
from ..core.registry import ConnectionRegistry
from ..core.socket_server import Listener
from ..errors import AlreadyStartedError, ConnectionNotFoundError


logger = logging.getLogger(__name__)


ConnectHandler = Callable[[RemoteConnection], None]
MessageHandler = Callable[[RemoteConnection, str], None]


class TCPServer:
    """
    Background TCP server speaking newline-terminated text frames.

    Usage:
        server = TCPServer(ServerConfig(host="127.0.0.1", port=9000))

        server.on_message = lambda conn, frame: server.send(conn, frame.upper())
        server.start()          # returns immediately
        ...
        server.stop()

    Callbacks are plain attributes. Set them before start(); they are read
    from the event thread afterwards.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        on_connect: Optional[ConnectHandler] = None,
        on_message: Optional[MessageHandler] = None,
        on_disconnect: Optional[ConnectHandler] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self.on_connect = on_connect
        self.on_message = on_message
        self.on_disconnect = on_disconnect

        self._listener = Listener(self.config)
        self._registry = ConnectionRegistry()
        self._events: Optional[EventDispatcher] = None

        self._running = False
        self._accept_thread: Optional[threading.Thread] = None
        self._lifecycle_lock = threading.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port once started with port 0."""
        return self._listener.address

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def connections(self) -> List[RemoteConnection]:
        """Connections currently tracked, oldest first."""
        return self._registry.snapshot()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> Tuple[str, int]:
        """
        Bind and start accepting in the background.

        Returns:
            The bound address.

        Raises:
            AlreadyStartedError: if already started.
            OSError: if the address cannot be bound.
        """
        with self._lifecycle_lock:
            if self._accept_thread is not None:
                raise AlreadyStartedError("TCPServer")

            # A fresh listener per run; a previous accept thread may still be
            # finishing with the old one
            self._listener = Listener(self.config)
            self._listener.open()

            self._events = EventDispatcher("tcp-server")
            self._events.start()
            self._running = True

            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                args=(self._listener, self._events),
                name="tcp-server-accept",
                daemon=True,
            )
            self._accept_thread.start()

        return self.address

    def stop(self) -> None:
        """
        Stop accepting, close every connection and drop pending events.

        Returns once sockets are closed; reader threads finish on their
        own shortly afterwards. Safe to call more than once.
        """
        with self._lifecycle_lock:
            if self._accept_thread is None:
                return

            self._running = False
            self._listener.close()

            events, self._events = self._events, None
            self._accept_thread = None

        if events is not None:
            events.shutdown(drain=False)

        closed = self._registry.close_all()
        logger.info(f"TCP server stopped, {closed} connections closed")

    def __enter__(self) -> "TCPServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # ACCEPTING
    # =========================================================================

    def _accept_loop(self, listener: Listener, events: EventDispatcher) -> None:
        def handle_socket(sock: socket.socket, address: Tuple[str, int]) -> None:
            self._handle_connect(sock, events)

        try:
            listener.serve(handle_socket, lambda: self._running)
        except Exception as e:
            logger.exception(f"Accept loop failed: {e}")
        logger.debug("Accept loop exited")

    def _handle_connect(self, sock: socket.socket, events: EventDispatcher) -> None:
        conn = RemoteConnection.from_socket(sock)

        self._registry.add(conn)

        # stop() may have drained the registry between accept() and add()
        if not self._running or events is not self._events:
            self._registry.remove(conn.id)
            conn.close()
            logger.debug(f"[{conn.id}] Dropped, server stopped during accept")
            return

        logger.info(
            f"[{conn.id}] Connected from "
            f"{conn.remote_address[0]}:{conn.remote_address[1]}"
        )

        events.post("connect", self.on_connect, conn)

        reader = threading.Thread(
            target=self._read_loop,
            args=(conn, events),
            name=f"tcp-conn-{conn.id}",
            daemon=True,
        )
        reader.start()

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
                    # Reset by peer, closed by stop()/disconnect(), ...
                    logger.debug(f"[{conn.id}] Read ended: {e}")
                    break

                if frame is None or not self._running:
                    break

                events.post("message", self.on_message, conn, frame)

                if not channel.has_buffered and not conn.is_connected:
                    break
        finally:
            if self._running:
                self._registry.remove(conn.id)
                events.post("disconnect", self.on_disconnect, conn)
                logger.info(f"[{conn.id}] Disconnected")
            conn.close()

    # =========================================================================
    # SENDING
    # =========================================================================

    def _lookup(self, connection: Union[RemoteConnection, int]) -> RemoteConnection:
        conn_id = connection.id if isinstance(connection, RemoteConnection) else connection
        conn = self._registry.get(conn_id)
        if conn is None:
            raise ConnectionNotFoundError(conn_id)
        return conn

    def send(self, connection: Union[RemoteConnection, int], frame: str) -> bool:
        """
        Send one frame to a connection.

        Args:
            connection: A RemoteConnection or its id.
            frame: Text to send; a line terminator is appended.

        Returns:
            True if written, False if the write failed (connection dying).

        Raises:
            ConnectionNotFoundError: if the connection is not registered.
        """
        conn = self._lookup(connection)
        try:
            conn.sendall(encode_frame(frame, self.config.encoding))
            return True
        except OSError as e:
            logger.warning(f"[{conn.id}] Send failed: {e}")
            return False

    def broadcast(self, frame: str) -> int:
        """
        Send one frame to every registered connection.

        Returns:
            Number of connections the frame was written to.
        """
        data = encode_frame(frame, self.config.encoding)
        sent = 0
        for conn in self._registry.snapshot():
            try:
                conn.sendall(data)
                sent += 1
            except OSError as e:
                logger.debug(f"[{conn.id}] Broadcast send failed: {e}")
        return sent

    def disconnect(self, connection: Union[RemoteConnection, int]) -> bool:
        """
        Close one connection.

        Its read loop notices, removes it from the registry and reports
        on_disconnect as for any other disconnect.

        Returns:
            False if the connection was not registered.
        """
        try:
            conn = self._lookup(connection)
        except ConnectionNotFoundError:
            return False
        conn.close()
        return True
