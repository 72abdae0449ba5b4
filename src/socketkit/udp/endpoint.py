"""
=============================================================================
UDP ENDPOINT
=============================================================================

Connectionless datagrams: no accept, no registry, no per-peer state. Each
datagram is one complete message; there is no delimiter and no
fragmentation handling.

=============================================================================
THE SELF-REARMING RECEIVE
=============================================================================

There is no receive loop. Instead exactly one receive is "armed" at a time,
and finishing it arms the next one:

    start() ──► _arm()
                  │  submit recvfrom() to the receive worker
                  ▼
           ┌──────────────────┐   datagram    ┌──────────────────────────┐
           │ pending receive  │──────────────►│ _on_receive()            │
           └──────────────────┘               │  on_message(addr,        │
                  ▲                           │             data, text)  │
                  │                           │  finally: _arm() ────────┼─┐
                  │                           └──────────────────────────┘ │
                  └────────────────────────────────────────────────────────┘

The rearm sits in a finally block: a callback that raises is logged, and
the next datagram is still delivered.

A receive that times out (poll_interval) rearms too, which is how a stopped
endpoint notices: stop() clears the running flag and closes the socket, the
pending receive fails or times out, and nothing rearms it.

=============================================================================
SENDING
=============================================================================

send() is fire-and-forget over a fresh socket per call. Without an explicit
destination it broadcasts (255.255.255.255) to the endpoint's own port.
=============================================================================
"""

import functools
import logging
import socket
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Tuple, Union

from ..config import ServerConfig
from ..errors import AlreadyStartedError


logger = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 65535

DatagramHandler = Callable[[Tuple[str, int], bytes, str], None]


class UDPEndpoint:
    """
    Bound UDP socket with callback delivery.

    Usage:
        endpoint = UDPEndpoint(ServerConfig(host="0.0.0.0", port=9999))
        endpoint.on_message = lambda addr, data, text: print(addr, text)
        endpoint.start()
        endpoint.send("hello", address="127.0.0.1")
        endpoint.stop()
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        on_message: Optional[DatagramHandler] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self.on_message = on_message

        self._socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._generation = 0
        self._address: Tuple[str, int] = (self.config.host, self.config.port)
        self._lifecycle_lock = threading.Lock()

        self.datagrams_received = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port once started with port 0."""
        return self._address

    @property
    def port(self) -> int:
        return self._address[1]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> Tuple[str, int]:
        """
        Bind and arm the first receive.

        Raises:
            AlreadyStartedError: if already started.
            OSError: if the port cannot be bound.
        """
        with self._lifecycle_lock:
            if self._socket is not None:
                raise AlreadyStartedError("UDPEndpoint")

            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.bind((self.config.host, self.config.port))
            except OSError as e:
                logger.error(f"Failed to bind UDP {self.config.host}:{self.config.port}: {e}")
                sock.close()
                raise
            sock.settimeout(self.config.poll_interval)

            self._address = sock.getsockname()[:2]
            self._socket = sock
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="udp-receive"
            )
            self._generation += 1
            self._running = True

            logger.info(f"UDP endpoint listening on {self._address[0]}:{self._address[1]}")
            self._arm(self._generation)

        return self._address

    def stop(self) -> None:
        """Close the socket; the pending receive is not rearmed. Idempotent."""
        with self._lifecycle_lock:
            self._running = False
            sock, self._socket = self._socket, None
            executor, self._executor = self._executor, None

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
            logger.info("UDP endpoint stopped")

        if executor is not None:
            executor.shutdown(wait=False)

    def __enter__(self) -> "UDPEndpoint":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    def _arm(self, generation: int) -> None:
        """Issue the next receive, unless this run has been stopped."""
        sock = self._socket
        executor = self._executor
        if sock is None or executor is None or not self._is_current(generation):
            return

        try:
            future = executor.submit(self._receive, sock)
        except RuntimeError:
            # Executor shut down by stop() between the checks above
            return
        future.add_done_callback(functools.partial(self._on_receive, generation))

    @staticmethod
    def _receive(sock: socket.socket) -> Optional[Tuple[bytes, Tuple[str, int]]]:
        try:
            return sock.recvfrom(MAX_DATAGRAM_SIZE)
        except socket.timeout:
            return None

    def _on_receive(self, generation: int, future: Future) -> None:
        try:
            if future.cancelled():
                return

            try:
                result = future.result()
            except OSError as e:
                if self._is_current(generation):
                    logger.debug(f"UDP receive failed: {e}")
                result = None

            if result is None or not self._is_current(generation):
                return

            data, sender = result
            sender = (sender[0], sender[1])
            self.datagrams_received += 1
            text = data.decode(self.config.encoding, errors="replace")

            if self.on_message is not None:
                try:
                    self.on_message(sender, data, text)
                except Exception as e:
                    logger.exception(f"UDP message callback failed: {e}")
        finally:
            self._arm(generation)

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(
        self,
        payload: Union[str, bytes],
        port: Optional[int] = None,
        address: Optional[str] = None,
    ) -> int:
        """
        Send one datagram from a fresh ephemeral socket.

        Args:
            payload: Text (encoded with the configured encoding) or bytes.
            port: Destination port. Defaults to this endpoint's port.
            address: Destination host. Defaults to the broadcast address.

        Returns:
            Number of bytes sent.

        Raises:
            OSError: if the datagram cannot be sent (too large, no route...).
        """
        if isinstance(payload, str):
            data = payload.encode(self.config.encoding)
        else:
            data = bytes(payload)

        target = (
            address or self.config.broadcast_address,
            port if port is not None else self.port,
        )

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sent = sock.sendto(data, target)

        logger.debug(f"Sent {sent} bytes to {target[0]}:{target[1]}")
        return sent
