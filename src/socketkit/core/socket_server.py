"""
=============================================================================
LISTENING SOCKET
=============================================================================

Listener owns one listening TCP socket and its accept loop. TCPServer and
HTTPDispatcher both sit on top of it; they differ only in what they do with
each accepted socket.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the socket
    2. bind()      Reserve IP:PORT (port 0 = let the OS choose)
    3. listen()    Start queueing incoming connections
    4. accept()    Wait for a connection, get a NEW socket for it
    5. close()     Release the listening socket

=============================================================================
STOPPING A BLOCKED accept()
=============================================================================

A thread blocked in accept() does not reliably wake up when another thread
closes the socket. So the socket gets a short timeout (poll_interval) and
the loop re-checks whether it should keep going every time accept() times
out:

    while should_continue():
        try:
            accept()          # blocks at most poll_interval seconds
        except timeout:
            continue          # check the flag again
        except OSError:
            ...               # closed under us, or a failed attempt

stop() therefore returns immediately, and the accept thread notices within
one poll interval.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:  restart on the same port without waiting out TIME_WAIT.
TCP_NODELAY:   frames are small; send them now instead of batching
               (Nagle's algorithm).
=============================================================================
"""

import logging
import socket
from typing import Callable, Optional, Tuple

from ..config import ServerConfig


logger = logging.getLogger(__name__)


class Listener:
    """
    Listening socket plus accept loop.

    Usage:
        listener = Listener(config)
        listener.open()
        listener.serve(handle_socket, lambda: running)   # blocks
        listener.close()                                 # from another thread
    """

    def __init__(self, config: ServerConfig):
        """
        Args:
            config: Supplies host, port, backlog and poll_interval.

        The socket is created lazily by open().
        """
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._address: Tuple[str, int] = (config.host, config.port)

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port). After open(), port 0 is resolved."""
        return self._address

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self.config.poll_interval)
        return sock

    def open(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Returns:
            The bound address.

        Raises:
            OSError: if the address is in use or not permitted.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        host, port = sock.getsockname()[:2]
        self._address = (host, port)
        self._socket = sock
        logger.info(f"Listening on {host}:{port}")
        return self._address

    def serve(
        self,
        socket_handler: Callable[[socket.socket, Tuple[str, int]], None],
        should_continue: Callable[[], bool],
    ) -> None:
        """
        Accept loop. Runs until should_continue() is False or the listening
        socket is closed.

        Failed accepts and exceptions from socket_handler are logged and
        swallowed; one bad connection attempt never ends the loop.
        """
        while should_continue():
            sock = self._socket
            if sock is None:
                break

            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not should_continue() or self._socket is None:
                    break
                # A connection attempt can fail between SYN and accept()
                logger.debug(f"Accept failed: {e}")
                continue

            if not should_continue():
                client_socket.close()
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                socket_handler(client_socket, client_address)
            except Exception as e:
                logger.exception(f"Error handling connection from {client_address}: {e}")

    def close(self) -> None:
        """Close the listening socket. Idempotent."""
        sock, self._socket = self._socket, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError:
            pass
        logger.info(f"Stopped listening on {self._address[0]}:{self._address[1]}")
