"""
=============================================================================
REMOTE CONNECTION
=============================================================================

A RemoteConnection is the toolkit's handle to one TCP peer, either accepted
by a TCPServer or connected by a TCPClient.

=============================================================================
IDENTITY: IDS, NOT ADDRESSES
=============================================================================

Two peers can share a remote address (think NAT, or one host reconnecting
from a recycled port). So a connection is identified by a numeric id:

    ┌────────┬──────────────────────┬──────────────────────┐
    │   id   │ remote_address       │ state                │
    ├────────┼──────────────────────┼──────────────────────┤
    │   1    │ ("10.0.0.5", 50211)  │ CLOSED               │
    │   2    │ ("10.0.0.5", 50211)  │ OPEN   ◄── same addr │
    └────────┴──────────────────────┴──────────────────────┘

Ids come from a process-wide counter. They are assigned once, never change
and are never reused, so equality and hashing use the id alone.

=============================================================================
LIVENESS
=============================================================================

A TCP socket does not tell you the peer has gone until you read from it.
is_connected asks the question without consuming data:

    select() says readable?
        no  → nothing pending, still connected
        yes → recv(1, MSG_PEEK)
                b""   → peer closed (EOF is "readable")
                data  → still connected, data left in place

The answer is computed on every access; it is never cached.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    OPEN ──────► CLOSING ──────► CLOSED

close() is idempotent: the second call sees CLOSED and returns.
=============================================================================
"""

import itertools
import logging
import select
import socket
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


# Process-wide id source. next() on a shared counter is guarded by a lock
# so ids stay unique across accept threads of different servers.
_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def next_connection_id() -> int:
    """Allocate a new, never reused connection id."""
    with _id_lock:
        return next(_id_counter)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    OPEN = "open"          # Socket usable for reads and writes
    CLOSING = "closing"    # close() in progress
    CLOSED = "closed"      # Socket released


def _endpoint(sock: socket.socket, remote: bool) -> Tuple[str, int]:
    """Read a socket's peer or local address, tolerating closed sockets."""
    try:
        address = sock.getpeername() if remote else sock.getsockname()
    except OSError:
        return ("", 0)
    # AF_UNIX sockets (socketpair) report a path string, possibly empty
    if not isinstance(address, tuple):
        return (str(address), 0)
    # IPv6 addresses come back as 4-tuples; keep (host, port)
    return (address[0], address[1])


@dataclass(eq=False)
class RemoteConnection:
    """
    One peer over a stream socket.

    Build instances with RemoteConnection.from_socket(); the constructor is
    public for tests that want to fake addresses.

    Attributes:
        socket: The underlying connected socket.
        remote_address: Peer (host, port), captured at wrap time.
        local_address: Local (host, port), captured at wrap time.
        id: Unique numeric id, stable for the connection's lifetime.
        state: Lifecycle state.
    """

    socket: socket.socket
    remote_address: Tuple[str, int]
    local_address: Tuple[str, int]
    id: int = field(default_factory=next_connection_id)
    state: ConnectionState = ConnectionState.OPEN

    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_socket(cls, sock: socket.socket) -> "RemoteConnection":
        """
        Wrap an accepted or connected socket.

        The socket is switched to blocking mode; reads happen on a
        dedicated background thread, so blocking is what we want.
        """
        sock.setblocking(True)
        return cls(
            socket=sock,
            remote_address=_endpoint(sock, remote=True),
            local_address=_endpoint(sock, remote=False),
        )

    # =========================================================================
    # IDENTITY
    # =========================================================================

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteConnection):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def is_connected(self) -> bool:
        """Check, right now, whether the peer is still there."""
        if self.state != ConnectionState.OPEN:
            return False
        try:
            readable, _, _ = select.select([self.socket], [], [], 0)
            if not readable:
                return True
            return bool(self.socket.recv(1, socket.MSG_PEEK))
        except (OSError, ValueError):
            # ValueError: select() on a socket whose fd is already -1
            return False

    # =========================================================================
    # I/O
    # =========================================================================

    def sendall(self, data: bytes) -> None:
        """
        Write all bytes. Raises OSError if the socket is gone.

        Writers from different threads are serialized so two frames never
        interleave on the wire.
        """
        with self._write_lock:
            self.socket.sendall(data)

    def close(self) -> None:
        """
        Close the connection. Safe to call any number of times, from any
        thread.

        shutdown(SHUT_RDWR) comes first: closing alone does not reliably
        wake a thread blocked in recv() on the same socket, shutdown does.
        """
        with self._close_lock:
            if self.state != ConnectionState.OPEN:
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self) -> "RemoteConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
