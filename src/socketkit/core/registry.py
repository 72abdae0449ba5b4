"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The set of live connections a TCPServer is tracking.

    accept thread ──add()──────►┌───────────────────────────┐
                                │  {id: RemoteConnection}   │◄── get(id)
    read loop N ──remove(id)───►│  insertion ordered        │    send(id)
                                └───────────────────────────┘

Several threads touch the registry at once: the accept thread appends,
every read loop removes itself when it ends, and callers look connections
up to send. Insert and remove take a lock; lookups return None for an
unknown id instead of raising, because "removed a moment ago" is a normal
outcome, not an error.

snapshot() returns a copy, so iterating it is safe while connections come
and go.
=============================================================================
"""

import logging
import threading
from typing import Dict, Iterator, List, Optional

from .connection import RemoteConnection


logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Thread-safe, insertion-ordered map of connection id → connection."""

    def __init__(self):
        self._connections: Dict[int, RemoteConnection] = {}
        self._lock = threading.Lock()

    def add(self, conn: RemoteConnection) -> None:
        with self._lock:
            self._connections[conn.id] = conn

    def remove(self, conn_id: int) -> Optional[RemoteConnection]:
        """
        Remove a connection by id.

        Returns:
            The removed connection, or None if it was not registered.
            Removing twice is harmless.
        """
        with self._lock:
            return self._connections.pop(conn_id, None)

    def get(self, conn_id: int) -> Optional[RemoteConnection]:
        with self._lock:
            return self._connections.get(conn_id)

    def snapshot(self) -> List[RemoteConnection]:
        """Ordered copy of the registered connections."""
        with self._lock:
            return list(self._connections.values())

    def close_all(self) -> int:
        """
        Drain the registry and close every connection.

        Connections are closed outside the lock; close() may block briefly
        and read loops call remove() while they exit.

        Returns:
            Number of connections that were registered.
        """
        with self._lock:
            drained = list(self._connections.values())
            self._connections.clear()

        for conn in drained:
            conn.close()

        if drained:
            logger.debug(f"Closed {len(drained)} connections")
        return len(drained)

    def __contains__(self, conn_id: object) -> bool:
        with self._lock:
            return conn_id in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __iter__(self) -> Iterator[RemoteConnection]:
        return iter(self.snapshot())
