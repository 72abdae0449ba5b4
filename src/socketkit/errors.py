"""
=============================================================================
EXCEPTION TYPES
=============================================================================

Every condition the toolkit raises synchronously lives here. Background
loops never raise these to the caller; they log and carry on. Only misuse
of start()/send() surfaces as an exception.

    SocketKitError
    ├── AlreadyStartedError      start() called twice without stop()
    ├── ConnectionNotFoundError  send to an id the registry no longer holds
    ├── NoHandlerError           HTTP request with no route and no default
    └── ConnectFailedError       TCP client could not reach its host

=============================================================================
"""

from typing import Optional


class SocketKitError(Exception):
    """Base class for all toolkit errors."""


class AlreadyStartedError(SocketKitError, RuntimeError):
    """
    Raised when start() is called on a component that is already running.

    The running instance is left untouched.
    """

    def __init__(self, component: str):
        super().__init__(f"{component} already started, stop first")
        self.component = component


class ConnectionNotFoundError(SocketKitError, KeyError):
    """
    Raised when sending to a connection id that is not registered.

    The connection may have disconnected between the caller looking it up
    and the send, so callers must treat this as an ordinary failed send.
    """

    def __init__(self, connection_id: int):
        super().__init__(connection_id)
        self.connection_id = connection_id

    def __str__(self) -> str:
        return f"Connection {self.connection_id} is not registered"


class NoHandlerError(SocketKitError):
    """
    Raised when an HTTP request matches neither a route nor a default route.

    Carries the requested path and the name of the route table so the
    error hook can report which table was missing the handler.
    """

    def __init__(self, path: str, table_name: str, method: Optional[str] = None):
        super().__init__(
            f"Handler for request {path} was missing from {table_name}"
        )
        self.path = path
        self.table_name = table_name
        self.method = method


class ConnectFailedError(SocketKitError, ConnectionError):
    """Raised (or handed to on_connect_failed) when a TCP connect fails."""

    def __init__(self, host: str, port: int, reason: Optional[BaseException] = None):
        message = f"Failed to connect to {host}:{port}"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)
        self.host = host
        self.port = port
        self.reason = reason
