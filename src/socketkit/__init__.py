"""
=============================================================================
SOCKETKIT - Callback-Driven Socket Services
=============================================================================

Three connection styles on plain blocking sockets and background threads:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   TCPServer / TCPClient    newline-framed text over TCP             │
    │                            on_connect / on_message / on_disconnect  │
    │                                                                      │
    │   UDPEndpoint              one datagram = one message               │
    │                            on_message(sender, data, text)           │
    │                                                                      │
    │   HTTPDispatcher           exact (method, path) routes to handlers  │
    │                            filter hook, error hook, default routes  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    socketkit/
    ├── __init__.py          # Package exports
    ├── __main__.py          # CLI entry point (python -m socketkit)
    ├── config.py            # ServerConfig dataclass
    ├── errors.py            # Exception hierarchy
    ├── log.py               # Logging setup (text / JSON)
    ├── proxy.py             # System proxy discovery
    ├── core/                # Shared building blocks
    │   ├── socket_server.py # Listening socket + accept loop
    │   ├── connection.py    # RemoteConnection
    │   ├── channel.py       # Newline framing over a stream
    │   ├── registry.py      # Live connections by id
    │   └── events.py        # Callback queue + dispatch thread
    ├── tcp/
    │   ├── server.py        # TCPServer
    │   └── client.py        # TCPClient
    ├── udp/
    │   └── endpoint.py      # UDPEndpoint
    └── http/
        ├── request.py       # Reading + parsing requests
        ├── response.py      # Responses + cookies
        ├── status_codes.py  # HTTPStatus
        ├── router.py        # RouteTable
        └── dispatcher.py    # HTTPDispatcher

=============================================================================
QUICK START
=============================================================================

    from socketkit import ServerConfig, TCPServer

    server = TCPServer(ServerConfig(host="127.0.0.1", port=9000))

    def echo(conn, frame):
        server.send(conn, frame)

    server.on_message = echo
    server.start()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .errors import (
    AlreadyStartedError,
    ConnectFailedError,
    ConnectionNotFoundError,
    NoHandlerError,
    SocketKitError,
)
from .core import ConnectionRegistry, RemoteConnection
from .http import HTTPDispatcher, RequestContext, RouteTable, set_cookie
from .log import configure_logging
from .tcp import TCPClient, TCPServer
from .udp import UDPEndpoint

__all__ = [
    "AlreadyStartedError",
    "ConnectFailedError",
    "ConnectionNotFoundError",
    "ConnectionRegistry",
    "HTTPDispatcher",
    "NoHandlerError",
    "RemoteConnection",
    "RequestContext",
    "RouteTable",
    "ServerConfig",
    "SocketKitError",
    "TCPClient",
    "TCPServer",
    "UDPEndpoint",
    "configure_logging",
    "set_cookie",
    "__version__",
]
