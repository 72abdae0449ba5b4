"""
=============================================================================
TOOLKIT CONFIGURATION
=============================================================================

One dataclass configures every component: the TCP server and client, the
UDP endpoint and the HTTP dispatcher. Each component only reads the fields
it needs.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m socketkit tcp-server --port 9000                │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── SOCKETKIT_PORT=9000 python -m socketkit tcp-server        │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration shared by all socket components.

    Development:
        ServerConfig(host="127.0.0.1", port=0, log_level="DEBUG")

    Listening on every interface:
        ServerConfig(host="0.0.0.0", port=9000)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Interface to bind to (servers, UDP) or host to connect to (client)."""

    port: int = 0
    """Port number. 0 asks the OS for a free port; read it back from .address."""

    backlog: int = 128
    """Maximum number of queued connections on a listening socket."""

    buffer_size: int = 4096
    """Bytes requested per recv() call."""

    encoding: str = "utf-8"
    """Text encoding for TCP frames and decoded UDP datagrams."""

    poll_interval: float = 0.5
    """
    Timeout for accept() and UDP receives. Blocking calls wake up at least
    this often to notice that stop() was called.
    """

    timeout: Optional[float] = 30.0
    """Timeout for reading one HTTP request. None = wait forever."""

    connect_timeout: Optional[float] = 10.0
    """Timeout for the TCP client's connect()."""

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Largest HTTP request the dispatcher will read."""

    broadcast_address: str = "255.255.255.255"
    """Default UDP destination when send() is given no address."""

    enforce_filter: bool = False
    """
    When True, an HTTP filter hook returning False rejects the request with
    403 Forbidden. When False the filter is advisory and its result is
    ignored.
    """

    server_name: str = "socketkit/1.0"
    """Value of the Server header on HTTP responses."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            SOCKETKIT_HOST        Host (default: 0.0.0.0)
            SOCKETKIT_PORT        Port (default: 0)
            SOCKETKIT_TIMEOUT     HTTP read timeout in seconds (default: 30)
            SOCKETKIT_ENCODING    Text encoding (default: utf-8)
            SOCKETKIT_LOG_LEVEL   Logging level (default: INFO)
            SOCKETKIT_LOG_FORMAT  text or json (default: text)
        """
        return cls(
            host=os.getenv("SOCKETKIT_HOST", "0.0.0.0"),
            port=int(os.getenv("SOCKETKIT_PORT", "0")),
            timeout=float(os.getenv("SOCKETKIT_TIMEOUT", "30")),
            encoding=os.getenv("SOCKETKIT_ENCODING", "utf-8"),
            log_level=os.getenv("SOCKETKIT_LOG_LEVEL", "INFO"),
            log_format=os.getenv("SOCKETKIT_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by every component constructor so a bad value fails at
        construction time, not on the first accept.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be > 0")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")

        try:
            "".encode(self.encoding)
        except LookupError:
            raise ValueError(f"Unknown encoding: {self.encoding}")
