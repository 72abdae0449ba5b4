"""
=============================================================================
CORE SOCKET COMPONENTS
=============================================================================

The building blocks shared by the TCP, UDP and HTTP front ends:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Listener            listening socket + interruptible accept loop   │
    ├─────────────────────────────────────────────────────────────────────┤
    │  RemoteConnection    one TCP peer: stable id, addresses, liveness   │
    ├─────────────────────────────────────────────────────────────────────┤
    │  FramedChannel       byte stream ⇄ newline-terminated text frames   │
    ├─────────────────────────────────────────────────────────────────────┤
    │  ConnectionRegistry  live connections by id, safe across threads    │
    ├─────────────────────────────────────────────────────────────────────┤
    │  EventDispatcher     queue + one thread that runs user callbacks    │
    └─────────────────────────────────────────────────────────────────────┘
=============================================================================
"""

from .channel import FramedChannel, FrameTooLargeError, encode_frame
from .connection import ConnectionState, RemoteConnection
from .events import DispatcherState, Event, EventDispatcher
from .registry import ConnectionRegistry
from .socket_server import Listener

__all__ = [
    "ConnectionRegistry",
    "ConnectionState",
    "DispatcherState",
    "Event",
    "EventDispatcher",
    "FramedChannel",
    "FrameTooLargeError",
    "Listener",
    "encode_frame",
    "RemoteConnection",
]
