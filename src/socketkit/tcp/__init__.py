"""Line-framed TCP server and client."""

from .client import TCPClient
from .server import TCPServer

__all__ = ["TCPClient", "TCPServer"]
