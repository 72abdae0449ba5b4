"""Connectionless UDP endpoint."""

from .endpoint import MAX_DATAGRAM_SIZE, UDPEndpoint

__all__ = ["MAX_DATAGRAM_SIZE", "UDPEndpoint"]
