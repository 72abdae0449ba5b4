"""
=============================================================================
FRAMED STREAM CHANNEL
=============================================================================

Turns a bidirectional TCP byte stream into discrete newline-terminated text
frames, in both directions.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Peer sends:
        send("hello\\n")
        send("world\\n")

    We might receive:
        recv() → "hel"
        recv() → "lo\\nwor"
        recv() → "ld\\n"

So we buffer and cut at the delimiter:

    ┌──────────────────────────────────────────────────────────────────┐
    │  _buffer: b"lo\\nwor"                                              │
    │             └──┬──┘                                               │
    │           frame "hello" (with the earlier b"hel")                 │
    │                  leftover b"wor" waits for the next recv()        │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
FRAMING RULES
=============================================================================

Write:  text + "\\n", encoded with the channel's encoding.
Read:   bytes up to "\\n"; a trailing "\\r" is dropped, so CRLF peers work.
EOF:    an unterminated tail is returned as a last frame, then None.

There is NO escaping and NO length prefix. A frame that itself contains
"\\n" is received as several frames:

    write_frame("a\\nb\\nc")   →   read "a", read "b", read "c"

The HTTP dispatcher reuses the same buffer through read_until() and
read_exact().
=============================================================================
"""

import logging
import socket
from typing import Optional, Union

from .connection import RemoteConnection


logger = logging.getLogger(__name__)

FRAME_DELIMITER = b"\n"


class FrameTooLargeError(ValueError):
    """Raised when buffered data exceeds the channel's max_size."""


class FramedChannel:
    """
    Buffered reader/writer over one stream socket.

    A channel is owned by exactly one reading thread. Writes may come from
    any thread; each frame goes out in a single sendall() call.

    Usage:
        channel = FramedChannel(conn)
        channel.write_frame("PING")
        reply = channel.read_frame()   # blocks; None at end of stream
    """

    def __init__(
        self,
        stream: Union[RemoteConnection, socket.socket],
        encoding: str = "utf-8",
        buffer_size: int = 4096,
        max_size: Optional[int] = None,
    ):
        """
        Args:
            stream: A RemoteConnection or a raw connected socket.
            encoding: Text encoding for frames.
            buffer_size: Bytes requested per recv().
            max_size: Upper bound on buffered bytes; None means unbounded.
        """
        if isinstance(stream, RemoteConnection):
            self._socket = stream.socket
        else:
            self._socket = stream
        self.encoding = encoding
        self.buffer_size = buffer_size
        self.max_size = max_size
        self._buffer = b""
        self._eof = False

    @property
    def has_buffered(self) -> bool:
        """True if bytes are waiting in the buffer."""
        return bool(self._buffer)

    # =========================================================================
    # LOW-LEVEL READS
    # =========================================================================

    def _fill(self) -> bool:
        """
        Pull one chunk from the socket into the buffer.

        Returns:
            False once the peer has closed the stream.

        Raises:
            socket.timeout if the socket has a timeout and it expires.
            OSError if the connection breaks.
        """
        if self._eof:
            return False
        chunk = self._socket.recv(self.buffer_size)
        if not chunk:
            self._eof = True
            return False
        self._buffer += chunk
        if self.max_size is not None and len(self._buffer) > self.max_size:
            raise FrameTooLargeError(
                f"Buffered data too large: {len(self._buffer)} bytes"
            )
        return True

    def read_until(self, delimiter: bytes) -> Optional[bytes]:
        """
        Read up to and including the delimiter.

        Returns:
            The bytes including the delimiter, or None if the stream ended
            before the delimiter arrived.
        """
        while True:
            index = self._buffer.find(delimiter)
            if index != -1:
                end = index + len(delimiter)
                data, self._buffer = self._buffer[:end], self._buffer[end:]
                return data
            if not self._fill():
                return None

    def read_exact(self, size: int) -> bytes:
        """
        Read exactly size bytes, or fewer if the stream ends first.
        """
        while len(self._buffer) < size:
            if not self._fill():
                break
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    # =========================================================================
    # FRAMES
    # =========================================================================

    def read_frame(self) -> Optional[str]:
        """
        Block until one full frame is available.

        Returns:
            The frame text without its line terminator, or None at end of
            stream. Empty lines come back as "".
        """
        line = self.read_until(FRAME_DELIMITER)
        if line is None:
            if not self._buffer:
                return None
            # Unterminated tail before EOF counts as a last frame
            line, self._buffer = self._buffer, b""
        else:
            line = line[:-len(FRAME_DELIMITER)]

        if line.endswith(b"\r"):
            line = line[:-1]
        return line.decode(self.encoding, errors="replace")

    def write_frame(self, text: str) -> None:
        """
        Write one newline-terminated frame.

        Raises:
            OSError if the connection is gone.
        """
        self._socket.sendall(encode_frame(text, self.encoding))


def encode_frame(text: str, encoding: str = "utf-8") -> bytes:
    """Encode one frame for the wire: text plus the line terminator."""
    return text.encode(encoding) + FRAME_DELIMITER
