"""
=============================================================================
HTTP REQUEST READING AND PARSING
=============================================================================

The dispatcher serves exactly one request per connection, so reading is
simple: everything up to the blank line is the head, and Content-Length
says how much body follows.

    GET /users?page=1 HTTP/1.1\\r\\n       ◄── request line
    Host: localhost\\r\\n                  ◄── headers
    Cookie: session=abc\\r\\n
    Content-Length: 5\\r\\n
    \\r\\n                                 ◄── end of head
    hello                                ◄── body (Content-Length bytes)

Two steps:

    read_raw_request(channel)   socket bytes ──► raw request bytes
    parse_request(raw)          raw bytes    ──► HTTPRequest

Failures surface as HTTPParseError carrying the status code to answer
with (400, 405, 408, 413 or 505).
=============================================================================
"""

import re
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

from ..core.channel import FramedChannel, FrameTooLargeError


HEAD_TERMINATOR = b"\r\n\r\n"


class HTTPParseError(Exception):
    """
    Raised when a request cannot be read or parsed.

    Carries the HTTP status code to send back:

        400 Bad Request                 malformed syntax
        405 Method Not Allowed          unknown method
        408 Request Timeout             client stopped sending
        413 Payload Too Large           over max_request_size
        505 HTTP Version Not Supported  not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are stored lowercase; query_params maps each name to all
    of its values ("?a=1&a=2" → {"a": ["1", "2"]}).
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)
    raw: bytes = b""

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters, lowercased."""
        ct = self.headers.get("content-type", "").split(";")[0].strip().lower()
        return ct or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def cookies(self) -> Dict[str, str]:
        """
        Cookies sent in the Cookie header.

        "a=1; b=2" → {"a": "1", "b": "2"}. Pairs without "=" are skipped.
        """
        cookies: Dict[str, str] = {}
        for pair in self.headers.get("cookie", "").split(";"):
            name, sep, value = pair.strip().partition("=")
            if sep and name:
                cookies[name.strip()] = value.strip()
        return cookies

    @property
    def text(self) -> str:
        """Body decoded as UTF-8 (undecodable bytes replaced)."""
        return self.body.decode("utf-8", errors="replace")

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw HTTP/1.x request bytes into HTTPRequest objects.

    Parsing is lenient about headers (malformed lines are skipped, repeated
    headers are joined with ", ") and strict about the request line.
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse one complete request.

        Args:
            data: Raw request bytes, head and body.
            client_address: Client (ip, port), kept on the request.

        Raises:
            HTTPParseError: if the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(HEAD_TERMINATOR)
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        head = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + len(HEAD_TERMINATOR):]

        lines = head.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']}")
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {content_length}")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
            raw=data,
        )

    def _parse_request_line(
        self, line: str
    ) -> Tuple[str, str, Dict[str, List[str]], str]:
        """
        Split "METHOD SP URI SP VERSION" into its parts.

        The URI is split into an unquoted path and parsed query parameters.
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        return method, path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            # Obsolete line folding: continuation of the previous header
            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse one request with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)


def read_raw_request(channel: FramedChannel) -> Optional[bytes]:
    """
    Read one request (head plus Content-Length body) from a channel.

    The channel's max_size bounds the head; the declared body length is
    checked against it before any body bytes are read.

    Returns:
        The raw request bytes, or None if the client closed the connection
        without sending anything.

    Raises:
        HTTPParseError: 408 on timeout, 413 when too large, 400 when the
        client hung up mid-request or sent a bad Content-Length.
    """
    try:
        head = channel.read_until(HEAD_TERMINATOR)
        if head is None:
            if channel.has_buffered:
                raise HTTPParseError("Incomplete request: connection closed")
            return None

        length = _declared_length(head)
        if channel.max_size is not None and len(head) + length > channel.max_size:
            raise HTTPParseError(
                f"Request too large: {len(head) + length} bytes", status_code=413
            )

        body = channel.read_exact(length) if length else b""
    except FrameTooLargeError as e:
        raise HTTPParseError(str(e), status_code=413)
    except socket.timeout:
        raise HTTPParseError("Timed out reading request", status_code=408)

    if len(body) < length:
        raise HTTPParseError(
            f"Incomplete body: expected {length} bytes, got {len(body)}"
        )
    return head + body


def _declared_length(head: bytes) -> int:
    for line in head.split(b"\r\n")[1:]:
        name, sep, value = line.partition(b":")
        if sep and name.strip().lower() == b"content-length":
            try:
                length = int(value.strip())
            except ValueError:
                raise HTTPParseError(f"Invalid Content-Length: {value.strip()!r}")
            if length < 0:
                raise HTTPParseError(f"Invalid Content-Length: {length}")
            return length
    return 0
