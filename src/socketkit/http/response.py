"""
=============================================================================
HTTP RESPONSE
=============================================================================

Handlers never write to the socket. They return (payload, content_type)
and may adjust context.response (status, extra headers, cookies); the
dispatcher serializes the result:

    HTTP/1.1 200 OK\\r\\n
    Content-Type: text/plain\\r\\n              ◄── from the handler
    X-Custom: 1\\r\\n                           ◄── response.set_header()
    Set-Cookie: session=abc;Path=/;Expires=Mon, 05-Jan-2026 9:05:03 GMT\\r\\n
    Content-Length: 5\\r\\n                     ◄── always computed
    Date: Mon, 05 Jan 2026 09:00:00 GMT\\r\\n
    Server: socketkit/1.0\\r\\n
    Connection: close\\r\\n                     ◄── one request per connection
    \\r\\n
    hello

Set-Cookie is the only header that may appear more than once, so cookies
are kept in their own list rather than in the headers dict.
=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

from .status_codes import HTTPStatus, reason_phrase


_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


@dataclass
class HTTPResponse:
    """
    An HTTP response waiting to be written.

    The setters return self so calls can be chained:

        response.set_header("X-Request-Id", "42").set_body("done")
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[str] = field(default_factory=list)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """e.g. "HTTP/1.1 404 Not Found"."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Set the body; text is encoded as UTF-8."""
        if isinstance(body, str):
            self.body = body.encode("utf-8")
        else:
            self.body = bytes(body)
        return self

    def add_cookie(self, header_value: str) -> "HTTPResponse":
        """Append one raw Set-Cookie value."""
        self.cookies.append(header_value)
        return self

    def to_bytes(self, server_name: str = "socketkit/1.0") -> bytes:
        """
        Serialize status line, headers, cookies and body.

        Content-Length always reflects the body. Date, Server and
        Connection are added unless the handler set them.
        """
        headers = {
            name: value
            for name, value in self.headers.items()
            if name.lower() != "content-length"
        }
        headers["Content-Length"] = str(len(self.body))
        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", server_name)
        headers.setdefault("Connection", "close")

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.extend(f"Set-Cookie: {cookie}" for cookie in self.cookies)
        lines.append("")

        return "\r\n".join(lines).encode("utf-8") + b"\r\n" + self.body


# =============================================================================
# DATES AND COOKIES
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a UTC datetime as an HTTP-date.

    Example: "Thu, 01 Jan 2026 12:00:00 GMT"
    """
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def format_cookie_date(dt: datetime) -> str:
    """
    Format a UTC datetime for a cookie Expires attribute.

    Day and month are dash-separated and the hour is not zero-padded:
    "Mon, 05-Jan-2026 9:05:03 GMT".
    """
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d}-{_MONTHS[dt.month - 1]}-{dt.year} "
        f"{dt.hour}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def set_cookie(
    response: HTTPResponse,
    key: str,
    value: str,
    expiry: timedelta,
    now: Optional[datetime] = None,
) -> str:
    """
    Add a Set-Cookie header for the whole site.

    Args:
        response: Response to add the cookie to.
        key: Cookie name.
        value: Cookie value, sent as-is.
        expiry: How long from now the cookie lives.
        now: Reference time (UTC); defaults to the current time.

    Returns:
        The Set-Cookie value that was added.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    cookie = f"{key}={value};Path=/;Expires={format_cookie_date(now + expiry)}"
    response.add_cookie(cookie)
    return cookie


def error_response(status: int, message: Optional[str] = None) -> HTTPResponse:
    """
    Plain-text error response, e.g. "404 Not Found".

    Args:
        status: HTTP status code.
        message: Body text; defaults to the code and reason phrase.
    """
    if message is None:
        message = f"{int(status)} {reason_phrase(status)}"
    response = HTTPResponse(status=status)
    response.set_content_type("text/plain; charset=utf-8")
    response.set_body(message)
    return response
