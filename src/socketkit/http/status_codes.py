"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes the dispatcher itself produces, plus the common success
codes handlers tend to want:

    ┌────────┬────────────────────────────────────────────────────────────┐
    │  2xx   │ 200 OK, 201 Created, 204 No Content                        │
    ├────────┼────────────────────────────────────────────────────────────┤
    │  4xx   │ 400 Bad Request        malformed request line / headers    │
    │        │ 403 Forbidden          filter rejected (enforce_filter)    │
    │        │ 404 Not Found          no route and no default route       │
    │        │ 405 Method Not Allowed unknown request method              │
    │        │ 408 Request Timeout    client too slow to send the request │
    │        │ 413 Payload Too Large  request over max_request_size       │
    ├────────┼────────────────────────────────────────────────────────────┤
    │  5xx   │ 500 Internal Server Error  handler raised                  │
    │        │ 505 HTTP Version Not Supported                             │
    └────────┴────────────────────────────────────────────────────────────┘

Other codes can still be sent: HTTPResponse accepts any int and falls back
to the "Unknown" reason phrase.
=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    # 2xx SUCCESS
    OK = 200
    CREATED = 201
    NO_CONTENT = 204

    # 4xx CLIENT ERROR
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413

    # 5xx SERVER ERROR
    INTERNAL_SERVER_ERROR = 500
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line (``HTTP/1.1 404 Not Found``)."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_error(self) -> bool:
        return self >= 400


def reason_phrase(status: int) -> str:
    """Reason phrase for any status code, known or not."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.CREATED: "Created",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}
