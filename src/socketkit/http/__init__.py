"""
HTTP route dispatcher.

    RouteTable      registers (method, path) handlers and hooks
    HTTPDispatcher  serves a RouteTable snapshot, one request per connection
"""

from .dispatcher import HTTPDispatcher
from .request import HTTPParseError, HTTPRequest, RequestParser, parse_request
from .response import HTTPResponse, error_response, set_cookie
from .router import DefaultRoute, RequestContext, Route, RouteSnapshot, RouteTable
from .status_codes import HTTPStatus

__all__ = [
    "DefaultRoute",
    "HTTPDispatcher",
    "HTTPParseError",
    "HTTPRequest",
    "HTTPResponse",
    "HTTPStatus",
    "RequestContext",
    "RequestParser",
    "Route",
    "RouteSnapshot",
    "RouteTable",
    "error_response",
    "parse_request",
    "set_cookie",
]
