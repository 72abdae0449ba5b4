"""
=============================================================================
ROUTE TABLE
=============================================================================

Maps (method, path) to handler functions by exact string match. There are
no path parameters and no wildcards; a request either names a registered
path or falls through to its method's default route.

    ┌──────────────────────────────────────────────────────────────────┐
    │  RouteTable("Api")                                               │
    │                                                                  │
    │   routes (first registration wins)                               │
    │     get   /          → index                                     │
    │     get   /status    → status                                    │
    │     post  /login     → login                                     │
    │                                                                  │
    │   defaults (one fallback per method, first wins)                 │
    │     get   *          → not_found_page                            │
    │                                                                  │
    │   filter hook        → runs before every handler                 │
    │   error hook         → receives every exception                  │
    └──────────────────────────────────────────────────────────────────┘

    GET /status     → status              exact route
    GET /missing    → not_found_page      default for "get"
    POST /missing   → NoHandlerError      no route, no "post" default

=============================================================================
REGISTRATION
=============================================================================

    api = RouteTable("Api")

    @api.get("/")
    def index(ctx):
        return "hello", "text/plain"

    @api.default("GET")
    def fallback(ctx):
        return f"no page at {ctx.request.path}", "text/plain"

    @api.filter
    def audit(request):
        log.info(request.path)

The dispatcher takes a snapshot() when it starts. Routes added after that
only take effect on the next start.
=============================================================================
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Union

from ..errors import NoHandlerError
from .request import HTTPRequest
from .response import HTTPResponse


@dataclass
class RequestContext:
    """What a handler gets: the parsed request and the response to shape."""

    request: HTTPRequest
    response: HTTPResponse = field(default_factory=HTTPResponse)


# A handler returns (payload, content_type)
Handler = Callable[[RequestContext], Tuple[Union[str, bytes], str]]
# Return value is advisory unless ServerConfig.enforce_filter is set
FilterHook = Callable[[HTTPRequest], Any]
ErrorHook = Callable[[BaseException], None]


@dataclass(frozen=True)
class Route:
    """An exact (method, path) binding. The method is stored lowercase."""

    method: str
    path: str
    handler: Handler

    def matches(self, method: str, path: str) -> bool:
        return self.method == method.lower() and self.path == path


@dataclass(frozen=True)
class DefaultRoute:
    """Fallback for a method when no exact route matches."""

    method: str
    handler: Handler


@dataclass(frozen=True)
class RouteSnapshot:
    """
    Immutable view of a RouteTable, taken when a dispatcher starts.
    """

    name: str
    routes: Tuple[Route, ...] = ()
    defaults: Tuple[DefaultRoute, ...] = ()
    filter_hook: Optional[FilterHook] = None
    error_hook: Optional[ErrorHook] = None

    def find(self, method: str, path: str) -> Optional[Handler]:
        """First exact route, else the first default for the method, else None."""
        method = method.lower()
        for route in self.routes:
            if route.method == method and route.path == path:
                return route.handler
        for default in self.defaults:
            if default.method == method:
                return default.handler
        return None

    def resolve(self, method: str, path: str) -> Handler:
        """
        Like find(), but a miss is an error.

        Raises:
            NoHandlerError: if neither a route nor a default matches.
        """
        handler = self.find(method, path)
        if handler is None:
            raise NoHandlerError(path, self.name, method=method.lower())
        return handler


class RouteTable:
    """
    Mutable registry of routes, default routes and the two hooks.

    Safe to register from several threads; dispatchers only ever read
    snapshots.
    """

    def __init__(self, name: str = "RouteTable"):
        """
        Args:
            name: Shown in NoHandlerError messages.
        """
        self.name = name
        self._routes: List[Route] = []
        self._defaults: List[DefaultRoute] = []
        self._filter: Optional[FilterHook] = None
        self._error: Optional[ErrorHook] = None
        self._lock = threading.Lock()

    @property
    def routes(self) -> List[Route]:
        with self._lock:
            return list(self._routes)

    @property
    def defaults(self) -> List[DefaultRoute]:
        with self._lock:
            return list(self._defaults)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_route(self, method: str, path: str, handler: Handler) -> Route:
        """
        Register a handler for an exact method and path.

        Duplicates are kept but never reached: the first one wins.
        """
        route = Route(method.lower(), path, handler)
        with self._lock:
            self._routes.append(route)
        return route

    def add_default(self, method: str, handler: Handler) -> DefaultRoute:
        """Register the fallback handler for a method."""
        default = DefaultRoute(method.lower(), handler)
        with self._lock:
            self._defaults.append(default)
        return default

    def set_filter(self, hook: Optional[FilterHook]) -> None:
        """Install (or with None, remove) the pre-dispatch hook."""
        self._filter = hook

    def set_error_handler(self, hook: Optional[ErrorHook]) -> None:
        """Install (or with None, remove) the error hook."""
        self._error = hook

    # ─── decorators ──────────────────────────────────────────────────────────

    def route(self, path: str, method: str = "GET") -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(method, path, handler)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "GET")

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "POST")

    def put(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "PUT")

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "DELETE")

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "PATCH")

    def default(self, method: str = "GET") -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_default(method, handler)
            return handler
        return decorator

    def filter(self, hook: FilterHook) -> FilterHook:
        self.set_filter(hook)
        return hook

    def error(self, hook: ErrorHook) -> ErrorHook:
        self.set_error_handler(hook)
        return hook

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def snapshot(self) -> RouteSnapshot:
        with self._lock:
            return RouteSnapshot(
                name=self.name,
                routes=tuple(self._routes),
                defaults=tuple(self._defaults),
                filter_hook=self._filter,
                error_hook=self._error,
            )

    def describe(self) -> List[str]:
        """
        One line per registration, for logs:

            GET      /status
            GET      * (default)
        """
        lines = [f"{route.method.upper():8} {route.path}" for route in self.routes]
        lines.extend(f"{default.method.upper():8} * (default)" for default in self.defaults)
        return lines
