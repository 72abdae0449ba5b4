"""
=============================================================================
SOCKETKIT CLI ENTRY POINT
=============================================================================

Small demo services, one per connection style:

    # Line echo server
    python -m socketkit tcp-server --port 9000

    # Interactive client: stdin lines out, received frames printed
    python -m socketkit tcp-client --host 127.0.0.1 --port 9000

    # Print every datagram on a port, or send one
    python -m socketkit udp --port 9999
    python -m socketkit udp --port 9999 --send "hello" --to 127.0.0.1

    # Demo HTTP dispatcher
    python -m socketkit http --port 8080

    # Which proxy would external traffic use?
    python -m socketkit proxy

Settings come from SOCKETKIT_* environment variables first, then the
command-line flags override them.

Long-running commands stop on Ctrl+C or SIGTERM. The services run on
background threads; the main thread only waits for the signal.
=============================================================================
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from . import __version__
from .config import LOG_FORMATS, LOG_LEVELS, ServerConfig
from .http import HTTPDispatcher, RequestContext, RouteTable
from .log import configure_logging
from .proxy import CHECK_URL, get_system_proxy
from .tcp import TCPClient, TCPServer
from .udp import UDPEndpoint


logger = logging.getLogger("socketkit.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="socketkit",
        description="Callback-driven TCP, UDP and HTTP socket services",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"socketkit {__version__}",
    )

    # ─────────────────────────────────────────────────────────────────────
    # COMMON ARGUMENTS (accepted after the command name)
    # ─────────────────────────────────────────────────────────────────────

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--host", "-H", default=None, help="Host to bind or connect to")
    common.add_argument("--port", "-p", type=int, default=None, help="Port number")
    common.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO)",
    )
    common.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=None,
        help="Log line format (default: text)",
    )

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    commands.add_parser("tcp-server", parents=[common], help="Run a line echo server")
    commands.add_parser("tcp-client", parents=[common], help="Send stdin lines to a TCP server")

    udp = commands.add_parser("udp", parents=[common], help="Print or send datagrams")
    udp.add_argument("--send", metavar="TEXT", default=None, help="Send one datagram and exit")
    udp.add_argument("--to", metavar="ADDR", default=None, help="Destination (default: broadcast)")

    commands.add_parser("http", parents=[common], help="Run the demo HTTP dispatcher")

    proxy = commands.add_parser("proxy", parents=[common], help="Show the system proxy")
    proxy.add_argument("--url", default=CHECK_URL, help=f"URL to probe (default: {CHECK_URL})")

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment defaults, overridden by whatever flags were given."""
    config = ServerConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format
    config.validate()
    return config


def wait_for_shutdown(stop: Optional[threading.Event] = None) -> None:
    """
    Block the main thread until SIGINT/SIGTERM (or stop is set).

    Previous signal handlers are restored on the way out.
    """
    stop = stop or threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop.set()

    previous = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        while not stop.wait(0.5):
            pass
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


# =============================================================================
# COMMANDS
# =============================================================================

def run_tcp_server(config: ServerConfig) -> int:
    server = TCPServer(config)

    def on_connect(conn):
        print(f"+ [{conn.id}] {conn.remote_address[0]}:{conn.remote_address[1]}")

    def on_message(conn, frame):
        server.send(conn, frame)

    def on_disconnect(conn):
        print(f"- [{conn.id}]")

    server.on_connect = on_connect
    server.on_message = on_message
    server.on_disconnect = on_disconnect

    host, port = server.start()
    print(f"Echoing lines on {host}:{port} (Ctrl+C to stop)")
    try:
        wait_for_shutdown()
    finally:
        server.stop()
    return 0


def run_tcp_client(config: ServerConfig) -> int:
    host = config.host if config.host != "0.0.0.0" else "127.0.0.1"
    disconnected = threading.Event()

    client = TCPClient(
        host,
        config.port,
        config,
        on_message=lambda frame: print(frame, flush=True),
        on_disconnect=disconnected.set,
        on_connect_failed=lambda error: print(f"Error: {error}", file=sys.stderr),
    )

    if not client.start():
        return 1

    try:
        for line in sys.stdin:
            if disconnected.is_set() or not client.send(line.rstrip("\r\n")):
                break
    except KeyboardInterrupt:
        pass
    finally:
        client.stop()
    return 0


def run_udp(config: ServerConfig, text: Optional[str], to: Optional[str]) -> int:
    endpoint = UDPEndpoint(config)

    if text is not None:
        sent = endpoint.send(text, address=to)
        print(f"Sent {sent} bytes")
        return 0

    def on_message(sender, data, decoded):
        print(f"{sender[0]}:{sender[1]} {decoded}", flush=True)

    endpoint.on_message = on_message
    host, port = endpoint.start()
    print(f"Receiving datagrams on {host}:{port} (Ctrl+C to stop)")
    try:
        wait_for_shutdown()
    finally:
        endpoint.stop()
    return 0


def demo_routes() -> RouteTable:
    """Routes served by the http command."""
    routes = RouteTable("DemoRoutes")

    @routes.get("/")
    def index(ctx: RequestContext):
        return "Hello from socketkit\n", "text/plain; charset=utf-8"

    @routes.default("GET")
    def echo_path(ctx: RequestContext):
        return f"You asked for {ctx.request.path}\n", "text/plain; charset=utf-8"

    @routes.error
    def log_error(error: BaseException):
        logger.warning(f"Request error: {error}")

    return routes


def run_http(config: ServerConfig) -> int:
    dispatcher = HTTPDispatcher(demo_routes(), config)
    host, port = dispatcher.start()
    print(f"Serving HTTP on http://{host}:{port}/ (Ctrl+C to stop)")
    try:
        wait_for_shutdown()
    finally:
        dispatcher.stop()
    return 0


def run_proxy(url: str) -> int:
    proxy = get_system_proxy(url)
    print(proxy if proxy is not None else "no proxy")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    configure_logging(config.log_level, config.log_format)

    try:
        if args.command == "tcp-server":
            return run_tcp_server(config)
        if args.command == "tcp-client":
            return run_tcp_client(config)
        if args.command == "udp":
            return run_udp(config, args.send, args.to)
        if args.command == "http":
            return run_http(config)
        return run_proxy(args.url)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
