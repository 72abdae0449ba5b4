"""
Integration tests for TCPServer and TCPClient over loopback.
"""

import socket
import threading
import time

import pytest

from socketkit import (
    AlreadyStartedError,
    ConnectFailedError,
    ConnectionNotFoundError,
    RemoteConnection,
    TCPClient,
    TCPServer,
)


class Recorder:
    """Collects callback invocations in arrival order."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def record(self, name, *args):
        with self._lock:
            self.events.append((name,) + args)

    def named(self, name):
        with self._lock:
            return [event for event in self.events if event[0] == name]

    def attach_server(self, server: TCPServer):
        server.on_connect = lambda conn: self.record("connect", conn)
        server.on_message = lambda conn, frame: self.record("message", conn, frame)
        server.on_disconnect = lambda conn: self.record("disconnect", conn)


@pytest.fixture
def server(config):
    server = TCPServer(config)
    yield server
    server.stop()


def connect(server: TCPServer) -> socket.socket:
    sock = socket.create_connection(server.address, timeout=2)
    return sock


class TestTCPServer:
    """Tests for TCPServer."""

    def test_start_returns_bound_address(self, server):
        host, port = server.start()

        assert host == "127.0.0.1"
        assert port > 0
        assert server.is_running

    def test_start_twice_raises(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        address = server.start()

        with pytest.raises(AlreadyStartedError):
            server.start()

        # First instance keeps working
        assert server.address == address
        with connect(server):
            assert wait_for(lambda: recorder.named("connect"))

    def test_unique_ids(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        clients = [connect(server) for _ in range(5)]
        assert wait_for(lambda: len(recorder.named("connect")) == 5)

        ids = [event[1].id for event in recorder.named("connect")]
        assert len(set(ids)) == 5
        assert sorted(conn.id for conn in server.connections) == sorted(ids)

        for client in clients:
            client.close()

    def test_connection_registered_before_on_connect(self, server, wait_for):
        seen = []
        server.on_connect = lambda conn: seen.append(conn.id in server.registry)
        server.start()

        with connect(server):
            assert wait_for(lambda: seen)
        assert seen == [True]

    def test_message_order_per_connection(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        with connect(server) as client:
            client.sendall(b"".join(f"line {i}\n".encode() for i in range(50)))
            assert wait_for(lambda: len(recorder.named("message")) == 50)

        assert wait_for(lambda: recorder.named("disconnect"))

        names = [event[0] for event in recorder.events]
        assert names[0] == "connect"
        assert names[-1] == "disconnect"
        assert [event[2] for event in recorder.named("message")] == [f"line {i}" for i in range(50)]

    def test_embedded_newlines_split_messages(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        client = TCPClient(*server.address, server.config)
        assert client.start()
        client.send("a\nb\nc")

        assert wait_for(lambda: len(recorder.named("message")) == 3)
        assert [event[2] for event in recorder.named("message")] == ["a", "b", "c"]
        client.stop()

    def test_disconnect_once_and_unregistered(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        client = connect(server)
        assert wait_for(lambda: len(server.registry) == 1)
        client.close()

        assert wait_for(lambda: recorder.named("disconnect"))
        time.sleep(0.2)
        assert len(recorder.named("disconnect")) == 1
        assert len(server.registry) == 0

    def test_send_and_broadcast(self, server, wait_for):
        connected = []
        server.on_connect = connected.append
        server.start()

        a, b = connect(server), connect(server)
        assert wait_for(lambda: len(connected) == 2)

        assert server.send(connected[0], "direct") is True
        assert server.send(connected[1].id, "by id") is True
        assert server.broadcast("all") == 2

        received = {}
        for sock in (a, b):
            data = b""
            while data.count(b"\n") < 2:
                data += sock.recv(1024)
            received[sock] = data.decode().splitlines()

        assert sorted(received[a] + received[b]) == sorted(["direct", "by id", "all", "all"])
        a.close()
        b.close()

    def test_send_to_unknown_connection(self, server):
        server.start()

        with pytest.raises(ConnectionNotFoundError) as exc_info:
            server.send(999999, "nobody")

        assert exc_info.value.connection_id == 999999

    def test_server_disconnect(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        with connect(server) as client:
            assert wait_for(lambda: recorder.named("connect"))
            conn = recorder.named("connect")[0][1]

            assert server.disconnect(conn) is True
            assert client.recv(1) == b""

        assert wait_for(lambda: recorder.named("disconnect"))
        assert server.disconnect(conn) is False

    def test_callback_failure_does_not_stop_server(self, server, wait_for):
        frames = []

        def on_message(conn, frame):
            if frame == "boom":
                raise RuntimeError("callback failed")
            frames.append(frame)

        server.on_message = on_message
        server.start()

        with connect(server) as client:
            client.sendall(b"boom\nstill here\n")
            assert wait_for(lambda: frames == ["still here"])

    def test_stop_closes_everything(self, server, wait_for):
        recorder = Recorder()
        recorder.attach_server(server)
        server.start()

        clients = [connect(server) for _ in range(3)]
        assert wait_for(lambda: len(server.registry) == 3)

        server.stop()
        assert len(server.registry) == 0
        assert not server.is_running

        for client in clients:
            assert client.recv(1) == b""

        # No callbacks after stop, even as the peers write and hang up
        count = len(recorder.events)
        for client in clients:
            try:
                client.sendall(b"late\n")
            except OSError:
                pass
            client.close()
        time.sleep(0.3)
        assert len(recorder.events) == count
        assert recorder.named("disconnect") == []

    def test_connection_accepted_during_stop_is_dropped(self, server, monkeypatch):
        """Test a socket wrapped after stop() drained the registry is not kept."""
        wrap = RemoteConnection.from_socket.__func__
        entered = threading.Event()
        release = threading.Event()

        def slow_from_socket(cls, sock):
            entered.set()
            release.wait(5)
            return wrap(cls, sock)

        monkeypatch.setattr(RemoteConnection, "from_socket", classmethod(slow_from_socket))
        connects = []
        server.on_connect = connects.append
        server.start()

        with connect(server) as client:
            assert entered.wait(3)
            server.stop()
            release.set()

            assert client.recv(1) == b""

        assert len(server.registry) == 0
        assert connects == []

    def test_restart_after_stop(self, server, wait_for):
        connects = []
        server.on_connect = connects.append
        server.start()
        server.stop()

        server.start()
        with connect(server):
            assert wait_for(lambda: connects)


class TestTCPClient:
    """Tests for TCPClient."""

    def test_echo_round_trip(self, server, config, wait_for):
        server.on_message = lambda conn, frame: server.send(conn, frame.upper())
        server.start()

        events = []
        client = TCPClient(
            *server.address,
            config,
            on_connect=lambda: events.append("connect"),
            on_message=lambda frame: events.append(frame),
        )
        assert client.start() is True
        assert client.is_connected

        client.send("hello")
        assert wait_for(lambda: "HELLO" in events)
        assert events[0] == "connect"
        client.stop()

    def test_connect_failed(self, config, free_port, wait_for):
        failures = []
        connected = []
        client = TCPClient(
            "127.0.0.1",
            free_port,
            config,
            on_connect=lambda: connected.append(True),
            on_connect_failed=failures.append,
        )

        assert client.start() is False
        assert wait_for(lambda: failures)

        error = failures[0]
        assert isinstance(error, ConnectFailedError)
        assert error.port == free_port
        assert connected == []
        assert not client.is_running
        assert client.send("nobody listening") is False

    def test_server_closes_connection(self, server, config, wait_for):
        connected = []
        server.on_connect = connected.append
        server.start()

        disconnects = []
        client = TCPClient(*server.address, config, on_disconnect=lambda: disconnects.append(1))
        client.start()
        assert wait_for(lambda: connected)

        server.disconnect(connected[0])

        assert wait_for(lambda: disconnects == [1])
        assert not client.is_running
        time.sleep(0.2)
        assert disconnects == [1]

    def test_start_twice_raises(self, server, config):
        server.start()
        client = TCPClient(*server.address, config)
        client.start()

        with pytest.raises(AlreadyStartedError):
            client.start()
        client.stop()

    def test_stop_is_idempotent_and_silent(self, server, config):
        server.start()
        disconnects = []
        client = TCPClient(*server.address, config, on_disconnect=lambda: disconnects.append(1))
        client.start()

        client.stop()
        client.stop()
        time.sleep(0.2)

        assert disconnects == []
        assert client.send("after stop") is False

    def test_context_manager(self, server, config, wait_for):
        connected = []
        server.on_connect = connected.append
        server.start()

        with TCPClient(*server.address, config) as client:
            assert client.is_running
            assert wait_for(lambda: connected)
        assert not client.is_running
