"""
Unit tests for the core building blocks: connections, framing, the
registry and the event dispatcher.
"""

import socket
import threading
import time

import pytest

from socketkit.core.channel import FramedChannel, FrameTooLargeError, encode_frame
from socketkit.core.connection import ConnectionState, RemoteConnection, next_connection_id
from socketkit.core.events import DispatcherState, EventDispatcher
from socketkit.core.registry import ConnectionRegistry


@pytest.fixture
def pair():
    """A connected pair of stream sockets."""
    left, right = socket.socketpair()
    yield left, right
    for sock in (left, right):
        try:
            sock.close()
        except OSError:
            pass


class TestRemoteConnection:
    """Tests for RemoteConnection."""

    def test_ids_are_unique_and_increasing(self):
        ids = [next_connection_id() for _ in range(100)]
        assert len(set(ids)) == 100
        assert ids == sorted(ids)

    def test_ids_unique_across_threads(self):
        ids = []
        lock = threading.Lock()

        def allocate():
            local = [next_connection_id() for _ in range(200)]
            with lock:
                ids.extend(local)

        threads = [threading.Thread(target=allocate) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 1600

    def test_from_socket(self, pair):
        left, _ = pair
        conn = RemoteConnection.from_socket(left)

        assert conn.socket is left
        assert conn.state == ConnectionState.OPEN
        assert conn.id > 0

    def test_from_socket_without_inet_address(self, pair):
        """Test sockets whose address is not (host, port) still wrap."""
        left, _ = pair
        conn = RemoteConnection.from_socket(left)

        assert conn.remote_address[1] == 0
        assert isinstance(conn.remote_address[0], str)
        assert conn.local_address[1] == 0

    def test_from_tcp_socket_addresses(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.bind(("127.0.0.1", 0))
            listener.listen(1)
            client = socket.create_connection(listener.getsockname())
            accepted, _ = listener.accept()
            try:
                conn = RemoteConnection.from_socket(accepted)

                assert conn.remote_address == client.getsockname()
                assert conn.local_address == listener.getsockname()
            finally:
                accepted.close()
                client.close()

    def test_equality_by_id(self, pair):
        left, right = pair
        a = RemoteConnection.from_socket(left)
        b = RemoteConnection.from_socket(right)

        assert a != b
        assert a == a
        assert len({a, b, a}) == 2

    def test_is_connected_until_peer_closes(self, pair):
        left, right = pair
        conn = RemoteConnection.from_socket(left)
        assert conn.is_connected is True

        right.close()
        assert conn.is_connected is False

    def test_is_connected_with_pending_data(self, pair):
        """Test unread data counts as connected and is not consumed."""
        left, right = pair
        conn = RemoteConnection.from_socket(left)
        right.sendall(b"x")

        assert conn.is_connected is True
        assert left.recv(1) == b"x"

    def test_close_is_idempotent(self, pair):
        left, _ = pair
        conn = RemoteConnection.from_socket(left)

        conn.close()
        conn.close()

        assert conn.is_closed
        assert conn.is_connected is False

    def test_context_manager_closes(self, pair):
        left, _ = pair
        with RemoteConnection.from_socket(left) as conn:
            pass
        assert conn.state == ConnectionState.CLOSED

    def test_sendall(self, pair):
        left, right = pair
        RemoteConnection.from_socket(left).sendall(b"hello")
        assert right.recv(5) == b"hello"


class TestFramedChannel:
    """Tests for newline framing."""

    def test_frames_split_across_reads(self, pair):
        left, right = pair
        channel = FramedChannel(left, buffer_size=3)
        right.sendall(b"hello\nworld\n")

        assert channel.read_frame() == "hello"
        assert channel.read_frame() == "world"

    def test_embedded_newlines_become_separate_frames(self, pair):
        left, right = pair
        channel = FramedChannel(left)
        FramedChannel(right).write_frame("a\nb\nc")

        assert [channel.read_frame() for _ in range(3)] == ["a", "b", "c"]

    def test_crlf_stripped(self, pair):
        left, right = pair
        right.sendall(b"line\r\n")
        assert FramedChannel(left).read_frame() == "line"

    def test_empty_frame_delivered(self, pair):
        left, right = pair
        channel = FramedChannel(left)
        right.sendall(b"\nnext\n")

        assert channel.read_frame() == ""
        assert channel.read_frame() == "next"

    def test_unterminated_tail_then_none(self, pair):
        """Test the last partial line is delivered before end of stream."""
        left, right = pair
        channel = FramedChannel(left)
        right.sendall(b"done\npartial")
        right.close()

        assert channel.read_frame() == "done"
        assert channel.read_frame() == "partial"
        assert channel.read_frame() is None
        assert channel.read_frame() is None

    def test_accepts_remote_connection(self, pair):
        left, right = pair
        channel = FramedChannel(RemoteConnection.from_socket(left))
        right.sendall(b"hi\n")
        assert channel.read_frame() == "hi"

    def test_decoding_errors_replaced(self, pair):
        left, right = pair
        right.sendall(b"\xff\xfe\n")
        assert FramedChannel(left).read_frame() == "\ufffd\ufffd"

    def test_max_size(self, pair):
        left, right = pair
        channel = FramedChannel(left, buffer_size=8, max_size=16)
        right.sendall(b"x" * 64)

        with pytest.raises(FrameTooLargeError):
            channel.read_frame()

    def test_has_buffered(self, pair):
        left, right = pair
        channel = FramedChannel(left)
        right.sendall(b"a\nb\n")

        channel.read_frame()
        assert channel.has_buffered
        channel.read_frame()
        assert not channel.has_buffered

    def test_read_exact(self, pair):
        left, right = pair
        channel = FramedChannel(left, buffer_size=2)
        right.sendall(b"abcdef")
        right.close()

        assert channel.read_exact(4) == b"abcd"
        assert channel.read_exact(10) == b"ef"

    def test_encode_frame(self):
        assert encode_frame("héllo") == "héllo\n".encode("utf-8")
        assert encode_frame("x", "utf-16-le") == "x".encode("utf-16-le") + b"\n"


class TestConnectionRegistry:
    """Tests for ConnectionRegistry."""

    def make(self, pair) -> RemoteConnection:
        return RemoteConnection.from_socket(pair[0])

    def test_add_get_remove(self, pair):
        registry = ConnectionRegistry()
        conn = self.make(pair)

        registry.add(conn)
        assert conn.id in registry
        assert registry.get(conn.id) is conn
        assert len(registry) == 1

        assert registry.remove(conn.id) is conn
        assert registry.remove(conn.id) is None
        assert registry.get(conn.id) is None
        assert len(registry) == 0

    def test_snapshot_is_a_copy(self, pair):
        registry = ConnectionRegistry()
        conn = self.make(pair)
        registry.add(conn)

        snapshot = registry.snapshot()
        registry.remove(conn.id)

        assert snapshot == [conn]
        assert list(registry) == []

    def test_close_all(self):
        registry = ConnectionRegistry()
        sockets = [socket.socketpair() for _ in range(3)]
        conns = [RemoteConnection.from_socket(a) for a, _ in sockets]
        for conn in conns:
            registry.add(conn)

        assert registry.close_all() == 3
        assert len(registry) == 0
        assert all(conn.is_closed for conn in conns)

        for _, b in sockets:
            b.close()

    def test_concurrent_add_remove(self):
        registry = ConnectionRegistry()
        sockets = [socket.socketpair() for _ in range(50)]
        conns = [RemoteConnection.from_socket(a) for a, _ in sockets]

        def churn(chunk):
            for conn in chunk:
                registry.add(conn)
            for conn in chunk[::2]:
                registry.remove(conn.id)

        threads = [threading.Thread(target=churn, args=(conns[i::5],)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == sum(len(conns[i::5][1::2]) for i in range(5))

        for a, b in sockets:
            a.close()
            b.close()


class TestEventDispatcher:
    """Tests for EventDispatcher."""

    def test_delivers_in_order(self, wait_for):
        received = []
        dispatcher = EventDispatcher("test")
        dispatcher.start()

        for i in range(20):
            assert dispatcher.post("message", received.append, i)

        assert wait_for(lambda: len(received) == 20)
        assert received == list(range(20))
        dispatcher.shutdown()

    def test_callbacks_run_on_dispatch_thread(self, wait_for):
        names = []
        dispatcher = EventDispatcher("named")
        dispatcher.start()

        dispatcher.post("x", lambda: names.append(threading.current_thread().name))

        assert wait_for(lambda: names)
        assert names == ["named-dispatch"]
        dispatcher.shutdown()

    def test_none_callback_is_skipped(self):
        dispatcher = EventDispatcher()
        dispatcher.start()
        assert dispatcher.post("x", None) is False
        dispatcher.shutdown()

    def test_failing_callback_does_not_stop_delivery(self, wait_for):
        received = []

        def boom():
            raise RuntimeError("boom")

        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.post("bad", boom)
        dispatcher.post("good", received.append, "ok")

        assert wait_for(lambda: received == ["ok"])
        assert dispatcher.events_failed == 1
        dispatcher.shutdown()

    def test_post_after_shutdown_rejected(self):
        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.shutdown()

        assert dispatcher.post("x", print) is False
        assert not dispatcher.is_running
        assert dispatcher.state == DispatcherState.STOPPED

    def test_shutdown_discards_pending(self):
        """Test shutdown without drain drops queued events."""
        gate = threading.Event()
        received = []
        dispatcher = EventDispatcher()
        dispatcher.start()

        dispatcher.post("block", gate.wait, 2.0)
        for i in range(5):
            dispatcher.post("message", received.append, i)

        time.sleep(0.05)
        stopper = threading.Thread(target=dispatcher.shutdown)
        stopper.start()
        time.sleep(0.05)
        gate.set()
        stopper.join(timeout=3)

        assert received == []
        assert dispatcher.events_discarded >= 5

    def test_shutdown_with_drain_delivers_pending(self):
        received = []
        dispatcher = EventDispatcher()
        dispatcher.start()
        for i in range(5):
            dispatcher.post("message", received.append, i)

        dispatcher.shutdown(drain=True)

        assert received == [0, 1, 2, 3, 4]

    def test_shutdown_from_callback(self, wait_for):
        """Test a callback may shut its own dispatcher down."""
        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.post("stop", dispatcher.shutdown)

        assert wait_for(lambda: dispatcher.state == DispatcherState.STOPPED)

    def test_restart(self, wait_for):
        received = []
        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.shutdown()
        dispatcher.start()

        dispatcher.post("again", received.append, 1)

        assert wait_for(lambda: received == [1])
        dispatcher.shutdown()

    def test_stats(self, wait_for):
        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.post("x", lambda: None)
        assert wait_for(lambda: dispatcher.events_delivered == 1)

        stats = dispatcher.stats
        assert stats["delivered"] == 1
        assert stats["failed"] == 0
        dispatcher.shutdown()
