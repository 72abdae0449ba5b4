"""
Integration tests for UDPEndpoint over loopback.
"""

import socket
import threading
import time

import pytest

from socketkit import AlreadyStartedError, UDPEndpoint


class Inbox:
    def __init__(self):
        self.items = []
        self._lock = threading.Lock()

    def __call__(self, sender, data, text):
        with self._lock:
            self.items.append((sender, data, text))

    def __len__(self):
        with self._lock:
            return len(self.items)


@pytest.fixture
def endpoint(config):
    endpoint = UDPEndpoint(config)
    yield endpoint
    endpoint.stop()


class TestUDPEndpoint:
    """Tests for UDPEndpoint."""

    def test_start_binds_port(self, endpoint):
        host, port = endpoint.start()

        assert host == "127.0.0.1"
        assert port > 0
        assert endpoint.port == port
        assert endpoint.is_running

    def test_n_sends_n_callbacks(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()

        payloads = [f"datagram {i}" for i in range(10)]
        for payload in payloads:
            endpoint.send(payload, address="127.0.0.1")
            time.sleep(0.005)

        assert wait_for(lambda: len(inbox) == 10)
        time.sleep(0.1)
        assert len(inbox) == 10
        assert sorted(text for _, _, text in inbox.items) == sorted(payloads)
        assert sorted(data for _, data, _ in inbox.items) == sorted(p.encode() for p in payloads)

    def test_sender_address(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
            sender.bind(("127.0.0.1", 0))
            sender.sendto(b"who am i", endpoint.address)
            expected = sender.getsockname()

            assert wait_for(lambda: len(inbox) == 1)

        assert inbox.items[0][0] == expected

    def test_exact_bytes_preserved(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()

        payload = bytes(range(256))
        assert endpoint.send(payload, address="127.0.0.1") == 256

        assert wait_for(lambda: len(inbox) == 1)
        _, data, text = inbox.items[0]
        assert data == payload
        assert "\ufffd" in text

    def test_default_destination(self, config, wait_for):
        """Test send() without an address goes to broadcast_address on our port."""
        config.broadcast_address = "127.0.0.1"
        inbox = Inbox()
        endpoint = UDPEndpoint(config, on_message=inbox)
        endpoint.start()
        try:
            endpoint.send("to myself")
            assert wait_for(lambda: len(inbox) == 1)
            assert inbox.items[0][2] == "to myself"
        finally:
            endpoint.stop()

    def test_explicit_port(self, endpoint, config, wait_for):
        endpoint.start()

        other_inbox = Inbox()
        other = UDPEndpoint(config, on_message=other_inbox)
        other.start()
        try:
            endpoint.send("over there", port=other.port, address="127.0.0.1")
            assert wait_for(lambda: len(other_inbox) == 1)
        finally:
            other.stop()

    def test_callback_failure_keeps_receiving(self, endpoint, wait_for):
        received = []

        def on_message(sender, data, text):
            if text == "boom":
                raise RuntimeError("callback failed")
            received.append(text)

        endpoint.on_message = on_message
        endpoint.start()

        endpoint.send("boom", address="127.0.0.1")
        time.sleep(0.05)
        endpoint.send("after", address="127.0.0.1")

        assert wait_for(lambda: received == ["after"])

    def test_start_twice_raises(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()

        with pytest.raises(AlreadyStartedError):
            endpoint.start()

        endpoint.send("still alive", address="127.0.0.1")
        assert wait_for(lambda: len(inbox) == 1)

    def test_stop_ends_delivery(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        host, port = endpoint.start()
        endpoint.stop()
        endpoint.stop()

        assert not endpoint.is_running
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
            sender.sendto(b"anyone?", (host, port))
        time.sleep(0.3)
        assert len(inbox) == 0

    def test_idle_receives_rearm(self, endpoint, config, wait_for):
        """Test a message arriving after several receive timeouts is delivered."""
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()

        time.sleep(config.poll_interval * 4)
        endpoint.send("late", address="127.0.0.1")

        assert wait_for(lambda: len(inbox) == 1)

    def test_restart(self, endpoint, wait_for):
        inbox = Inbox()
        endpoint.on_message = inbox
        endpoint.start()
        endpoint.stop()
        endpoint.start()

        endpoint.send("again", address="127.0.0.1")
        assert wait_for(lambda: len(inbox) == 1)
