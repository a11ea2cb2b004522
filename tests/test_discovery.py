"""Tests for the LAN discovery broadcaster."""

import socket
import time
from unittest.mock import patch

import pytest

from skyhost.discovery import BroadcastMessage, DiscoveryBroadcaster, local_ipv4_address
from tests.helpers import fake_socket_factory


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestBroadcastMessage:
    """Wire format of the discovery datagram."""

    def test_serialized_format(self):
        message = BroadcastMessage(
            identifier="NINA-TouchNStars",
            port=5000,
            hostname="observatory-pc",
            ip_address="192.168.1.20",
        )

        assert message.serialize() == (
            b"NINA-TouchNStars|Port:5000|Host:observatory-pc|IP:192.168.1.20"
        )

    def test_utf8_hostname(self):
        message = BroadcastMessage("X", 1, "sternwärte", "10.0.0.1")
        text = message.serialize().decode("utf-8")
        assert text.endswith("Host:sternwärte|IP:10.0.0.1")


class TestDiscoveryBroadcaster:
    """Thread lifecycle and send loop."""

    def test_start_then_immediate_stop(self):
        """Verify start+stop sends at most one datagram and stops in time.

        Arrangement:
        Long interval (60 s) so only the first iteration can run before
        stop() wakes the loop.

        Assertion Strategy:
        - stop() returns well within join_timeout (it must not wait out
          the 60 s interval)
        - at most one datagram recorded
        - thread no longer alive
        """
        factory, sent = fake_socket_factory()
        broadcaster = DiscoveryBroadcaster(
            port=5000, interval=60.0, join_timeout=1.0, socket_factory=factory
        )

        broadcaster.start()
        started = time.monotonic()
        broadcaster.stop()
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert len(sent) <= 1
        assert not broadcaster.is_running

    def test_datagram_content_and_destination(self):
        factory, sent = fake_socket_factory()
        broadcaster = DiscoveryBroadcaster(
            port=5123,
            discovery_port=37020,
            broadcast_address="255.255.255.255",
            interval=60.0,
            socket_factory=factory,
        )

        with patch("skyhost.discovery.socket.gethostname", return_value="obs"), patch(
            "skyhost.discovery.local_ipv4_address", return_value="192.168.0.7"
        ):
            broadcaster.start()
            assert _wait_for(lambda: len(sent) == 1)
            broadcaster.stop()

        payload, destination = sent[0]
        assert payload == b"NINA-TouchNStars|Port:5123|Host:obs|IP:192.168.0.7"
        assert destination == ("255.255.255.255", 37020)

    def test_repeats_every_interval(self):
        factory, sent = fake_socket_factory()
        broadcaster = DiscoveryBroadcaster(interval=0.01, socket_factory=factory)

        broadcaster.start()
        try:
            assert _wait_for(lambda: len(sent) >= 3)
        finally:
            broadcaster.stop()

    def test_send_error_does_not_stop_loop(self, log_stream):
        """Verify an OSError is logged and the next iteration still sends."""
        good_factory, sent = fake_socket_factory()
        attempts = []

        def flaky_factory():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("Network is unreachable")
            return good_factory()

        broadcaster = DiscoveryBroadcaster(interval=0.01, socket_factory=flaky_factory)
        broadcaster.start()
        try:
            assert _wait_for(lambda: len(sent) >= 1)
        finally:
            broadcaster.stop()

        assert "Discovery broadcast failed" in log_stream.getvalue()
        assert "Network is unreachable" in log_stream.getvalue()

    def test_restart_after_stop(self):
        factory, sent = fake_socket_factory()
        broadcaster = DiscoveryBroadcaster(interval=60.0, socket_factory=factory)

        broadcaster.start()
        assert _wait_for(lambda: len(sent) == 1)
        broadcaster.stop()
        broadcaster.start()
        assert _wait_for(lambda: len(sent) == 2)
        broadcaster.stop()

        assert not broadcaster.is_running

    def test_stop_without_start(self):
        DiscoveryBroadcaster().stop()

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            DiscoveryBroadcaster(interval=0)


class TestLocalIpv4Address:
    def test_falls_back_to_loopback(self):
        with patch("skyhost.discovery.socket.socket", side_effect=OSError):
            assert local_ipv4_address() == "127.0.0.1"

    def test_returns_dotted_quad(self):
        address = local_ipv4_address()
        socket.inet_aton(address)
