"""
Unit tests for the readiness set and the reactor loop.
"""

import errno
import select
import socket
import struct
import time
import pytest

from portreactor.config import ReactorConfig
from portreactor.core.reactor import Interest, ReadinessSet, Reactor, serve_ports
from portreactor.core.registry import PortConfiguration, PortRegistry, ReceiveVerdict
from portreactor.core.slots import ClientConnection, ConnectionSlot, ReactorState
from portreactor.errors import ReactorStatus, WaitError
from portreactor.handlers import echo


def receive(sock, address):
    return ReceiveVerdict.KEEP_OPEN


@pytest.fixture
def reset_pair():
    """Server side of a connection the peer aborted with RST."""
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    peer = socket.create_connection(listener.getsockname(), timeout=2.0)
    server_side, _ = listener.accept()
    listener.close()

    # SO_LINGER with a zero timeout makes close() send RST
    peer.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
    peer.close()

    yield server_side
    server_side.close()


class TestReadinessSet:
    """Tests for ReadinessSet."""

    def test_split_by_interest(self):
        a, b = socket.socketpair()
        try:
            watch = ReadinessSet()
            watch.add(a, Interest.READ)
            watch.add(b, Interest.READ | Interest.ERROR)

            assert watch.readable == [a, b]
            assert watch.errored == [b]
            assert len(watch) == 2
            assert watch.max_descriptor == max(a.fileno(), b.fileno())
        finally:
            a.close()
            b.close()

    def test_empty(self):
        watch = ReadinessSet()

        assert len(watch) == 0
        assert not watch
        assert watch.max_descriptor == -1

    def test_from_state_watches_listeners_and_clients(self):
        listener = socket.socket()
        left, right = socket.socketpair()
        try:
            slot = ConnectionSlot(
                entry=PortConfiguration(0, on_receive=receive),
                listener=listener,
            )
            slot.clients.append(ClientConnection(socket=left, address=("x", 1)))
            retired = ConnectionSlot(
                entry=PortConfiguration(0, on_receive=receive),
                listener=None,
            )
            state = ReactorState(slots=[slot, retired])

            watch = ReadinessSet.from_state(state)

            assert watch.readable == [listener, left]
            assert watch.errored == [listener, left]
        finally:
            listener.close()
            left.close()
            right.close()

    def test_wait_timeout_returns_nothing(self):
        a, b = socket.socketpair()
        try:
            watch = ReadinessSet()
            watch.add(a, Interest.READ | Interest.ERROR)

            started = time.time()
            readable, errored = watch.wait(0.05)

            assert readable == [] and errored == []
            assert time.time() - started < 1.0
        finally:
            a.close()
            b.close()

    def test_wait_reports_readable(self):
        a, b = socket.socketpair()
        try:
            b.sendall(b"ping")
            watch = ReadinessSet()
            watch.add(a, Interest.READ)

            readable, _ = watch.wait(1.0)

            assert readable == [a]
        finally:
            a.close()
            b.close()

    def test_wait_on_closed_socket_raises(self):
        sock = socket.socket()
        watch = ReadinessSet()
        watch.add(sock, Interest.READ)
        sock.close()

        with pytest.raises(WaitError) as exc_info:
            watch.wait(0.01)

        assert exc_info.value.status is ReactorStatus.WAIT_FAILED

    def test_reset_connection_reported_as_errored(self, reset_pair):
        watch = ReadinessSet()
        watch.add(reset_pair, Interest.READ | Interest.ERROR)

        readable, errored = watch.wait(1.0)

        assert errored == [reset_pair]
        assert readable == []

    def test_reset_connection_readable_without_error_interest(self, reset_pair):
        watch = ReadinessSet()
        watch.add(reset_pair, Interest.READ)

        readable, errored = watch.wait(1.0)

        assert readable == [reset_pair]
        assert errored == []

    def test_descriptors_above_fd_setsize(self, high_descriptors):
        a, b = socket.socketpair()
        try:
            assert a.fileno() > 1023
            b.sendall(b"ping")
            watch = ReadinessSet()
            watch.add(a, Interest.READ | Interest.ERROR)

            readable, errored = watch.wait(1.0)

            assert readable == [a]
            assert errored == []
        finally:
            a.close()
            b.close()


class TestReactorEntryPoint:
    """Tests for Reactor.run() and serve_ports() status codes."""

    def test_zero_ports_returns_immediately(self):
        started = time.time()

        assert serve_ports([]) == 0
        assert Reactor(PortRegistry()).run() is ReactorStatus.OK
        assert time.time() - started < 0.5

    def test_accepts_plain_iterable(self, reactor_config):
        reactor = Reactor([PortConfiguration(0, on_receive=receive)], reactor_config)

        assert isinstance(reactor.registry, PortRegistry)
        assert reactor.bound_ports == []

    def test_invalid_config_rejected_early(self):
        with pytest.raises(ValueError):
            Reactor([], ReactorConfig(backlog=0))

    def test_bind_failure_status_and_cleanup(self, reactor_config):
        holder = socket.socket()
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        taken = holder.getsockname()[1]

        opened = []
        original = socket.socket.listen

        def spy_listen(self, *args):
            opened.append(self)
            return original(self, *args)

        try:
            with pytest.MonkeyPatch.context() as mp:
                mp.setattr(socket.socket, "listen", spy_listen)
                status = serve_ports(
                    [
                        PortConfiguration(0, on_receive=receive),
                        PortConfiguration(taken, on_receive=receive),
                    ],
                    config=reactor_config,
                )

            assert status == ReactorStatus.BIND_FAILED == -2
            # The listener opened before the failure was closed by the entry point
            assert len(opened) == 1
            assert opened[0].fileno() == -1
        finally:
            holder.close()

    def test_wait_failure_runs_close_pass(self, reactor_config, monkeypatch):
        disconnected = []
        reactor = Reactor(
            [PortConfiguration(
                0,
                on_receive=receive,
                on_disconnect=lambda sock, addr: disconnected.append(sock),
            )],
            reactor_config,
        )
        reactor.open()
        port = reactor.bound_ports[0]
        peer = socket.create_connection(("127.0.0.1", port), timeout=2.0)

        real_poll = select.poll
        calls = []

        class FlakyPoller:
            """Lets the first accept happen, then fails."""

            def __init__(self):
                self._poller = real_poll()

            def register(self, fd, mask):
                self._poller.register(fd, mask)

            def poll(self, timeout=None):
                calls.append(1)
                if len(calls) > 1 and reactor.state.slots[0].clients:
                    raise OSError(errno.EINTR, "injected wait failure")
                return self._poller.poll(timeout)

        monkeypatch.setattr("portreactor.core.reactor.select.poll", FlakyPoller)

        try:
            status = reactor.run(timeout=0.05)

            assert status is ReactorStatus.WAIT_FAILED
            assert len(disconnected) == 1
            assert all(slot.listener is None for slot in reactor.state.slots)
            assert peer.recv(16) == b""
        finally:
            peer.close()

    def test_all_listeners_retired_stops_cleanly(self, reactor_config):
        reactor = Reactor([PortConfiguration(0, on_receive=receive)], reactor_config)
        reactor.open()
        reactor.state.slots[0].retire_listener()

        assert reactor.run(timeout=0.01) is ReactorStatus.OK

    def test_keyboard_interrupt_still_closes(self, reactor_config, monkeypatch):
        reactor = Reactor([PortConfiguration(0, on_receive=echo)], reactor_config)
        reactor.open()
        listener = reactor.state.slots[0].listener

        def interrupt(*args):
            raise KeyboardInterrupt

        monkeypatch.setattr("portreactor.core.reactor.select.poll", interrupt)

        with pytest.raises(KeyboardInterrupt):
            reactor.run()

        assert listener.fileno() == -1
        assert reactor.state.terminated

    def test_independent_reactors_coexist(self, reactor_config):
        first = Reactor([PortConfiguration(0, on_receive=echo)], reactor_config)
        second = Reactor([PortConfiguration(0, on_receive=echo)], reactor_config)
        first.open()
        second.open()

        assert first.state is not second.state
        assert first.bound_ports != second.bound_ports

        first.state.slots[0].retire_listener()
        second.state.slots[0].retire_listener()
        assert first.run(timeout=0.01) is ReactorStatus.OK
        assert second.run(timeout=0.01) is ReactorStatus.OK
