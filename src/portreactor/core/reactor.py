"""
=============================================================================
MULTI-PORT REACTOR
=============================================================================

One thread, one loop, any number of ports.

=============================================================================
WHY A REACTOR?
=============================================================================

The classic server gives every connection its own thread:

    accept() ──► Thread 1 ──► recv() (blocks)
    accept() ──► Thread 2 ──► recv() (blocks)
    accept() ──► Thread 3 ──► recv() (blocks)

A reactor asks the OS a single question instead: "which of these sockets
can I use RIGHT NOW without blocking?" That is readiness multiplexing, and
poll() asks it without a cap on descriptor numbers.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ONE LOOP ITERATION                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. BUILD    ReadinessSet from every listener + attached client    │
    │               (rebuilt from scratch every time)                     │
    │                                                                      │
    │   2. WAIT     poll(readable | errored, timeout)                     │
    │               ├── fails        ──► TERMINATED (WAIT_FAILED)         │
    │               ├── 0 ready      ──► next iteration                   │
    │               └── N ready      ──► 3                                │
    │                                                                      │
    │   3. DISPATCH for each slot: SlotManager.service()                  │
    │               remaining -= entries consumed                         │
    │               stop scanning once remaining == 0                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
STATES
=============================================================================

    RUNNING ──────────────────────────────────────────► TERMINATED
             on_connect returned STOP_REACTOR   (status OK)
             poll() failed                      (WAIT_FAILED)
             accept() failed                    (ACCEPT_FAILED)
             SO_ERROR query failed              (ERROR_QUERY_FAILED)

Whatever the reason, TERMINATED always runs the close pass: every listener
and every attached client is closed, and on_disconnect fires for each client.

=============================================================================
COOPERATIVE, NOT PREEMPTIVE
=============================================================================

Callbacks run on the reactor thread. A callback that sleeps for a second
stalls EVERY port for a second. There is no way to interrupt a callback
from outside; the only early exit is a callback's own return value.

=============================================================================
"""

import select
import socket
import logging
from dataclasses import dataclass
from enum import Flag, auto
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..config import ReactorConfig
from ..errors import ListenerSetupError, ReactorError, ReactorStatus, WaitError
from .listeners import close_listeners, open_listeners
from .registry import PortConfiguration, PortRegistry
from .slots import ConnectionSlot, ReactorState, SlotManager


logger = logging.getLogger(__name__)

# Events that make a socket readable, and events that signal an error
READ_EVENTS = select.POLLIN | select.POLLPRI
ERROR_EVENTS = select.POLLERR | select.POLLHUP | select.POLLNVAL


class Interest(Flag):
    """What a descriptor is watched for."""

    READ = auto()
    ERROR = auto()


@dataclass
class WatchEntry:
    """One descriptor in a readiness set."""

    socket: socket.socket
    interest: Interest


class ReadinessSet:
    """
    Dynamically sized list of (socket, interest) pairs.

    The set of live sockets changes from one iteration to the next, so one
    of these is built fresh for every wait and thrown away afterwards.
    """

    def __init__(self, entries: Iterable[WatchEntry] = ()):
        self.entries: List[WatchEntry] = list(entries)

    @classmethod
    def from_state(cls, state: ReactorState) -> "ReadinessSet":
        """Watch every live listener and every attached client for read + error."""
        both = Interest.READ | Interest.ERROR
        watch = cls()
        for sock in state.listeners():
            watch.add(sock, both)
        for client in state.clients():
            watch.add(client.socket, both)
        return watch

    def add(self, sock: socket.socket, interest: Interest) -> None:
        self.entries.append(WatchEntry(sock, interest))

    @property
    def readable(self) -> List[socket.socket]:
        return [e.socket for e in self.entries if e.interest & Interest.READ]

    @property
    def errored(self) -> List[socket.socket]:
        return [e.socket for e in self.entries if e.interest & Interest.ERROR]

    @property
    def max_descriptor(self) -> int:
        """Highest descriptor value watched, -1 when empty."""
        return max((e.socket.fileno() for e in self.entries), default=-1)

    def __len__(self) -> int:
        return len(self.entries)

    def wait(
        self, timeout: Optional[float]
    ) -> Tuple[List[socket.socket], List[socket.socket]]:
        """
        Block until something is ready, or timeout seconds pass.

        poll() has no FD_SETSIZE ceiling, so descriptor numbers above 1023
        are watched like any other. Error conditions (POLLERR, POLLHUP,
        POLLNVAL) go to the errored list for entries watched with
        Interest.ERROR; entries watched for READ only see them as readable,
        so the next recv() reports the condition.

        Returns:
            (readable, errored) sockets.

        Raises:
            WaitError: If a descriptor cannot be registered or poll() fails.
        """
        poller = select.poll()
        by_descriptor: Dict[int, WatchEntry] = {}

        try:
            for entry in self.entries:
                mask = 0
                if entry.interest & Interest.READ:
                    mask |= READ_EVENTS
                if entry.interest & Interest.ERROR:
                    mask |= ERROR_EVENTS
                fd = entry.socket.fileno()
                poller.register(fd, mask)
                by_descriptor[fd] = entry

            events = poller.poll(None if timeout is None else timeout * 1000)
        except (OSError, ValueError) as e:
            logger.error(f"Readiness wait failed: {e}")
            raise WaitError(f"poll() failed: {e}") from e

        readable: List[socket.socket] = []
        errored: List[socket.socket] = []

        for fd, revents in events:
            entry = by_descriptor[fd]
            if revents & ERROR_EVENTS and entry.interest & Interest.ERROR:
                errored.append(entry.socket)
            elif revents & (READ_EVENTS | ERROR_EVENTS) and entry.interest & Interest.READ:
                readable.append(entry.socket)

        return readable, errored


class Reactor:
    """
    Serves every port of a PortRegistry from one thread.

    Usage:
        registry = PortRegistry([
            PortConfiguration(9000, on_receive=upper_echo),
            PortConfiguration(9001, on_receive=echo),
        ])
        reactor = Reactor(registry)
        status = reactor.run()      # Blocks until TERMINATED

    Two-step use, when you need the bound ports first (port 0):
        reactor.open()
        print(reactor.bound_ports)
        reactor.run()
    """

    def __init__(
        self,
        registry: Union[PortRegistry, Iterable[PortConfiguration]],
        config: Optional[ReactorConfig] = None,
    ):
        if not isinstance(registry, PortRegistry):
            registry = PortRegistry(registry)

        self.registry = registry
        self.config = config or ReactorConfig()
        self.config.validate()

        self._slots = SlotManager(self.config)
        self._state: Optional[ReactorState] = None

    @property
    def state(self) -> Optional[ReactorState]:
        """The live reactor state, None before open()."""
        return self._state

    @property
    def bound_ports(self) -> List[Optional[int]]:
        """Actual port of each slot, in registration order."""
        if self._state is None:
            return []
        return [slot.bound_port for slot in self._state.slots]

    def open(self) -> None:
        """
        Create every listener (ListenerSet) and the slots around them.

        Raises:
            ListenerSetupError: Listeners opened before the failure are
                                left open and listed in error.opened.
        """
        if self._state is not None:
            return

        listeners = open_listeners(self.registry, self.config)
        self._state = ReactorState(
            slots=[
                ConnectionSlot(entry=entry, listener=listener)
                for entry, listener in zip(self.registry, listeners)
            ]
        )

    def run(self, timeout: Optional[float] = None) -> ReactorStatus:
        """
        Open the listeners (if needed) and serve until TERMINATED.

        Args:
            timeout: Bound for each readiness wait in seconds. Defaults to
                     config.poll_timeout. A timeout never ends the loop.

        Returns:
            ReactorStatus.OK on clean termination, otherwise the status of
            the failing phase.
        """
        if not self.registry:
            logger.info("No ports registered, nothing to serve")
            return ReactorStatus.OK

        try:
            self.open()
        except ListenerSetupError as e:
            logger.error(f"Listener setup failed in phase '{e.phase}' on port {e.port}: {e}")
            close_listeners(e.opened)
            return e.status

        if timeout is None:
            timeout = self.config.poll_timeout

        state = self._state
        logger.info(f"Reactor serving ports {self.bound_ports}")

        try:
            while state.running:
                self._iterate(state, timeout)
        except ReactorError as e:
            logger.error(f"Reactor terminated in phase '{e.status.phase}': {e}")
            state.terminate(e.status)
        finally:
            # KeyboardInterrupt and other surprises also pass through here
            state.terminate(state.status)
            self._slots.close_all(state)
            logger.info(f"Reactor stopped with status {state.status.name}")

        return state.status

    def _iterate(self, state: ReactorState, timeout: Optional[float]) -> None:
        """One BUILD / WAIT / DISPATCH round."""
        state.iterations += 1

        self._slots.reap_closed(state)
        watch = ReadinessSet.from_state(state)

        if not watch:
            # Every listener retired and no clients left
            logger.warning("No descriptors left to watch, stopping")
            state.terminate(ReactorStatus.OK)
            return

        logger.debug(
            f"Waiting on {len(watch)} descriptors (max fd {watch.max_descriptor})"
        )
        readable, errored = watch.wait(timeout)

        remaining = len(readable) + len(errored)
        if remaining == 0:
            return

        readable_set = set(readable)
        errored_set = set(errored)

        for slot in state.slots:
            if remaining <= 0 or state.terminated:
                break
            remaining -= self._slots.service(state, slot, readable_set, errored_set)


def serve_ports(
    configurations: Iterable[PortConfiguration],
    timeout: Optional[float] = None,
    config: Optional[ReactorConfig] = None,
) -> int:
    """
    Serve the given ports until a callback stops the reactor.

    Args:
        configurations: Ordered PortConfiguration entries.
        timeout: Optional bound for each readiness wait, in seconds.
        config: Shared reactor settings.

    Returns:
        0 on clean termination, a negative ReactorStatus code otherwise.
    """
    return int(Reactor(configurations, config).run(timeout))
