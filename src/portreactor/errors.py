"""
=============================================================================
REACTOR STATUS CODES AND EXCEPTIONS
=============================================================================

Every way the reactor can stop is named here, once.

=============================================================================
TWO VIEWS OF THE SAME FAILURE
=============================================================================

Inside the package, failures are EXCEPTIONS. Each component raises as soon
as something goes wrong and lets the caller decide what it means:

    open_listeners()  ──raise──►  ListenerSetupError(phase="bind", port=9000)
    _wait()           ──raise──►  WaitError
    _accept()         ──raise──►  AcceptError

At the outer edge (serve_ports() and Reactor.run()), the exception is
translated into a STATUS CODE so callers can discriminate the failing phase
without catching anything:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       REACTOR STATUS CODES                          │
    ├──────┬──────────────────────┬───────────────────────────────────────┤
    │ Code │ Name                 │ Phase                                 │
    ├──────┼──────────────────────┼───────────────────────────────────────┤
    │   0  │ OK                   │ Clean termination                     │
    │  -1  │ SOCKET_FAILED        │ socket() while creating a listener    │
    │  -2  │ BIND_FAILED          │ bind() to the wildcard address        │
    │  -3  │ NONBLOCKING_FAILED   │ switching a descriptor non-blocking   │
    │  -4  │ LISTEN_FAILED        │ listen() on a bound socket            │
    │  -5  │ WAIT_FAILED          │ poll() itself failed                  │
    │  -6  │ ACCEPT_FAILED        │ accept() on a readable listener       │
    │  -7  │ ERROR_QUERY_FAILED   │ getsockopt(SO_ERROR) failed           │
    └──────┴──────────────────────┴───────────────────────────────────────┘

Per-socket errors (a client resets, a listener reports SO_ERROR) never show
up here: they are recovered locally by closing the affected socket.

=============================================================================
"""

from enum import IntEnum
from typing import List, Optional
import socket


class ReactorStatus(IntEnum):
    """
    Result of a reactor run.

    IntEnum, so a status compares equal to its integer code:

        >>> ReactorStatus.OK == 0
        True
        >>> ReactorStatus.BIND_FAILED.phase
        'bind'
    """

    OK = 0
    SOCKET_FAILED = -1
    BIND_FAILED = -2
    NONBLOCKING_FAILED = -3
    LISTEN_FAILED = -4
    WAIT_FAILED = -5
    ACCEPT_FAILED = -6
    ERROR_QUERY_FAILED = -7

    @property
    def phase(self) -> str:
        """Short name of the phase this status reports on."""
        return _PHASES[self]

    @property
    def is_error(self) -> bool:
        return self is not ReactorStatus.OK


_PHASES = {
    ReactorStatus.OK: "ok",
    ReactorStatus.SOCKET_FAILED: "socket",
    ReactorStatus.BIND_FAILED: "bind",
    ReactorStatus.NONBLOCKING_FAILED: "nonblocking",
    ReactorStatus.LISTEN_FAILED: "listen",
    ReactorStatus.WAIT_FAILED: "wait",
    ReactorStatus.ACCEPT_FAILED: "accept",
    ReactorStatus.ERROR_QUERY_FAILED: "error-query",
}


class ReactorError(Exception):
    """
    Base class for every failure that terminates the reactor.

    The exception carries the status code the entry point should return,
    the same way a parse error carries the response code to send back.
    """

    status: ReactorStatus = ReactorStatus.WAIT_FAILED

    def __init__(self, message: str, status: Optional[ReactorStatus] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class NonBlockingError(ReactorError):
    """A descriptor could not be switched between blocking modes."""

    status = ReactorStatus.NONBLOCKING_FAILED


class ListenerSetupError(ReactorError):
    """
    A listener could not be created, bound, switched or put into listening.

    Attributes:
        phase: "socket", "bind", "nonblocking" or "listen".
        port: The port being set up when the failure happened.
        opened: Listeners created earlier in the same pass. They are NOT
                closed by the component that raised; whoever catches this
                owns them.
    """

    _STATUS_BY_PHASE = {
        "socket": ReactorStatus.SOCKET_FAILED,
        "bind": ReactorStatus.BIND_FAILED,
        "nonblocking": ReactorStatus.NONBLOCKING_FAILED,
        "listen": ReactorStatus.LISTEN_FAILED,
    }

    def __init__(
        self,
        message: str,
        phase: str,
        port: int,
        opened: Optional[List[socket.socket]] = None,
    ):
        super().__init__(message, self._STATUS_BY_PHASE[phase])
        self.phase = phase
        self.port = port
        self.opened = list(opened or [])


class WaitError(ReactorError):
    """The readiness wait (poll) failed."""

    status = ReactorStatus.WAIT_FAILED


class AcceptError(ReactorError):
    """accept() failed on a listener that reported readable."""

    status = ReactorStatus.ACCEPT_FAILED


class ErrorQueryError(ReactorError):
    """SO_ERROR could not be read from a socket in the error set."""

    status = ReactorStatus.ERROR_QUERY_FAILED
