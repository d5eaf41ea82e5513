"""
=============================================================================
PORT REGISTRY
=============================================================================

The list of ports the reactor serves, and what to call for each of them.

=============================================================================
CALLBACK CONTRACTS
=============================================================================

Each port has up to three callbacks. All of them run on the reactor thread
and must return quickly: while one runs, no other port is serviced.

    on_connect(sock, address)      -> ConnectVerdict   (optional)
    on_receive(sock, address)      -> ReceiveVerdict   (required)
    on_disconnect(sock, address)   -> None             (optional)

The two verdict types are deliberately different. They look alike (both
answer "should I stop?") but their BLAST RADIUS is not the same:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         VERDICT SCOPE                               │
    ├──────────────────┬──────────────────────────────────────────────────┤
    │ ConnectVerdict   │ CONTINUE_SERVING  keep going                     │
    │                  │ STOP_REACTOR      close the new client AND stop  │
    │                  │                   serving EVERY port             │
    ├──────────────────┼──────────────────────────────────────────────────┤
    │ ReceiveVerdict   │ KEEP_OPEN         keep the connection            │
    │                  │ CLOSE_CONNECTION  close THIS connection only     │
    └──────────────────┴──────────────────────────────────────────────────┘

Returning None picks the harmless default (CONTINUE_SERVING / KEEP_OPEN).
Returning anything else (a bare bool, for instance) is rejected with
TypeError so a True cannot silently mean two different things.

on_disconnect is called AFTER the socket is closed. The socket is passed
for reference only (e.g. as a dictionary key for per-client state).
The address is the peer address recorded at accept time. It is never None,
even though the peer may be long gone by the time the callback runs.

=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Tuple, Any
import socket


Address = Tuple[Any, ...]


class ConnectVerdict(Enum):
    """Answer from on_connect. STOP_REACTOR stops every port."""

    CONTINUE_SERVING = "continue_serving"
    STOP_REACTOR = "stop_reactor"


class ReceiveVerdict(Enum):
    """Answer from on_receive. CLOSE_CONNECTION affects one client only."""

    KEEP_OPEN = "keep_open"
    CLOSE_CONNECTION = "close_connection"


ConnectCallback = Callable[[socket.socket, Address], Optional[ConnectVerdict]]
ReceiveCallback = Callable[[socket.socket, Address], Optional[ReceiveVerdict]]
DisconnectCallback = Callable[[socket.socket, Address], None]


def coerce_verdict(value, verdict_type, default):
    """
    Normalize a callback's return value.

    None becomes the default verdict; a member of verdict_type passes
    through; anything else raises TypeError.
    """
    if value is None:
        return default
    if isinstance(value, verdict_type):
        return value
    raise TypeError(
        f"Callback must return {verdict_type.__name__} or None, "
        f"got {type(value).__name__}: {value!r}"
    )


@dataclass(frozen=True)
class PortConfiguration:
    """
    One port and its callbacks.

    Attributes:
        port: TCP port number, 0-65535. 0 lets the OS pick a free port.
        on_receive: Called when an attached client is readable.
        on_connect: Called after a client is accepted.
        on_disconnect: Called after a client's socket has been closed, with
                       the peer address recorded at accept time.
    """

    port: int
    on_receive: ReceiveCallback
    on_connect: Optional[ConnectCallback] = None
    on_disconnect: Optional[DisconnectCallback] = None

    def __post_init__(self):
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise TypeError(f"port must be an int, got {type(self.port).__name__}")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")
        if not callable(self.on_receive):
            raise TypeError("on_receive is required and must be callable")
        for name in ("on_connect", "on_disconnect"):
            callback = getattr(self, name)
            if callback is not None and not callable(callback):
                raise TypeError(f"{name} must be callable or None")


class PortRegistry:
    """
    Ordered, immutable collection of PortConfiguration entries.

    Supplied once at startup. The order is preserved: listeners are opened
    and slots are scanned in registration order.

        registry = PortRegistry([
            PortConfiguration(9000, on_receive=upper_echo),
            PortConfiguration(9001, on_receive=echo),
        ])
    """

    def __init__(self, configurations: Iterable[PortConfiguration] = ()):
        entries = tuple(configurations)

        seen = set()
        for entry in entries:
            if not isinstance(entry, PortConfiguration):
                raise TypeError(
                    f"Expected PortConfiguration, got {type(entry).__name__}"
                )
            # Port 0 may repeat: each one gets its own ephemeral port
            if entry.port and entry.port in seen:
                raise ValueError(f"Port {entry.port} registered twice")
            seen.add(entry.port)

        self._entries: Tuple[PortConfiguration, ...] = entries

    @property
    def entries(self) -> Tuple[PortConfiguration, ...]:
        return self._entries

    @property
    def ports(self) -> Tuple[int, ...]:
        """Registered port numbers, in order."""
        return tuple(entry.port for entry in self._entries)

    def __iter__(self) -> Iterator[PortConfiguration]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> PortConfiguration:
        return self._entries[index]

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __repr__(self) -> str:
        return f"PortRegistry(ports={list(self.ports)})"
