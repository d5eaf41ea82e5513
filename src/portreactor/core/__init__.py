"""
=============================================================================
CORE MODULE
=============================================================================

The networking core of the reactor, leaves first:

    registry      PortConfiguration, PortRegistry, verdict enums
    nonblocking   Blocking-mode toggles
    listeners     ListenerSet: one listening socket per port
    slots         ConnectionSlot, ReactorState, SlotManager
    reactor       ReadinessSet, Reactor, serve_ports()

=============================================================================
DESIGN DECISIONS
=============================================================================

1. SINGLE-THREADED
   No worker threads, no locks. Every callback runs on the loop thread,
   one at a time.

2. EXPLICIT STATE
   The slot table and the termination flag live in a ReactorState object
   passed through the loop, never in module globals.

3. FAILURE ISOLATION
   An error on one socket closes that socket. Only setup, wait, accept and
   error-query failures end the reactor.

=============================================================================
"""

from .registry import (
    PortConfiguration,
    PortRegistry,
    ConnectVerdict,
    ReceiveVerdict,
)
from .nonblocking import set_nonblocking, set_blocking, is_nonblocking
from .listeners import open_listener, open_listeners, close_listeners
from .slots import (
    ClientConnection,
    ClientState,
    ConnectionSlot,
    ReactorState,
    SlotManager,
)
from .reactor import Interest, ReadinessSet, Reactor, serve_ports

__all__ = [
    "PortConfiguration",   # One port + its callbacks
    "PortRegistry",        # Immutable, ordered list of ports
    "ConnectVerdict",      # on_connect answer (reactor-wide)
    "ReceiveVerdict",      # on_receive answer (one connection)
    "set_nonblocking",
    "set_blocking",
    "is_nonblocking",
    "open_listener",
    "open_listeners",
    "close_listeners",
    "ClientConnection",    # Accepted client socket + metadata
    "ClientState",
    "ConnectionSlot",      # Per-port bookkeeping
    "ReactorState",        # Loop state passed between iterations
    "SlotManager",         # The four dispatch cases
    "Interest",
    "ReadinessSet",        # Per-iteration poll() input
    "Reactor",             # The loop
    "serve_ports",         # Entry point returning a status code
]
